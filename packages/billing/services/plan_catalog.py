"""Static plan catalog (tier -> price, token grant, slots, daily cap) and token packs."""

from decimal import Decimal

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.plans import (
    Plan,
    PlanInfo,
    PlansResponse,
    TokenPackage,
    TokenPackageInfo,
    TokenPackagesResponse,
    UNLIMITED_PROJECTS,
)

# Tokens consumed per work unit before surcharges
UNIT_COST = Decimal("1")

PLANS = {
    SubscriptionTier.FREE: Plan(
        tier=SubscriptionTier.FREE,
        name="Free",
        description="Try it out",
        price_minor_units=0,
        token_grant=10,
        max_character_slots=2,
        max_project_slots=3,
        daily_token_cap=10,
    ),
    SubscriptionTier.PRO: Plan(
        tier=SubscriptionTier.PRO,
        name="Pro",
        description="For regular creators",
        price_minor_units=30000,
        token_grant=500000,
        max_character_slots=3,
        max_project_slots=UNLIMITED_PROJECTS,
        daily_token_cap=20000,
    ),
    SubscriptionTier.PREMIUM: Plan(
        tier=SubscriptionTier.PREMIUM,
        name="Premium",
        description="For studios and heavy users",
        price_minor_units=100000,
        token_grant=2000000,
        max_character_slots=5,
        max_project_slots=UNLIMITED_PROJECTS,
        daily_token_cap=80000,
    ),
}

# Larger packs cost less per token
TOKEN_PACKAGES = {
    package.package_id: package
    for package in (
        TokenPackage(package_id="small", name="Starter pack", tokens=100, price_minor_units=5000),
        TokenPackage(package_id="medium", name="Standard pack", tokens=500, price_minor_units=20000),
        TokenPackage(package_id="large", name="Pro pack", tokens=1200, price_minor_units=40000),
        TokenPackage(package_id="mega", name="Mega pack", tokens=3000, price_minor_units=90000),
    )
}

# Currencies whose minor unit is the major unit
_ZERO_DECIMAL_CURRENCIES = {"krw", "jpy", "vnd"}
_CURRENCY_SYMBOLS = {"krw": "₩", "jpy": "¥", "usd": "$", "eur": "€"}


def format_price(amount_minor_units: int, currency: str) -> str:
    """Format a minor-unit amount for display, e.g. 30000 krw -> ₩30,000."""
    currency = currency.lower()
    symbol = _CURRENCY_SYMBOLS.get(currency, currency.upper() + " ")
    if currency in _ZERO_DECIMAL_CURRENCIES:
        return f"{symbol}{amount_minor_units:,}"
    major = Decimal(amount_minor_units) / 100
    if major == major.to_integral_value():
        return f"{symbol}{int(major):,}"
    return f"{symbol}{major:,.2f}"


class PlanCatalog:
    """Read-only lookup over PLANS."""

    def __init__(self, currency: str = "krw", billing_period_days: int = 30):
        self.currency = currency
        self.billing_period_days = billing_period_days

    def get_plan(self, tier: SubscriptionTier) -> Plan:
        return PLANS[SubscriptionTier(tier)]

    def price_for(self, tier: SubscriptionTier) -> int:
        return self.get_plan(tier).price_minor_units

    def token_grant_for(self, tier: SubscriptionTier) -> int:
        return self.get_plan(tier).token_grant

    def daily_cap_for(self, tier: SubscriptionTier) -> int:
        return self.get_plan(tier).daily_token_cap

    def _build_plan_info(self, plan: Plan) -> PlanInfo:
        return PlanInfo(
            tier=plan.tier,
            name=plan.name,
            description=plan.description,
            price_minor_units=plan.price_minor_units,
            price_formatted=format_price(plan.price_minor_units, self.currency),
            currency=self.currency,
            billing_period_days=self.billing_period_days,
            token_grant=plan.token_grant,
            daily_token_cap=plan.daily_token_cap,
            max_character_slots=plan.max_character_slots,
            max_project_slots=plan.max_project_slots,
            unlimited_projects=plan.has_unlimited_projects,
        )

    @trace_span
    def get_all_plans(self) -> PlansResponse:
        """Get all plans, cheapest first."""
        return PlansResponse(
            plans=[self._build_plan_info(PLANS[tier]) for tier in SubscriptionTier]
        )

    def get_token_package(self, package_id: str) -> TokenPackage:
        """
        Raises:
            ValidationError: If no package has this id
        """
        package = TOKEN_PACKAGES.get(package_id)
        if package is None:
            raise ValidationError(f"Unknown token package: {package_id}")
        return package

    @trace_span
    def get_token_packages(self) -> TokenPackagesResponse:
        """Get all token packages, smallest first."""
        return TokenPackagesResponse(
            packages=[
                TokenPackageInfo(
                    package_id=package.package_id,
                    name=package.name,
                    tokens=package.tokens,
                    price_minor_units=package.price_minor_units,
                    price_formatted=format_price(package.price_minor_units, self.currency),
                    currency=self.currency,
                )
                for package in TOKEN_PACKAGES.values()
            ]
        )
