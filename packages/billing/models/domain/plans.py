"""Domain models for billing plans."""

from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import SubscriptionTier

UNLIMITED_PROJECTS = 999


class Plan(BaseModel):
    """Immutable plan catalog row."""

    model_config = ConfigDict(frozen=True)

    tier: SubscriptionTier
    name: str
    description: str
    price_minor_units: int
    token_grant: int
    max_character_slots: int
    max_project_slots: int
    daily_token_cap: int

    @property
    def has_unlimited_projects(self) -> bool:
        return self.max_project_slots >= UNLIMITED_PROJECTS


class PlanInfo(BaseModel):
    """Plan as shown on pricing pages."""

    tier: SubscriptionTier
    name: str
    description: str
    price_minor_units: int
    price_formatted: str
    currency: str
    billing_period_days: int
    token_grant: int
    daily_token_cap: int
    max_character_slots: int
    max_project_slots: int
    unlimited_projects: bool


class PlansResponse(BaseModel):
    """Response model for plans endpoint."""

    plans: list[PlanInfo]


class TokenPackage(BaseModel):
    """One-off token pack sold on top of a plan."""

    model_config = ConfigDict(frozen=True)

    package_id: str
    name: str
    tokens: int
    price_minor_units: int


class TokenPackageInfo(BaseModel):
    package_id: str
    name: str
    tokens: int
    price_minor_units: int
    price_formatted: str
    currency: str


class TokenPackagesResponse(BaseModel):
    packages: list[TokenPackageInfo]
