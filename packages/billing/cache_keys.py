"""Cache key generators for billing package."""

from datetime import date


def balance_key(subscription_id: int, usage_date: date) -> str:
    """Cache key for a subscription's balance snapshot on one UTC day."""
    return f"billing:balance:{subscription_id}:{usage_date.isoformat()}"


def balance_key_pattern(subscription_id: int) -> str:
    """Glob matching every day's balance snapshot for a subscription."""
    return f"billing:balance:{subscription_id}:*"


def subscription_lock_key(subscription_id: int) -> str:
    """Lock key serializing balance and lifecycle writes for one subscription."""
    return f"subscription:{subscription_id}"


def subscriber_lock_key(subscriber_id: str) -> str:
    """Lock key guarding lazy creation of a subscriber's subscription."""
    return f"subscriber:{subscriber_id}"
