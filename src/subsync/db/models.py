"""Table names, column names, and the persisted subscription record."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Table:
    """Database table names."""

    SUBSCRIPTIONS = "subscriptions"


class SubscriptionStatus(str, Enum):
    """Statuses this service writes itself.

    Any other Stripe subscription status (``trialing``, ``unpaid``,
    ``incomplete``...) is stored as-is.
    """

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Plan sentinels; recurring plans store the Stripe interval ('month', 'year', ...)
PLAN_ONE_TIME = "one_time"
PLAN_UNKNOWN = "unknown"


# Columns a webhook is allowed to write. email is the conflict target and
# updated_at is stamped by the store on every write.
WRITABLE_COLUMNS = (
    "plan",
    "status",
    "current_period_start",
    "current_period_end",
    "canceled_at",
    "stripe_subscription_id",
    "stripe_customer_id",
)


@dataclass
class SubscriptionRecord:
    """Row of the subscriptions table."""

    email: str  # trimmed, lower-cased
    plan: str | None = None
    status: str | None = None
    current_period_start: datetime | None = None  # UTC
    current_period_end: datetime | None = None  # UTC
    canceled_at: datetime | None = None  # UTC
    stripe_subscription_id: str | None = None
    stripe_customer_id: str | None = None
    updated_at: datetime | None = None  # UTC


def normalize_email(email: str | None) -> str | None:
    """Canonical form used as the primary key: trimmed and lower-cased.

    Returns None for missing or blank input.
    """
    if not email:
        return None
    email = email.strip().lower()
    return email or None
