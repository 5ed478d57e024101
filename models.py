"""
models.py
Lightweight domain types (plans, members, subscriptions, notification intents).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Union


class Status:
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PENDING = "pending"

    ALL = (ACTIVE, EXPIRED, CANCELLED, PENDING)


class NotificationKind:
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


# Days-remaining values that each get exactly one warning
EXPIRY_THRESHOLDS = (3, 2, 1)

EXPIRED_MARKER = "expired"

Marker = Optional[Union[int, str]]


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: float
    period: str  # 'day' or 'month'
    duration_days: int = 1
    max_sessions: int | None = None  # None = unlimited
    description: str = ""
    features: tuple[str, ...] = ()
    is_active: bool = True


DEFAULT_PLANS = (
    Plan(
        id="walkin",
        name="Walk-in Session",
        price=100.0,
        period="day",
        duration_days=1,
        max_sessions=1,
        description="Pay as you go",
        features=("Single gym session", "Basic equipment access", "Locker room access"),
    ),
    Plan(
        id="monthly",
        name="Monthly Plan",
        price=850.0,
        period="month",
        description="Best value for regular gym-goers",
        features=("Unlimited gym access", "All equipment included", "Progress tracking"),
    ),
    Plan(
        id="coaching-group",
        name="Coaching Program",
        price=2500.0,
        period="month",
        description="Group coaching - unlimited sessions",
        features=("Everything in Monthly", "Group training classes", "Nutrition guidance"),
    ),
    Plan(
        id="coaching-solo",
        name="Coaching Program",
        price=2500.0,
        period="month",
        max_sessions=10,
        description="Solo coaching - 10 sessions limit",
        features=("Everything in Monthly", "One-on-one training", "10 sessions per month"),
    ),
)


@dataclass(frozen=True)
class Member:
    id: int | None
    full_name: str
    phone: str
    push_token: str | None
    join_date: str


@dataclass(frozen=True)
class Subscription:
    id: int | None
    user_id: int | None
    plan_id: str
    status: str | None
    start_date: datetime | None
    end_date: datetime | None
    last_expiry_notification: Marker = None
    plan_name: str = ""
    max_sessions: int | None = None  # quota for the current window, None = unlimited

    def with_marker(self, marker: Marker) -> "Subscription":
        return replace(self, last_expiry_notification=marker)


@dataclass(frozen=True)
class NotificationIntent:
    subscription_id: int | None
    user_id: int | None
    kind: str
    days_remaining: int

    @property
    def marker(self) -> Marker:
        """Value to persist on the subscription once this intent is delivered."""
        if self.kind == NotificationKind.EXPIRED:
            return EXPIRED_MARKER
        return self.days_remaining


@dataclass
class CheckInResult:
    allowed: bool
    reason: str
    user_id: int | None = None
    subscription_id: int | None = None
    sessions_used: int = 0


@dataclass
class ExpiryRunResult:
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    intents: list[NotificationIntent] = field(default_factory=list)

