"""
lifecycle.py
Subscription lifecycle: date math, effective status and expiry notification thresholds.

Everything here is pure. `now` is always passed in by the caller, never read
from the clock, so the same inputs always give the same answer.

Day-0 rule: a subscription whose end date is today counts as lapsed. Access
gating reports it as `expired`, and the notification trigger sends the
`expired` notice for it (never a "0 days left" warning).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable

from models import (
    EXPIRED_MARKER,
    EXPIRY_THRESHOLDS,
    Marker,
    NotificationIntent,
    NotificationKind,
    Plan,
    Status,
    Subscription,
)


def _day(value: date) -> date:
    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return value.date()
    return value


def _before(a: date, b: date) -> bool:
    if isinstance(a, datetime) and isinstance(b, datetime):
        return a < b
    return _day(a) < _day(b)


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    Time of day is kept when `start` is a datetime.
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return start.replace(year=y, month=m, day=day)


def add_exact_calendar_month(start: date) -> date:
    return add_months(start, 1)


def plan_end_date(plan: Plan, start: date) -> date:
    """
    End of the paid window for a plan started at `start`.
    Monthly plans run exactly one calendar month; day plans run `duration_days`.
    """
    if plan.period == "month":
        return add_exact_calendar_month(start)
    return start + timedelta(days=plan.duration_days)


def days_remaining(end: date | None, now: date) -> int:
    """Whole calendar days from today until the end day, never below 0."""
    if end is None:
        return 0
    return max(0, (_day(end) - _day(now)).days)


def is_expired(end: date | None, now: date) -> bool:
    """True once the end day is strictly in the past. A missing end never expires."""
    if end is None:
        return False
    return _day(end) < _day(now)


def has_lapsed(end: date | None, now: date) -> bool:
    """Expired, or expiring today."""
    if end is None:
        return False
    return is_expired(end, now) or days_remaining(end, now) == 0


def effective_status(sub: Subscription, now: date) -> str:
    if sub.end_date is not None:
        if is_expired(sub.end_date, now):
            return Status.EXPIRED
        if days_remaining(sub.end_date, now) == 0:
            return Status.EXPIRED
    if sub.start_date is not None and _before(now, sub.start_date):
        return Status.PENDING
    return sub.status or Status.ACTIVE


def normalize_marker(marker) -> Marker:
    """
    Read a stored lastExpiryNotification marker.
    Accepts ints, numeric strings and "expired"; 0 was the old way of writing "expired".
    """
    if marker is None or marker == "":
        return None
    if isinstance(marker, str):
        if marker == EXPIRED_MARKER:
            return EXPIRED_MARKER
        try:
            marker = int(marker)
        except ValueError:
            return None
    if marker == 0:
        return EXPIRED_MARKER
    return int(marker)


def should_notify(sub: Subscription, now: date) -> NotificationIntent | None:
    # cancelled, pending or already-demoted subscriptions never get warnings
    if sub.status != Status.ACTIVE or sub.end_date is None:
        return None

    marker = normalize_marker(sub.last_expiry_notification)
    d = days_remaining(sub.end_date, now)

    if has_lapsed(sub.end_date, now):
        if marker != EXPIRED_MARKER:
            return NotificationIntent(sub.id, sub.user_id, NotificationKind.EXPIRED, 0)
        return None

    if d in EXPIRY_THRESHOLDS and marker != d:
        return NotificationIntent(sub.id, sub.user_id, NotificationKind.EXPIRING_SOON, d)
    return None


def evaluate_batch(subs: Iterable[Subscription], now: date) -> list[tuple[Subscription, NotificationIntent]]:
    """Pairs of (subscription, intent) for every record that needs a notification, in input order."""
    out = []
    for sub in subs:
        intent = should_notify(sub, now)
        if intent is not None:
            out.append((sub, intent))
    return out
