"""
utils.py
Validation, timestamps, reports/exports, sample data.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pandas as pd

import db
import members
import subscriptions
from lifecycle import days_remaining, effective_status
from models import NotificationIntent, Subscription

REPORT_COLUMNS = [
    "id", "user_id", "plan_id", "plan_name", "status", "effective_status",
    "start_date", "end_date", "days_remaining", "last_expiry_notification",
]


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, to the second."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO date or datetime string -> datetime (dates become midnight)."""
    if value is None or value == "":
        return None
    return datetime.fromisoformat(str(value))


def format_timestamp(value: date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    return datetime(value.year, value.month, value.day).isoformat(timespec="seconds")


def validate_member_inputs(full_name: str, phone: str) -> list[str]:
    errors: list[str] = []
    if not full_name.strip():
        errors.append("Full name is required.")
    if not phone.strip():
        errors.append("Phone is required.")
    elif not phone.strip().lstrip("+").isdigit():
        errors.append("Phone must contain digits only.")
    return errors


def subscription_report(subs: list[Subscription], now: datetime) -> pd.DataFrame:
    """One row per subscription with its effective status next to the stored flag."""
    rows = [
        {
            "id": s.id,
            "user_id": s.user_id,
            "plan_id": s.plan_id,
            "plan_name": s.plan_name,
            "status": s.status,
            "effective_status": effective_status(s, now),
            "start_date": format_timestamp(s.start_date),
            "end_date": format_timestamp(s.end_date),
            "days_remaining": days_remaining(s.end_date, now) if s.end_date else None,
            "last_expiry_notification": s.last_expiry_notification,
        }
        for s in subs
    ]
    if not rows:
        return pd.DataFrame(columns=REPORT_COLUMNS)
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def intents_frame(intents: list[NotificationIntent]) -> pd.DataFrame:
    df = pd.DataFrame(
        [
            {
                "subscription_id": i.subscription_id,
                "user_id": i.user_id,
                "kind": i.kind,
                "days_remaining": i.days_remaining,
            }
            for i in intents
        ]
    )
    if df.empty:
        return pd.DataFrame(columns=["subscription_id", "user_id", "kind", "days_remaining"])
    return df


def frame_to_csv_bytes(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")


def notifications_to_csv_bytes(rows) -> bytes:
    df = pd.DataFrame([dict(r) for r in rows])
    return df.to_csv(index=False).encode("utf-8")


def status_counts(subs: list[Subscription], now: datetime) -> dict[str, int]:
    df = subscription_report(subs, now)
    if df.empty:
        return {}
    return {str(k): int(v) for k, v in df["effective_status"].value_counts().items()}


def insert_sample_data(now: datetime) -> None:
    """
    Insert 3 members with subscriptions at different points of their lifecycle
    (adds new rows each time it runs).
    """
    m1 = members.register_member("Ahmed Hassan", "01000000001", now, plan_id="monthly")
    members.register_member("Mona Ali", "01000000002", now, plan_id="coaching-solo")
    m3 = members.register_member("Omar Samy", "01000000003", now, plan_id="monthly")

    # Member 1: expires in 3 days
    _move_window(m1.id, now - timedelta(days=27), now + timedelta(days=3))
    # Member 3: ended two days ago, stored flag still active
    _move_window(m3.id, now - timedelta(days=32), now - timedelta(days=2))


def _move_window(user_id: int, start: datetime, end: datetime) -> None:
    sub = subscriptions.get_current_subscription(user_id)
    db.execute(
        "UPDATE subscriptions SET start_date = ?, end_date = ? WHERE id = ?",
        (format_timestamp(start), format_timestamp(end), sub.id),
    )
