"""
attendance.py
QR check-in. Entry is allowed only while the member's subscription is
effectively active and the session quota of its current window
(set from the plan, carried over on renewal) is not used up.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime

import db
import subscriptions
import utils
from lifecycle import effective_status
from models import CheckInResult, Status

logger = logging.getLogger(__name__)


def make_qr_value(user_id: int, now: datetime) -> str:
    """QR payload: <userId>_<epoch millis>_<random>."""
    millis = int(now.timestamp() * 1000)
    return f"{user_id}_{millis}_{random.randint(0, 99999)}"


def parse_qr_value(qr_value: str) -> int | None:
    head = (qr_value or "").strip().split("_")[0]
    if not head.isdigit():
        return None
    return int(head)


def check_in(qr_value: str, now: datetime) -> CheckInResult:
    user_id = parse_qr_value(qr_value)
    if user_id is None:
        return CheckInResult(False, "Could not read member id from QR code.")

    if not db.fetch_one("SELECT id FROM members WHERE id = ?", (user_id,)):
        return CheckInResult(False, f"Member {user_id} not found.", user_id=user_id)

    sub = subscriptions.get_current_subscription(user_id)
    if sub is None:
        return CheckInResult(False, "No active subscription.", user_id=user_id)

    status = effective_status(sub, now)
    if status != Status.ACTIVE:
        return CheckInResult(False, f"Subscription is {status}.", user_id=user_id, subscription_id=sub.id)

    used = subscriptions.sessions_in_window(sub)
    if sub.max_sessions is not None and used >= sub.max_sessions:
        return CheckInResult(
            False,
            f"Session limit reached ({sub.max_sessions}).",
            user_id=user_id,
            subscription_id=sub.id,
            sessions_used=used,
        )

    db.execute(
        "INSERT INTO attendance(user_id, subscription_id, check_in_time, qr_value) VALUES(?,?,?,?)",
        (user_id, sub.id, utils.format_timestamp(now), qr_value.strip()),
    )
    logger.info(f"Attendance recorded for member {user_id}")
    return CheckInResult(True, "Checked in.", user_id=user_id, subscription_id=sub.id, sessions_used=used + 1)


def attendance_history(user_id: int):
    return db.fetch_all(
        """
        SELECT a.id, a.subscription_id, a.check_in_time, s.plan_id
        FROM attendance a
        JOIN subscriptions s ON s.id = a.subscription_id
        WHERE a.user_id = ?
        ORDER BY a.check_in_time DESC, a.id DESC
        """,
        (user_id,),
    )
