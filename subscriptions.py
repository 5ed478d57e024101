"""
subscriptions.py
Plan catalog lookups and subscription storage (create, renew, cancel, expiry markers).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

import db
import utils
from lifecycle import has_lapsed, normalize_marker, plan_end_date
from models import EXPIRED_MARKER, Marker, Plan, Status, Subscription

logger = logging.getLogger(__name__)

_SELECT = """
    SELECT s.*, p.name AS plan_name
    FROM subscriptions s
    LEFT JOIN plans p ON p.id = s.plan_id
"""


def row_to_plan(row) -> Plan:
    return Plan(
        id=row["id"],
        name=row["name"],
        price=float(row["price"]),
        period=row["period"],
        duration_days=int(row["duration_days"]),
        max_sessions=row["max_sessions"],
        description=row["description"] or "",
        features=tuple(json.loads(row["features"] or "[]")),
        is_active=bool(row["is_active"]),
    )


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        status=row["status"],
        start_date=utils.parse_timestamp(row["start_date"]),
        end_date=utils.parse_timestamp(row["end_date"]),
        last_expiry_notification=normalize_marker(row["last_expiry_notification"]),
        plan_name=row["plan_name"] or "",
        max_sessions=row["max_sessions"],
    )


def get_plan(plan_id: str) -> Plan:
    row = db.fetch_one("SELECT * FROM plans WHERE id = ?", (plan_id,))
    if not row:
        raise ValueError(f"Unknown plan: {plan_id}")
    return row_to_plan(row)


def list_plans(active_only: bool = True) -> list[Plan]:
    sql = "SELECT * FROM plans"
    if active_only:
        sql += " WHERE is_active = 1"
    sql += " ORDER BY price ASC, id ASC"
    return [row_to_plan(r) for r in db.fetch_all(sql)]


def get_subscription(subscription_id: int) -> Subscription:
    row = db.fetch_one(_SELECT + " WHERE s.id = ?", (subscription_id,))
    if not row:
        raise ValueError(f"Subscription {subscription_id} not found")
    return row_to_subscription(row)


def list_subscriptions(status: str | None = None, user_id: int | None = None) -> list[Subscription]:
    sql = _SELECT + " WHERE 1=1"
    params = []
    if status:
        sql += " AND s.status = ?"
        params.append(status)
    if user_id is not None:
        sql += " AND s.user_id = ?"
        params.append(user_id)
    sql += " ORDER BY s.end_date ASC, s.id ASC"
    return [row_to_subscription(r) for r in db.fetch_all(sql, tuple(params))]


def get_current_subscription(user_id: int) -> Subscription | None:
    """Newest subscription still flagged active (or pending) for a member."""
    row = db.fetch_one(
        _SELECT + " WHERE s.user_id = ? AND s.status IN ('active','pending') ORDER BY s.id DESC LIMIT 1",
        (user_id,),
    )
    return row_to_subscription(row) if row else None


def _demote_others(conn, user_id: int, keep_id: int, now: datetime) -> None:
    rows = conn.execute(
        "SELECT id, end_date FROM subscriptions WHERE user_id = ? AND id != ? AND status IN ('active','pending')",
        (user_id, keep_id),
    ).fetchall()
    for row in rows:
        lapsed = has_lapsed(utils.parse_timestamp(row["end_date"]), now)
        new_status = Status.EXPIRED if lapsed else Status.CANCELLED
        conn.execute(
            "UPDATE subscriptions SET status = ?, updated_at = ? WHERE id = ?",
            (new_status, utils.format_timestamp(now), row["id"]),
        )
        logger.info(f"Subscription {row['id']} superseded by {keep_id} ({new_status})")


def insert_subscription(conn, user_id: int, plan: Plan, now: datetime) -> int:
    """
    Insert an active subscription on `plan` and demote the member's other
    active ones, on the caller's connection so both land in one transaction.
    """
    if not plan.is_active:
        raise ValueError(f"Plan {plan.id} is not available")
    end = plan_end_date(plan, now)
    cur = conn.execute(
        """
        INSERT INTO subscriptions(user_id, plan_id, status, start_date, end_date, max_sessions, updated_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (
            user_id,
            plan.id,
            Status.ACTIVE,
            utils.format_timestamp(now),
            utils.format_timestamp(end),
            plan.max_sessions,
            utils.format_timestamp(now),
        ),
    )
    sub_id = cur.lastrowid
    _demote_others(conn, user_id, sub_id, now)
    logger.info(f"Created subscription {sub_id} ({plan.id}) for member {user_id}, ends {end}")
    return sub_id


def create_subscription(user_id: int, plan_id: str, now: datetime) -> Subscription:
    """
    Start a plan for a member right now. Any other active subscription the
    member holds is demoted, never deleted.
    """
    plan = get_plan(plan_id)
    if not db.fetch_one("SELECT id FROM members WHERE id = ?", (user_id,)):
        raise ValueError(f"Member {user_id} not found")

    with db.get_conn() as conn:
        sub_id = insert_subscription(conn, user_id, plan, now)
    return get_subscription(sub_id)


def merged_quota(current: int | None, used: int, plan: Plan) -> int | None:
    """
    Session quota after renewing a running subscription onto `plan`: sessions
    already used plus whatever was left, plus the new plan's sessions.
    """
    if plan.max_sessions is None:
        return None
    left = max(0, current - used) if current is not None else 0
    return used + left + plan.max_sessions


def renew_subscription(subscription_id: int, now: datetime, plan_id: str | None = None) -> Subscription:
    """
    Extend a subscription by one plan period. A subscription that is still
    running extends from its current end and keeps its unused sessions; a
    lapsed one restarts from now with a fresh session quota.
    Changing the end date resets the expiry notification marker.
    """
    sub = get_subscription(subscription_id)
    if sub.status == Status.CANCELLED:
        raise ValueError(f"Subscription {subscription_id} is cancelled")
    plan = get_plan(plan_id or sub.plan_id)

    restarted = sub.end_date is None or has_lapsed(sub.end_date, now)
    base = now if restarted else sub.end_date
    new_end = plan_end_date(plan, base)
    if restarted:
        quota = plan.max_sessions
    else:
        quota = merged_quota(sub.max_sessions, sessions_in_window(sub), plan)

    params = [plan.id, Status.ACTIVE, utils.format_timestamp(new_end), quota, utils.format_timestamp(now)]
    sql = "UPDATE subscriptions SET plan_id = ?, status = ?, end_date = ?, max_sessions = ?, updated_at = ?"
    if new_end != sub.end_date:
        sql += ", last_expiry_notification = NULL, last_notified_at = NULL"
    if restarted:
        sql += ", start_date = ?"
        params.append(utils.format_timestamp(now))
    sql += " WHERE id = ?"
    params.append(subscription_id)
    db.execute(sql, tuple(params))

    logger.info(f"Renewed subscription {subscription_id} until {new_end}, sessions {quota or 'unlimited'}")
    return get_subscription(subscription_id)


def sessions_in_window(sub: Subscription) -> int:
    """Check-ins recorded against the subscription since its current start."""
    row = db.fetch_one(
        "SELECT COUNT(*) AS c FROM attendance WHERE subscription_id = ? AND check_in_time >= ?",
        (sub.id, utils.format_timestamp(sub.start_date)),
    )
    return int(row["c"])


def cancel_subscription(subscription_id: int, now: datetime) -> Subscription:
    get_subscription(subscription_id)
    db.execute(
        "UPDATE subscriptions SET status = ?, updated_at = ? WHERE id = ?",
        (Status.CANCELLED, utils.format_timestamp(now), subscription_id),
    )
    logger.info(f"Cancelled subscription {subscription_id}")
    return get_subscription(subscription_id)


def record_expiry_notification(subscription_id: int, marker: Marker, now: datetime) -> None:
    """
    Persist the last notified threshold. Writing the same marker twice is harmless.
    The "expired" marker also demotes the stored status.
    """
    params = [str(marker), utils.format_timestamp(now), utils.format_timestamp(now)]
    sql = "UPDATE subscriptions SET last_expiry_notification = ?, last_notified_at = ?, updated_at = ?"
    if marker == EXPIRED_MARKER:
        sql += ", status = ?"
        params.append(Status.EXPIRED)
    sql += " WHERE id = ?"
    params.append(subscription_id)
    db.execute(sql, tuple(params))


def clear_expiry_notification(subscription_id: int) -> None:
    db.execute(
        "UPDATE subscriptions SET last_expiry_notification = NULL, last_notified_at = NULL WHERE id = ?",
        (subscription_id,),
    )
