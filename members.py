"""
members.py
Member registration and lookups.
"""

from __future__ import annotations

import logging
from datetime import datetime

import db
import subscriptions
import utils
from models import Member

logger = logging.getLogger(__name__)


def row_to_member(row) -> Member:
    return Member(
        id=row["id"],
        full_name=row["full_name"],
        phone=row["phone"],
        push_token=row["push_token"],
        join_date=row["join_date"],
    )


def register_member(
    full_name: str,
    phone: str,
    now: datetime,
    push_token: str | None = None,
    plan_id: str | None = None,
) -> Member:
    """
    Add a member; when `plan_id` is given their subscription starts right away.
    Raises ValueError with every validation problem joined.
    """
    errors = utils.validate_member_inputs(full_name, phone)
    plan = None
    if plan_id is not None:
        try:
            plan = subscriptions.get_plan(plan_id)
        except ValueError as e:
            errors.append(str(e))
        else:
            if not plan.is_active:
                errors.append(f"Plan {plan_id} is not available")
    if errors:
        raise ValueError(" ".join(errors))

    # Member and first subscription are committed together or not at all
    with db.get_conn() as conn:
        cur = conn.execute(
            "INSERT INTO members(full_name, phone, push_token, join_date) VALUES(?,?,?,?)",
            (full_name.strip(), phone.strip(), push_token, now.date().isoformat()),
        )
        member_id = cur.lastrowid
        if plan is not None:
            subscriptions.insert_subscription(conn, member_id, plan, now)
    logger.info(f"Registered member {member_id}")
    return get_member(member_id)


def get_member(member_id: int) -> Member:
    row = db.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
    if not row:
        raise ValueError(f"Member {member_id} not found")
    return row_to_member(row)


def list_members(search: str = "") -> list[Member]:
    sql = "SELECT * FROM members WHERE 1=1"
    params = []
    if search.strip():
        sql += " AND (full_name LIKE ? OR phone LIKE ?)"
        like = f"%{search.strip()}%"
        params.extend([like, like])
    sql += " ORDER BY full_name ASC"
    return [row_to_member(r) for r in db.fetch_all(sql, tuple(params))]


def set_push_token(member_id: int, token: str | None) -> None:
    get_member(member_id)
    db.execute("UPDATE members SET push_token = ? WHERE id = ?", (token or None, member_id))
