"""
notifications.py
Expiry notification messages and the senders that hand them to the push transport.

A sender is any callable `send(intent, title, body)` that raises DeliveryError
when the message could not be handed over.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable

import db
import members
import utils
from models import NotificationIntent, NotificationKind

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {
    NotificationKind.EXPIRING_SOON: "subscription_expiring_soon",
    NotificationKind.EXPIRED: "subscription_expired",
}

ACTION_URL = "/subscriptions"


class DeliveryError(Exception):
    """The notification could not be handed to the transport."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


def compose_message(intent: NotificationIntent, plan_name: str = "") -> tuple[str, str]:
    plan = f"{plan_name} subscription" if plan_name else "subscription"
    if intent.kind == NotificationKind.EXPIRED:
        return (
            "Subscription Expired",
            f"Your {plan} has expired. Please renew to continue using gym services.",
        )
    if intent.days_remaining == 1:
        return (
            "Subscription Expiring Tomorrow",
            f"Your {plan} expires in 1 day. Renew now to avoid interruption.",
        )
    return (
        "Subscription Expiring Soon",
        f"Your {plan} expires in {intent.days_remaining} days. "
        "Renew now to continue enjoying gym services.",
    )


def build_push_payload(token: str, title: str, body: str, data: dict | None = None) -> dict:
    """Push message as the transport expects it. Data values must all be strings."""
    clean = {}
    for key, value in (data or {}).items():
        if value is None:
            continue
        clean[str(key)] = str(value)
    return {"token": token, "title": title, "body": body, "data": clean}


def intent_data(intent: NotificationIntent) -> dict:
    return {
        "type": NOTIFICATION_TYPES[intent.kind],
        "subscriptionId": intent.subscription_id,
        "userId": intent.user_id,
        "daysRemaining": intent.days_remaining,
        "actionUrl": ACTION_URL,
    }


class OutboxSender:
    """
    Writes the notification into the `notifications` table; the push transport
    picks new rows up from there.
    """

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self, intent: NotificationIntent, title: str, body: str) -> int:
        try:
            return db.execute(
                """
                INSERT INTO notifications(user_id, subscription_id, type, title, message, priority, action_url, read, created_at)
                VALUES(?,?,?,?,?,?,?,?,?)
                """,
                (
                    intent.user_id,
                    intent.subscription_id,
                    NOTIFICATION_TYPES[intent.kind],
                    title,
                    body,
                    "high",
                    ACTION_URL,
                    0,
                    utils.format_timestamp(self.now),
                ),
            )
        except sqlite3.Error as e:
            raise DeliveryError(f"Could not queue notification: {e}") from e


class PushSender:
    """
    Sends straight to a push transport callable `transport(payload)` using the
    member's stored push token.
    """

    def __init__(self, transport: Callable[[dict], object]):
        self.transport = transport

    def __call__(self, intent: NotificationIntent, title: str, body: str):
        member = members.get_member(intent.user_id)
        if not member.push_token:
            logger.warning(f"No push token for member {intent.user_id}, token may need to be refreshed")
            raise DeliveryError(f"No push token for member {intent.user_id}", retryable=False)
        payload = build_push_payload(member.push_token, title, body, intent_data(intent))
        try:
            return self.transport(payload)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Push transport failed: {e}") from e


def list_notifications(user_id: int | None = None, unread_only: bool = False):
    sql = "SELECT * FROM notifications WHERE 1=1"
    params = []
    if user_id is not None:
        sql += " AND user_id = ?"
        params.append(user_id)
    if unread_only:
        sql += " AND read = 0"
    sql += " ORDER BY created_at DESC, id DESC"
    return db.fetch_all(sql, tuple(params))
