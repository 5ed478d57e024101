"""
db.py
SQLite helpers + initialization (creates DB/tables, seeds the plan catalog).
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from models import DEFAULT_PLANS

logger = logging.getLogger(__name__)

DB_FILE = Path(os.environ.get("GYM_DB_FILE", Path(__file__).with_name("gym.db")))


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    with get_conn() as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS plans (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            price REAL NOT NULL,
            period TEXT NOT NULL CHECK(period IN ('day','month')),
            duration_days INTEGER NOT NULL DEFAULT 1,
            max_sessions INTEGER,
            description TEXT,
            features TEXT NOT NULL DEFAULT '[]',
            is_active INTEGER NOT NULL DEFAULT 1
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            full_name TEXT NOT NULL,
            phone TEXT NOT NULL,
            push_token TEXT,
            join_date TEXT NOT NULL
        )
        """
    )

    # Rows are never deleted; old subscriptions are demoted instead
    execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            plan_id TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('active','expired','cancelled','pending')),
            start_date TEXT NOT NULL,
            end_date TEXT,
            last_expiry_notification TEXT,
            last_notified_at TEXT,
            max_sessions INTEGER,
            updated_at TEXT,
            FOREIGN KEY(user_id) REFERENCES members(id),
            FOREIGN KEY(plan_id) REFERENCES plans(id)
        )
        """
    )

    # Databases created before per-subscription quotas
    with get_conn() as conn:
        cols = {r["name"] for r in conn.execute("PRAGMA table_info(subscriptions)")}
        if "max_sessions" not in cols:
            conn.execute("ALTER TABLE subscriptions ADD COLUMN max_sessions INTEGER")
            conn.execute(
                "UPDATE subscriptions SET max_sessions = (SELECT p.max_sessions FROM plans p WHERE p.id = subscriptions.plan_id)"
            )

    # Outbox read by the push transport
    execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            subscription_id INTEGER,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'normal',
            action_url TEXT,
            read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS attendance (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            subscription_id INTEGER NOT NULL,
            check_in_time TEXT NOT NULL,
            qr_value TEXT,
            FOREIGN KEY(user_id) REFERENCES members(id),
            FOREIGN KEY(subscription_id) REFERENCES subscriptions(id)
        )
        """
    )


def seed_plans(plans=DEFAULT_PLANS) -> None:
    """
    Upsert the plan catalog. Safe to run any number of times: existing plans
    get their price/description refreshed, ids never change.
    """
    executemany(
        """
        INSERT INTO plans(id, name, price, period, duration_days, max_sessions, description, features, is_active)
        VALUES(?,?,?,?,?,?,?,?,?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name, price=excluded.price, period=excluded.period,
            duration_days=excluded.duration_days, max_sessions=excluded.max_sessions,
            description=excluded.description, features=excluded.features,
            is_active=excluded.is_active
        """,
        [
            (
                p.id,
                p.name,
                p.price,
                p.period,
                p.duration_days,
                p.max_sessions,
                p.description,
                json.dumps(list(p.features)),
                int(p.is_active),
            )
            for p in plans
        ],
    )
    logger.info(f"Seeded {len(plans)} subscription plans")


def init_db() -> None:
    """
    Initialize the database.
    - Create tables
    - Seed the default plan catalog
    """
    _create_tables()
    seed_plans()
