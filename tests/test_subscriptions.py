import sqlite3
from datetime import datetime, timedelta

import pytest

import db
import members
import subscriptions
from models import Plan, Status


def test_init_db_is_rerunnable(fresh_db):
    fresh_db.init_db()
    fresh_db.init_db()
    plans = subscriptions.list_plans()
    assert sorted(p.id for p in plans) == ["coaching-group", "coaching-solo", "monthly", "walkin"]
    solo = subscriptions.get_plan("coaching-solo")
    assert solo.max_sessions == 10
    assert subscriptions.get_plan("monthly").max_sessions is None


def test_seed_refreshes_admin_fields(fresh_db):
    db.execute("UPDATE plans SET price = 1 WHERE id = 'monthly'")
    db.seed_plans()
    assert subscriptions.get_plan("monthly").price == 850.0


def test_unknown_plan(fresh_db):
    with pytest.raises(ValueError):
        subscriptions.get_plan("platinum")


def test_register_with_plan_creates_month_subscription(fresh_db):
    now = datetime(2024, 1, 31, 10, 0)
    m = members.register_member("Ahmed Hassan", "01000000001", now, plan_id="monthly")
    sub = subscriptions.get_current_subscription(m.id)
    assert sub.status == Status.ACTIVE
    assert sub.start_date == now
    assert sub.end_date == datetime(2024, 2, 29, 10, 0)
    assert sub.plan_name == "Monthly Plan"
    assert sub.last_expiry_notification is None


def test_register_rejects_bad_input(fresh_db, now):
    with pytest.raises(ValueError) as exc:
        members.register_member("", "", now)
    assert "Full name is required." in str(exc.value)
    with pytest.raises(ValueError):
        members.register_member("Mona Ali", "0100", now, plan_id="nope")
    assert members.list_members() == []


def test_new_subscription_demotes_old_one(fresh_db, now):
    m = members.register_member("Mona Ali", "01000000002", now, plan_id="monthly")
    old = subscriptions.get_current_subscription(m.id)

    new = subscriptions.create_subscription(m.id, "coaching-group", now + timedelta(days=3))

    assert subscriptions.get_subscription(old.id).status == Status.CANCELLED
    assert subscriptions.get_current_subscription(m.id).id == new.id
    # never hard-deleted
    assert len(subscriptions.list_subscriptions(user_id=m.id)) == 2


def test_lapsed_subscription_is_demoted_to_expired(fresh_db, now):
    m = members.register_member("Omar Samy", "01000000003", now, plan_id="walkin")
    old = subscriptions.get_current_subscription(m.id)
    subscriptions.create_subscription(m.id, "monthly", now + timedelta(days=5))
    assert subscriptions.get_subscription(old.id).status == Status.EXPIRED


def test_create_subscription_for_unknown_member(fresh_db, now):
    with pytest.raises(ValueError):
        subscriptions.create_subscription(999, "monthly", now)


def test_renew_running_subscription_extends_from_end_and_clears_marker(fresh_db):
    start = datetime(2025, 1, 1, 9, 0)
    m = members.register_member("Ahmed Hassan", "01000000001", start, plan_id="monthly")
    sub = subscriptions.get_current_subscription(m.id)
    subscriptions.record_expiry_notification(sub.id, 3, datetime(2025, 1, 29))

    renewed = subscriptions.renew_subscription(sub.id, datetime(2025, 1, 29, 12, 0))

    assert renewed.start_date == start
    assert renewed.end_date == datetime(2025, 3, 1, 9, 0)
    assert renewed.last_expiry_notification is None
    assert renewed.status == Status.ACTIVE


def test_renew_lapsed_subscription_restarts_now(fresh_db):
    m = members.register_member("Ahmed Hassan", "01000000001", datetime(2025, 1, 1), plan_id="monthly")
    sub = subscriptions.get_current_subscription(m.id)
    subscriptions.record_expiry_notification(sub.id, "expired", datetime(2025, 2, 2))
    assert subscriptions.get_subscription(sub.id).status == Status.EXPIRED

    now = datetime(2025, 2, 10, 8, 0)
    renewed = subscriptions.renew_subscription(sub.id, now)
    assert renewed.start_date == now
    assert renewed.end_date == datetime(2025, 3, 10, 8, 0)
    assert renewed.status == Status.ACTIVE
    assert renewed.last_expiry_notification is None


def test_cancelled_subscription_cannot_be_renewed(fresh_db, now):
    m = members.register_member("Ahmed Hassan", "01000000001", now, plan_id="monthly")
    sub = subscriptions.get_current_subscription(m.id)
    subscriptions.cancel_subscription(sub.id, now)
    with pytest.raises(ValueError):
        subscriptions.renew_subscription(sub.id, now)


def test_record_marker_roundtrips_through_storage(fresh_db, now):
    m = members.register_member("Ahmed Hassan", "01000000001", now, plan_id="monthly")
    sub = subscriptions.get_current_subscription(m.id)

    subscriptions.record_expiry_notification(sub.id, 2, now)
    assert subscriptions.get_subscription(sub.id).last_expiry_notification == 2

    subscriptions.clear_expiry_notification(sub.id)
    assert subscriptions.get_subscription(sub.id).last_expiry_notification is None


def test_register_on_inactive_plan_leaves_no_member(fresh_db, now):
    db.execute("UPDATE plans SET is_active = 0 WHERE id = 'coaching-solo'")
    with pytest.raises(ValueError) as exc:
        members.register_member("Mona Ali", "01000000002", now, plan_id="coaching-solo")
    assert "not available" in str(exc.value)
    assert members.list_members() == []
    assert subscriptions.list_subscriptions() == []


def test_failed_subscription_insert_rolls_back_registration(fresh_db, now):
    db.execute(
        """
        CREATE TRIGGER refuse_subscriptions BEFORE INSERT ON subscriptions
        BEGIN SELECT RAISE(ABORT, 'store unavailable'); END
        """
    )
    with pytest.raises(sqlite3.DatabaseError):
        members.register_member("Mona Ali", "01000000002", now, plan_id="monthly")
    assert members.list_members() == []


def test_failed_demotion_keeps_previous_subscription(fresh_db, now):
    m = members.register_member("Mona Ali", "01000000002", now, plan_id="monthly")
    old = subscriptions.get_current_subscription(m.id)
    db.execute(
        """
        CREATE TRIGGER refuse_demotion BEFORE UPDATE OF status ON subscriptions
        BEGIN SELECT RAISE(ABORT, 'store unavailable'); END
        """
    )

    with pytest.raises(sqlite3.DatabaseError):
        subscriptions.create_subscription(m.id, "coaching-group", now + timedelta(days=3))

    subs = subscriptions.list_subscriptions(user_id=m.id)
    assert [s.id for s in subs] == [old.id]
    assert subs[0].status == Status.ACTIVE
    assert subscriptions.get_current_subscription(m.id).id == old.id


def test_new_subscription_takes_quota_from_plan(fresh_db, now):
    m = members.register_member("Mona Ali", "01000000002", now, plan_id="coaching-solo")
    assert subscriptions.get_current_subscription(m.id).max_sessions == 10
    monthly = subscriptions.create_subscription(m.id, "monthly", now)
    assert monthly.max_sessions is None


def test_merged_quota_keeps_unused_sessions():
    plan = Plan("coaching-solo", "Solo", 1.0, "month", max_sessions=10)
    unlimited = Plan("monthly", "Monthly", 1.0, "month")
    assert subscriptions.merged_quota(10, 4, plan) == 20
    assert subscriptions.merged_quota(10, 10, plan) == 20
    assert subscriptions.merged_quota(None, 3, plan) == 13
    assert subscriptions.merged_quota(10, 4, unlimited) is None
