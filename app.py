"""
app.py
Streamlit operator console for gym subscriptions.
Run: streamlit run app.py
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime

import pandas as pd
import streamlit as st

import attendance
import db
import expiry_job
import members
import notifications
import subscriptions
import utils
from lifecycle import days_remaining, effective_status
from models import EXPIRY_THRESHOLDS, Status

st.set_page_config(page_title="Gym Subscriptions", layout="wide")


def init_once():
    if "db_ready" not in st.session_state:
        db.init_db()
        st.session_state.db_ready = True


def current_time() -> datetime:
    return utils.utc_now()


def dashboard_page():
    st.header("📊 Dashboard")

    now = current_time()
    subs = subscriptions.list_subscriptions()
    counts = utils.status_counts(subs, now)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Active", counts.get(Status.ACTIVE, 0))
    c2.metric("Expired", counts.get(Status.EXPIRED, 0))
    c3.metric("Pending", counts.get(Status.PENDING, 0))
    c4.metric("Cancelled", counts.get(Status.CANCELLED, 0))

    st.divider()

    window = max(EXPIRY_THRESHOLDS)
    st.subheader(f"Expiring soon (next {window} days)")
    soon = [
        s for s in subs
        if effective_status(s, now) == Status.ACTIVE and s.end_date and days_remaining(s.end_date, now) <= window
    ]
    if soon:
        st.dataframe(utils.subscription_report(soon, now), use_container_width=True, hide_index=True)
    else:
        st.caption(f"No subscriptions expiring in the next {window} days.")


def subscriptions_page():
    st.header("🎫 Subscriptions")

    now = current_time()
    with st.sidebar:
        st.subheader("Filters")
        status_filter = st.selectbox("Stored status", ["All"] + list(Status.ALL))

    subs = subscriptions.list_subscriptions(status=None if status_filter == "All" else status_filter)
    df = utils.subscription_report(subs, now)
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    ids = df["id"].tolist() if not df.empty else []
    selected = st.selectbox("Subscription ID", options=["(none)"] + [str(i) for i in ids])
    if selected == "(none)":
        return

    sub_id = int(selected)
    plans = subscriptions.list_plans()
    c1, c2 = st.columns(2)
    with c1:
        plan_id = st.selectbox("Renew on plan", [p.id for p in plans])
        if st.button("Renew", type="primary"):
            try:
                sub = subscriptions.renew_subscription(sub_id, now, plan_id=plan_id)
                st.success(f"Renewed until {utils.format_timestamp(sub.end_date)}.")
                st.rerun()
            except ValueError as e:
                st.error(str(e))
    with c2:
        confirm = st.checkbox("Confirm cancel", value=False)
        if st.button("Cancel subscription", disabled=not confirm):
            subscriptions.cancel_subscription(sub_id, now)
            st.success("Subscription cancelled.")
            st.rerun()


def members_page():
    st.header("👥 Members")

    search = st.text_input("Search (name/phone)")
    rows = members.list_members(search)
    df = pd.DataFrame([asdict(m) for m in rows]) if rows else pd.DataFrame(
        columns=["id", "full_name", "phone", "push_token", "join_date"]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()
    st.subheader("➕ Register member")

    plans = subscriptions.list_plans()
    col1, col2 = st.columns(2)
    with col1:
        full_name = st.text_input("Full name")
        phone = st.text_input("Phone")
    with col2:
        plan_id = st.selectbox("Plan", ["(none)"] + [p.id for p in plans])
        push_token = st.text_input("Push token (optional)")

    if st.button("Register", type="primary"):
        try:
            m = members.register_member(
                full_name,
                phone,
                current_time(),
                push_token=push_token.strip() or None,
                plan_id=None if plan_id == "(none)" else plan_id,
            )
            st.success(f"Member {m.id} registered.")
            st.rerun()
        except ValueError as e:
            st.error(str(e))


def check_in_page():
    st.header("📷 Check-in")

    qr_value = st.text_input("Scanned QR value")
    if st.button("Check in", type="primary"):
        result = attendance.check_in(qr_value, current_time())
        if result.allowed:
            st.success(f"{result.reason} Sessions used: {result.sessions_used}")
        else:
            st.error(result.reason)

    member_id = st.number_input("Attendance history for member", min_value=0, step=1)
    if member_id:
        rows = attendance.attendance_history(int(member_id))
        if rows:
            st.dataframe(pd.DataFrame([dict(r) for r in rows]), use_container_width=True, hide_index=True)
        else:
            st.caption("No check-ins yet.")


def expiry_page():
    st.header("⏰ Expiry Notifications")

    now = current_time()
    st.caption(f"Evaluated at {now.isoformat()} UTC")

    c1, c2, c3 = st.columns(3)
    result = None
    with c1:
        if st.button("Dry run"):
            result = expiry_job.run_expiry_check(now, dry_run=True)
    with c2:
        if st.button("Run now", type="primary"):
            result = expiry_job.run_expiry_check(now)
    with c3:
        if st.button("Reset markers"):
            n = expiry_job.reset_expiry_notifications(now)
            st.info(f"Reset {n} subscriptions.")

    if result is not None:
        st.write(
            f"Checked **{result.checked}** | Sent **{result.sent}** | "
            f"Skipped **{result.skipped}** | Failed **{result.failed}**"
        )
        df = utils.intents_frame(result.intents)
        st.dataframe(df, use_container_width=True, hide_index=True)
        st.download_button(
            "Download notifications.csv",
            data=utils.frame_to_csv_bytes(df),
            file_name="notifications.csv",
            mime="text/csv",
        )

    st.divider()

    st.subheader("Outbox")
    rows = notifications.list_notifications()
    if rows:
        st.dataframe(pd.DataFrame([dict(r) for r in rows]), use_container_width=True, hide_index=True)
        st.download_button(
            "Download outbox.csv",
            data=utils.notifications_to_csv_bytes(rows),
            file_name="outbox.csv",
            mime="text/csv",
        )
    else:
        st.caption("No notifications queued.")


def plans_page():
    st.header("📋 Plans")

    plans = subscriptions.list_plans(active_only=False)
    df = pd.DataFrame(
        [
            {
                "id": p.id,
                "name": p.name,
                "price": p.price,
                "period": p.period,
                "max_sessions": p.max_sessions if p.max_sessions is not None else "unlimited",
                "description": p.description,
                "active": p.is_active,
            }
            for p in plans
        ]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()
    st.caption("Insert 3 sample members with subscriptions (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(current_time())
        st.success("Sample data inserted.")
        st.rerun()


def main_app():
    st.sidebar.title("🏋️ Gym Subscriptions")

    pages = ["Dashboard", "Subscriptions", "Members", "Check-in", "Expiry", "Plans"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Subscriptions":
        subscriptions_page()
    elif st.session_state.page == "Members":
        members_page()
    elif st.session_state.page == "Check-in":
        check_in_page()
    elif st.session_state.page == "Expiry":
        expiry_page()
    elif st.session_state.page == "Plans":
        plans_page()


# --------- App entry ---------

def run():
    init_once()
    main_app()


if __name__ == "__main__":
    run()
