from datetime import date, datetime, timedelta, timezone

import subscriptions
import utils
from models import Status, Subscription


def test_timestamps():
    assert utils.parse_timestamp(None) is None
    assert utils.parse_timestamp("2025-02-01") == datetime(2025, 2, 1)
    assert utils.format_timestamp(date(2025, 2, 1)) == "2025-02-01T00:00:00"
    assert utils.format_timestamp(datetime(2025, 2, 1, 9, 30, 15, 999)) == "2025-02-01T09:30:15"


def test_validate_member_inputs():
    assert utils.validate_member_inputs("Ahmed", "+201000000001") == []
    assert utils.validate_member_inputs(" ", "abc") == ["Full name is required.", "Phone must contain digits only."]


def test_report_shows_effective_status_next_to_stored_flag():
    now = datetime(2025, 1, 29)
    subs = [
        Subscription(1, 7, "monthly", Status.ACTIVE, datetime(2025, 1, 1), datetime(2025, 1, 20)),
        Subscription(2, 8, "monthly", Status.ACTIVE, datetime(2025, 1, 1), datetime(2025, 2, 1)),
    ]
    df = utils.subscription_report(subs, now)
    assert list(df.columns) == utils.REPORT_COLUMNS
    assert df["effective_status"].tolist() == [Status.EXPIRED, Status.ACTIVE]
    assert df["days_remaining"].tolist() == [0, 3]
    assert utils.status_counts(subs, now) == {Status.EXPIRED: 1, Status.ACTIVE: 1}


def test_empty_frames_keep_columns():
    assert list(utils.subscription_report([], datetime(2025, 1, 1)).columns) == utils.REPORT_COLUMNS
    assert utils.intents_frame([]).empty
    assert utils.status_counts([], datetime(2025, 1, 1)) == {}


def test_csv_export(fresh_db, now):
    utils.insert_sample_data(now)
    df = utils.subscription_report(subscriptions.list_subscriptions(), now)
    csv = utils.frame_to_csv_bytes(df).decode("utf-8")
    assert csv.splitlines()[0] == ",".join(utils.REPORT_COLUMNS)
    assert len(csv.splitlines()) == 4
    assert sorted(df["effective_status"].tolist()) == [Status.ACTIVE, Status.ACTIVE, Status.EXPIRED]


def test_utc_now_is_naive_utc_to_the_second():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    value = utils.utc_now()
    assert value.tzinfo is None
    assert value.microsecond == 0
    assert before - timedelta(seconds=1) <= value <= before + timedelta(seconds=5)
