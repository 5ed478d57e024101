"""
expiry_job.py
Daily subscription expiry check (run from cron, e.g. "0 9 * * *" UTC).

    python expiry_job.py                 # check now, queue notifications
    python expiry_job.py --dry-run       # only print what would be sent
    python expiry_job.py --now 2025-01-29T09:00:00
    python expiry_job.py --reset [ID]    # clear markers so warnings fire again

Markers are persisted only after a notification was handed over, so a failed
write means the warning goes out again on the next run, never that it is lost.
"""

from __future__ import annotations

import argparse
import logging
import time
from datetime import datetime

import db
import subscriptions
import utils
from lifecycle import days_remaining, has_lapsed, should_notify
from models import EXPIRY_THRESHOLDS, ExpiryRunResult, Status
from notifications import DeliveryError, OutboxSender, compose_message

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 0.5


def _send_with_retry(sender, intent, title, body, max_attempts: int, backoff: float, sleep=time.sleep):
    attempt = 1
    while True:
        try:
            return sender(intent, title, body)
        except DeliveryError as e:
            if not e.retryable or attempt >= max_attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                f"Delivery failed for subscription {intent.subscription_id} "
                f"(attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s: {e}"
            )
            sleep(delay)
            attempt += 1


def run_expiry_check(
    now: datetime,
    sender=None,
    dry_run: bool = False,
    max_attempts: int = MAX_ATTEMPTS,
    backoff: float = BACKOFF_SECONDS,
    sleep=time.sleep,
) -> ExpiryRunResult:
    if sender is None:
        sender = OutboxSender(now)

    result = ExpiryRunResult()
    active = subscriptions.list_subscriptions(status=Status.ACTIVE)
    logger.info(f"Found {len(active)} active subscriptions to check")

    for sub in active:
        result.checked += 1
        if sub.end_date is None or sub.user_id is None:
            logger.info(f"Skipping subscription {sub.id}: missing end date or member")
            result.skipped += 1
            continue

        intent = should_notify(sub, now)
        if intent is None:
            result.skipped += 1
            continue

        result.intents.append(intent)
        if dry_run:
            continue

        title, body = compose_message(intent, sub.plan_name)
        try:
            _send_with_retry(sender, intent, title, body, max_attempts, backoff, sleep)
            subscriptions.record_expiry_notification(sub.id, intent.marker, now)
        except Exception:
            # one bad record must not stop the batch
            logger.exception(f"Error processing subscription {sub.id}")
            result.failed += 1
            continue

        result.sent += 1
        logger.info(f"Sent {intent.kind} notification to member {sub.user_id} ({intent.days_remaining} days remaining)")

    logger.info(
        f"Subscription expiry check completed: sent={result.sent} "
        f"skipped={result.skipped} failed={result.failed}"
    )
    return result


def reset_expiry_notifications(now: datetime, subscription_id: int | None = None) -> int:
    """
    Clear expiry markers so the warnings can fire again. With no id, clears every
    active subscription inside the warning window (or already lapsed).
    """
    if subscription_id is not None:
        subscriptions.get_subscription(subscription_id)
        subscriptions.clear_expiry_notification(subscription_id)
        logger.info(f"Reset expiry marker for subscription {subscription_id}")
        return 1

    count = 0
    for sub in subscriptions.list_subscriptions(status=Status.ACTIVE):
        if sub.end_date is None:
            continue
        if has_lapsed(sub.end_date, now) or days_remaining(sub.end_date, now) <= max(EXPIRY_THRESHOLDS):
            subscriptions.clear_expiry_notification(sub.id)
            count += 1
    logger.info(f"Reset expiry markers on {count} subscriptions")
    return count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check subscriptions and queue expiry notifications.")
    parser.add_argument("--now", help="ISO timestamp to evaluate at (default: current UTC time)")
    parser.add_argument("--dry-run", action="store_true", help="Report notifications without sending")
    parser.add_argument(
        "--reset",
        nargs="?",
        const="all",
        metavar="ID",
        help="Clear expiry markers (one subscription id, or all in the warning window)",
    )
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    now = utils.parse_timestamp(args.now) if args.now else utils.utc_now()

    db.init_db()

    if args.reset:
        sub_id = None if args.reset == "all" else int(args.reset)
        reset_expiry_notifications(now, sub_id)
        return 0

    result = run_expiry_check(now, dry_run=args.dry_run)
    for intent in result.intents:
        print(f"{intent.subscription_id}\t{intent.user_id}\t{intent.kind}\t{intent.days_remaining}")
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
