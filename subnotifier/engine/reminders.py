"""Lead-time reminders - the per-minute check for payments N days away."""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List

from subnotifier.bot.formatters import format_reminder_message
from subnotifier.db.models import Subscription, User
from subnotifier.db.repository import Repository
from subnotifier.engine.gateway import DeliveryGateway, deliver
from subnotifier.engine.recurrence import (
    Occurrence,
    days_until,
    filter_schedulable,
    next_occurrence,
)
from subnotifier.utils.time_utils import format_hhmm, same_day, to_midnight

logger = logging.getLogger(__name__)


def is_reminder_time(user: User, now: datetime) -> bool:
    """Check if the user is connected and ``now`` is their notification minute."""
    return user.is_connected and user.notification_time == format_hhmm(now)


def select_due_reminders(
    subscriptions: Iterable[Subscription], now: datetime
) -> Dict[int, List[Occurrence]]:
    """Pick the subscriptions that need a reminder today.

    A subscription qualifies when the number of days until its next payment is
    one of its lead days, and it has not been reminded about yet today.

    Returns:
        Matched lead-day value -> occurrences, one message per key
    """
    today = to_midnight(now)
    groups: Dict[int, List[Occurrence]] = defaultdict(list)

    for sub in subscriptions:
        if not sub.notifications_enabled or not sub.notify_days_before:
            continue

        # At most one reminder per subscription per calendar day
        if same_day(sub.last_notification_sent, now):
            continue

        try:
            next_date = next_occurrence(sub.anchor_date, sub.cycle, today)
        except ValueError as e:
            logger.warning(f"Skipping subscription {sub.id}: {e}")
            continue

        if next_date is None:
            continue

        days = days_until(next_date, today)
        if days in sub.notify_days_before:
            groups[days].append(Occurrence(subscription=sub, date=next_date))

    return dict(groups)


async def check_due_reminders(
    gateway: DeliveryGateway, repo: Repository, now: datetime | None = None
) -> int:
    """Send lead-time reminders to every user whose notification minute is now.

    Returns:
        Number of messages delivered
    """
    if now is None:
        now = datetime.now()

    current_time = format_hhmm(now)

    try:
        users = await repo.get_users_by_notification_time(current_time)
    except Exception as e:
        logger.error(f"Could not load users for {current_time}: {e}")
        return 0

    if not users:
        return 0

    logger.info(f"Reminders: {len(users)} users to check at {current_time}")

    sent = 0
    for user in users:
        if not is_reminder_time(user, now):
            continue
        try:
            sent += await _remind_user(gateway, repo, user, now)
        except Exception as e:
            logger.error(f"Error processing reminders for user {user.id}: {e}")
            continue

    return sent


async def _remind_user(
    gateway: DeliveryGateway, repo: Repository, user: User, now: datetime
) -> int:
    subscriptions = await repo.get_subscriptions_by_user(
        user.id, notifications_only=True  # type: ignore
    )
    if not subscriptions:
        return 0

    categories = {c.id: c for c in await repo.get_categories(user.id)}  # type: ignore
    groups = select_due_reminders(filter_schedulable(subscriptions, categories), now)

    sent = 0
    for days, items in sorted(groups.items()):
        message = format_reminder_message(days, items, categories)

        if not await deliver(gateway, user.telegram_chat_id, message):
            logger.error(
                f"Failed to deliver {days}-day reminder to user {user.id} "
                f"for {len(items)} subscriptions, will retry next tick"
            )
            continue

        sent += 1
        logger.info(
            f"Sent {days}-day reminder to user {user.id} for {len(items)} subscriptions"
        )

        try:
            await repo.mark_subscriptions_notified(
                [item.subscription.id for item in items], now  # type: ignore
            )
        except Exception as e:
            logger.error(
                f"Reminder sent to user {user.id} but marker update failed "
                f"(may be sent again): {e}"
            )

    return sent
