"""Monthly digest - every payment of the month, sent on the 1st."""

import logging
from datetime import date, datetime
from typing import Iterable

from subnotifier.bot.formatters import format_monthly_digest
from subnotifier.db.models import Subscription, User
from subnotifier.db.repository import Repository
from subnotifier.engine.gateway import DeliveryGateway, deliver
from subnotifier.engine.recurrence import (
    MonthlyDigest,
    Occurrence,
    filter_schedulable,
    occurrence_within_month,
)
from subnotifier.utils.time_utils import format_hhmm, same_month, to_midnight

logger = logging.getLogger(__name__)


def is_digest_due(user: User, now: datetime) -> bool:
    """Check every gate for sending ``user`` their monthly digest at ``now``.

    The digest goes out on the 1st, at the user's notification minute, to
    connected users who opted in and have not had one this month.
    """
    if now.day != 1:
        return False
    if not user.is_connected or not user.monthly_notifications_enabled:
        return False
    if user.notification_time != format_hhmm(now):
        return False
    return not same_month(user.last_monthly_notification_sent, now)


def select_monthly_digest(
    subscriptions: Iterable[Subscription], today: date | datetime
) -> MonthlyDigest:
    """Project every subscription onto ``today``'s month.

    Per-subscription notification settings are ignored here. Payments before
    today's midnight count as paid, the rest as upcoming.
    """
    midnight = to_midnight(today).replace(tzinfo=None)
    digest = MonthlyDigest(month=midnight.month, year=midnight.year)

    for sub in subscriptions:
        try:
            payment_date = occurrence_within_month(
                sub.anchor_date, sub.cycle, digest.month, digest.year
            )
        except ValueError as e:
            logger.warning(f"Skipping subscription {sub.id}: {e}")
            continue

        if payment_date is None:
            continue

        item = Occurrence(subscription=sub, date=payment_date)
        if to_midnight(payment_date) < midnight:
            digest.paid.append(item)
        else:
            digest.upcoming.append(item)

    digest.paid.sort(key=lambda i: i.date)
    digest.upcoming.sort(key=lambda i: i.date)
    return digest


async def check_monthly_digests(
    gateway: DeliveryGateway, repo: Repository, now: datetime | None = None
) -> int:
    """Send the monthly digest to every user due for it at ``now``.

    Runs every tick; does nothing unless today is the 1st.

    Returns:
        Number of digests delivered
    """
    if now is None:
        now = datetime.now()

    if now.day != 1:
        return 0

    current_time = format_hhmm(now)

    try:
        users = await repo.get_users_by_notification_time(current_time)
    except Exception as e:
        logger.error(f"Could not load users for monthly digest at {current_time}: {e}")
        return 0

    due_users = [user for user in users if is_digest_due(user, now)]
    if not due_users:
        return 0

    logger.info(f"Monthly digest: {len(due_users)} users due at {current_time}")

    sent = 0
    for user in due_users:
        try:
            if await _send_digest(gateway, repo, user, now):
                sent += 1
        except Exception as e:
            logger.error(f"Error processing monthly digest for user {user.id}: {e}")
            continue

    return sent


async def _send_digest(
    gateway: DeliveryGateway, repo: Repository, user: User, now: datetime
) -> bool:
    subscriptions = await repo.get_subscriptions_by_user(user.id)  # type: ignore
    categories = {c.id: c for c in await repo.get_categories(user.id)}  # type: ignore

    digest = select_monthly_digest(filter_schedulable(subscriptions, categories), now)
    if digest.is_empty:
        logger.debug(f"No payments this month for user {user.id}, digest skipped")
        return False

    message = format_monthly_digest(digest, categories, now.date())

    if not await deliver(gateway, user.telegram_chat_id, message):
        logger.error(f"Failed to deliver monthly digest to user {user.id}, will retry")
        return False

    logger.info(
        f"Sent monthly digest to user {user.id} ({len(digest.all)} subscriptions)"
    )

    try:
        await repo.mark_monthly_notification_sent(user.id, now)  # type: ignore
    except Exception as e:
        logger.error(
            f"Digest sent to user {user.id} but marker update failed "
            f"(may be sent again): {e}"
        )

    return True
