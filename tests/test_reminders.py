"""Tests for lead-time reminders."""

import asyncio
from datetime import date, datetime

from subnotifier.db.models import Category, Subscription, User
from subnotifier.engine.reminders import (
    check_due_reminders,
    is_reminder_time,
    select_due_reminders,
)


def test_select_due_reminders_matches_lead_day(make_subscription):
    sub = make_subscription(notify_days_before=[1, 3, 7])
    now = datetime(2024, 2, 12, 10, 0)  # 3 days before Feb 15

    groups = select_due_reminders([sub], now)

    assert list(groups) == [3]
    assert groups[3][0].subscription is sub
    assert groups[3][0].date == date(2024, 2, 15)


def test_select_due_reminders_no_match(make_subscription):
    sub = make_subscription(notify_days_before=[1, 7])
    assert select_due_reminders([sub], datetime(2024, 2, 12, 10, 0)) == {}


def test_select_due_reminders_dedupe(make_subscription):
    now = datetime(2024, 2, 12, 10, 0)

    sent_today = make_subscription(last_notification_sent=datetime(2024, 2, 12, 8, 0))
    assert select_due_reminders([sent_today], now) == {}

    sent_yesterday = make_subscription(last_notification_sent=datetime(2024, 2, 11, 10, 0))
    assert 3 in select_due_reminders([sent_yesterday], now)


def test_select_due_reminders_skips_disabled_and_unanchored(make_subscription):
    now = datetime(2024, 2, 12, 10, 0)
    subs = [
        make_subscription(notifications_enabled=False),
        make_subscription(notify_days_before=[]),
        make_subscription(anchor_date=None),
    ]
    assert select_due_reminders(subs, now) == {}


def test_select_due_reminders_groups_by_days(make_subscription):
    now = datetime(2024, 2, 12, 10, 0)
    subs = [
        make_subscription(name="A", anchor_date=date(2024, 1, 15)),  # 3 days
        make_subscription(name="B", anchor_date=date(2023, 2, 13), cycle="annually",
                          notify_days_before=[1]),  # tomorrow
        make_subscription(name="C", anchor_date=date(2024, 1, 15), currency="USD"),
    ]

    groups = select_due_reminders(subs, now)

    assert sorted(groups) == [1, 3]
    assert [i.subscription.name for i in groups[3]] == ["A", "C"]
    assert [i.subscription.name for i in groups[1]] == ["B"]


def test_is_reminder_time():
    user = User(name="A", email="a@x", notification_time="10:00", telegram_chat_id="1")
    assert is_reminder_time(user, datetime(2024, 2, 12, 10, 0, 45))
    assert not is_reminder_time(user, datetime(2024, 2, 12, 10, 1))

    user.telegram_chat_id = None
    assert not is_reminder_time(user, datetime(2024, 2, 12, 10, 0))


async def _seed(repo, add_connected_user, **sub_overrides) -> tuple[User, Subscription]:
    user = await add_connected_user(repo)
    category = await repo.create_category(Category(user_id=user.id, name="Streaming"))
    fields = dict(
        user_id=user.id,
        category_id=category.id,
        name="Netflix",
        cost=500.0,
        currency="RUB",
        cycle="monthly",
        anchor_date=date(2024, 1, 15),
        notifications_enabled=True,
        notify_days_before=[3],
    )
    fields.update(sub_overrides)
    sub = await repo.create_subscription(Subscription(**fields))
    return user, sub


def test_reminder_sent_and_marker_updated(db_path, open_repo, add_connected_user, gateway_factory):
    """Three days before the payment at the user's time: one message, marker set."""

    async def scenario():
        repo = await open_repo(db_path)
        try:
            user, sub = await _seed(repo, add_connected_user)
            gateway = gateway_factory()
            now = datetime(2024, 2, 12, 10, 0)

            sent = await check_due_reminders(gateway, repo, now)

            assert sent == 1
            chat_id, text = gateway.sent[0]
            assert chat_id == "111"
            assert "500" in text
            assert "Streaming" in text
            assert "Netflix" in text
            assert "15 Feb 2024" in text

            [stored] = await repo.get_subscriptions_by_user(user.id)
            assert stored.last_notification_sent is not None
            assert stored.last_notification_sent.date() == date(2024, 2, 12)
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_reminder_not_repeated_same_day(db_path, open_repo, add_connected_user, gateway_factory):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            await _seed(repo, add_connected_user)
            gateway = gateway_factory()

            assert await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0)) == 1
            assert await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0, 40)) == 0
            assert len(gateway.sent) == 1
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_reminder_only_at_notification_time(db_path, open_repo, add_connected_user, gateway_factory):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            await _seed(repo, add_connected_user)
            gateway = gateway_factory()

            assert await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 9, 59)) == 0
            assert await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 1)) == 0
            assert gateway.attempts == 0
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_reminder_retried_when_gateway_not_ready(
    db_path, open_repo, add_connected_user, gateway_factory
):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            user, _ = await _seed(repo, add_connected_user)
            gateway = gateway_factory(ready=False)
            now = datetime(2024, 2, 12, 10, 0)

            assert await check_due_reminders(gateway, repo, now) == 0
            [stored] = await repo.get_subscriptions_by_user(user.id)
            assert stored.last_notification_sent is None

            gateway.ready = True
            assert await check_due_reminders(gateway, repo, now) == 1
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_failing_user_does_not_block_others(db_path, open_repo, add_connected_user, gateway_factory):
    class FlakyGateway(gateway_factory):
        async def send(self, channel_id, text):
            self.attempts += 1
            if channel_id == "111":
                raise RuntimeError("chat blocked the bot")
            self.sent.append((channel_id, text))
            return True

    async def scenario():
        repo = await open_repo(db_path)
        try:
            first, first_sub = await _seed(repo, add_connected_user)
            second = await add_connected_user(repo, chat_id="222")
            await repo.create_subscription(
                Subscription(
                    user_id=second.id,
                    category_id=(await repo.get_categories(second.id))[0].id,
                    name="Spotify",
                    cost=9.99,
                    currency="EUR",
                    cycle="monthly",
                    anchor_date=date(2023, 11, 15),
                    notifications_enabled=True,
                    notify_days_before=[3],
                )
            )
            gateway = FlakyGateway()

            sent = await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0))

            assert sent == 1
            assert gateway.attempts == 2
            assert gateway.sent[0][0] == "222"
            assert "9.99 €" in gateway.sent[0][1]

            [stored] = await repo.get_subscriptions_by_user(first.id)
            assert stored.last_notification_sent is None
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_no_reminder_for_no_reminder_category(
    db_path, open_repo, add_connected_user, gateway_factory
):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            user = await add_connected_user(repo)
            category = await repo.create_category(
                Category(user_id=user.id, name="Utilities", has_reminders=False)
            )
            await repo.create_subscription(
                Subscription(
                    user_id=user.id,
                    category_id=category.id,
                    name="Water",
                    cost=300.0,
                    currency="RUB",
                    cycle="monthly",
                    anchor_date=date(2024, 1, 15),
                    notifications_enabled=True,
                    notify_days_before=[3],
                )
            )
            gateway = gateway_factory()

            assert await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0)) == 0
        finally:
            await repo.close()

    asyncio.run(scenario())


async def _add_subscription(repo, user, **overrides) -> Subscription:
    categories = await repo.get_categories(user.id)
    fields = dict(
        user_id=user.id,
        category_id=categories[0].id,
        name="Spotify",
        cost=9.99,
        currency="EUR",
        cycle="monthly",
        anchor_date=date(2023, 11, 15),
        notifications_enabled=True,
        notify_days_before=[3],
    )
    fields.update(overrides)
    return await repo.create_subscription(Subscription(**fields))


def test_malformed_user_row_does_not_block_other_users(
    db_path, open_repo, add_connected_user, gateway_factory
):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            broken = await add_connected_user(repo, chat_id="222")
            await _add_subscription(repo, broken)
            await repo.db.execute(
                "UPDATE users SET last_monthly_notification_sent = '01.02.2024' WHERE id = ?",
                (broken.id,),
            )
            await repo.db.commit()
            await _seed(repo, add_connected_user)
            gateway = gateway_factory()

            sent = await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0))

            assert sent == 1
            assert [chat_id for chat_id, _ in gateway.sent] == ["111"]
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_malformed_subscription_row_does_not_block_siblings(
    db_path, open_repo, add_connected_user, gateway_factory
):
    async def scenario():
        repo = await open_repo(db_path)
        try:
            user, sub = await _seed(repo, add_connected_user)
            broken = await _add_subscription(repo, user, name="Broken")
            await repo.db.execute(
                "UPDATE subscriptions SET anchor_date = '15/01/2024' WHERE id = ?",
                (broken.id,),
            )
            await repo.db.commit()
            gateway = gateway_factory()

            sent = await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0))

            assert sent == 1
            text = gateway.sent[0][1]
            assert "Netflix" in text
            assert "Broken" not in text
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_marker_write_failure_is_not_fatal(
    db_path, open_repo, add_connected_user, gateway_factory, monkeypatch
):
    async def failing_mark(subscription_ids, when):
        raise RuntimeError("database is locked")

    async def scenario():
        repo = await open_repo(db_path)
        try:
            first, _ = await _seed(repo, add_connected_user)
            # Second group for the same user: Feb 19 is 7 days out
            await _add_subscription(
                repo, first, name="iCloud", anchor_date=date(2024, 1, 19), notify_days_before=[7]
            )
            second = await add_connected_user(repo, chat_id="222")
            await _add_subscription(repo, second)
            monkeypatch.setattr(repo, "mark_subscriptions_notified", failing_mark)
            gateway = gateway_factory()

            sent = await check_due_reminders(gateway, repo, datetime(2024, 2, 12, 10, 0))

            assert sent == 3
            assert [chat_id for chat_id, _ in gateway.sent] == ["111", "111", "222"]
            assert "3 days" in gateway.sent[0][1]
            assert "iCloud" in gateway.sent[1][1]
        finally:
            await repo.close()

    asyncio.run(scenario())
