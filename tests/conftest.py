"""Shared fixtures: a throwaway SQLite database and an in-memory gateway."""

from datetime import date

import pytest

from subnotifier.db.migrations import run_migrations
from subnotifier.db.models import Category, Subscription, User
from subnotifier.db.repository import Repository


class FakeGateway:
    """Delivery gateway that records messages instead of sending them."""

    def __init__(self, ready: bool = True, fail: bool = False):
        self.ready = ready
        self.fail = fail
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0

    def is_ready(self) -> bool:
        return self.ready

    async def send(self, channel_id: str, text: str) -> bool:
        self.attempts += 1
        if self.fail:
            raise RuntimeError("channel down")
        self.sent.append((channel_id, text))
        return True


async def _open_repo(db_path) -> Repository:
    await run_migrations(db_path)
    repo = Repository(db_path)
    await repo.connect()
    return repo


async def _add_connected_user(
    repo: Repository, chat_id: str = "111", notification_time: str = "10:00", **kwargs
) -> User:
    user = await repo.create_user(
        name="Anna", email=f"{chat_id}@example.com", notification_time=notification_time, **kwargs
    )
    await repo.connect_telegram(user.id, chat_id=chat_id, username="anna")
    return await repo.get_user_by_id(user.id)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def make_subscription():
    """Build an unsaved subscription with sensible defaults."""

    def _make(**overrides) -> Subscription:
        fields = dict(
            user_id=1,
            category_id=1,
            name="Netflix",
            cost=500.0,
            currency="RUB",
            cycle="monthly",
            anchor_date=date(2024, 1, 15),
            notifications_enabled=True,
            notify_days_before=[3],
        )
        fields.update(overrides)
        return Subscription(**fields)

    return _make


@pytest.fixture
def categories():
    return {
        1: Category(id=1, user_id=1, name="Streaming"),
        2: Category(id=2, user_id=1, name="Cloud"),
    }


@pytest.fixture
def open_repo():
    """Coroutine opening a migrated repository; callers must close it."""
    return _open_repo


@pytest.fixture
def add_connected_user():
    """Coroutine creating a user already linked to a chat."""
    return _add_connected_user


@pytest.fixture
def gateway_factory():
    return FakeGateway
