"""Database repository - all SQL queries."""

import logging
import secrets
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, List, TypeVar

import aiosqlite

from subnotifier.db.models import Category, Subscription, User
from subnotifier.utils.constants import (
    ALLOWED_NOTIFY_DAYS,
    CONNECTION_TOKEN_TTL_MINUTES,
    CURRENCIES,
    CYCLES,
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_NAME,
    DEFAULT_NOTIFICATION_TIME,
)
from subnotifier.utils.time_utils import is_valid_hhmm

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _serialize_days(days: List[int]) -> str:
    return ",".join(str(d) for d in sorted(set(days)))


def _parse_days(value: str | None) -> List[int]:
    if not value:
        return []
    return [int(part) for part in value.split(",") if part.strip()]


def validate_subscription(subscription: Subscription) -> None:
    """Reject records the notification engine cannot schedule."""
    if not subscription.name.strip():
        raise ValueError("Subscription name is required")
    if subscription.cost <= 0:
        raise ValueError("Cost must be a positive number")
    if subscription.currency not in CURRENCIES:
        raise ValueError(f"Unsupported currency: {subscription.currency}")
    if subscription.cycle not in CYCLES:
        raise ValueError("Cycle must be monthly or annually")

    invalid_days = set(subscription.notify_days_before) - set(ALLOWED_NOTIFY_DAYS)
    if invalid_days:
        raise ValueError(f"Lead days must be among {ALLOWED_NOTIFY_DAYS}")
    if subscription.notifications_enabled and not subscription.notify_days_before:
        raise ValueError("Pick at least one lead day to enable notifications")


class Repository:
    """Database access layer."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    # User operations

    async def get_user_by_id(self, user_id: int) -> User | None:
        """Get user by database ID."""
        async with self.db.execute(
            "SELECT * FROM users WHERE id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_user(row) if row else None

    async def get_user_by_chat_id(self, chat_id: str) -> User | None:
        """Get the user linked to a Telegram chat."""
        async with self.db.execute(
            "SELECT * FROM users WHERE telegram_chat_id = ?", (chat_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_user(row) if row else None

    async def get_user_by_connection_token(
        self, token: str, now: datetime | None = None
    ) -> User | None:
        """Get the user holding an unexpired connection token."""
        if now is None:
            now = datetime.now()

        async with self.db.execute(
            """
            SELECT * FROM users
            WHERE connection_token = ?
            AND connection_token_expires > ?
            """,
            (token, now.isoformat()),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_user(row) if row else None

    async def get_users_by_notification_time(self, notification_time: str) -> List[User]:
        """Get connected users whose notification time is exactly HH:MM (heartbeat query)."""
        async with self.db.execute(
            """
            SELECT * FROM users
            WHERE telegram_chat_id IS NOT NULL
            AND telegram_chat_id != ''
            AND notification_time = ?
            ORDER BY id
            """,
            (notification_time,),
        ) as cursor:
            rows = await cursor.fetchall()
            return self._decode_rows(rows, self._row_to_user, "user")

    async def create_user(
        self,
        name: str,
        email: str,
        notification_time: str = DEFAULT_NOTIFICATION_TIME,
        monthly_notifications_enabled: bool = True,
    ) -> User:
        """Create a new user and seed the default category."""
        if not is_valid_hhmm(notification_time):
            raise ValueError(f"Notification time must be HH:MM, got {notification_time!r}")

        async with self.db.execute(
            """
            INSERT INTO users (name, email, notification_time, monthly_notifications_enabled)
            VALUES (?, ?, ?, ?)
            RETURNING *
            """,
            (name, email, notification_time, 1 if monthly_notifications_enabled else 0),
        ) as cursor:
            row = await cursor.fetchone()
        await self.db.commit()

        user = self._row_to_user(row)
        await self.create_category(
            Category(
                user_id=user.id,  # type: ignore
                name=DEFAULT_CATEGORY_NAME,
                color=DEFAULT_CATEGORY_COLOR,
                is_default=True,
            )
        )

        logger.info(f"Created user {user.id}")
        return user

    async def issue_connection_token(
        self, user_id: int, now: datetime | None = None
    ) -> str:
        """Store a fresh one-time token the user can pass to /start."""
        if now is None:
            now = datetime.now()

        token = secrets.token_hex(16)
        expires = now + timedelta(minutes=CONNECTION_TOKEN_TTL_MINUTES)
        await self.db.execute(
            """
            UPDATE users SET connection_token = ?, connection_token_expires = ?
            WHERE id = ?
            """,
            (token, expires.isoformat(), user_id),
        )
        await self.db.commit()
        return token

    async def connect_telegram(
        self,
        user_id: int,
        chat_id: str,
        username: str | None,
        now: datetime | None = None,
    ) -> None:
        """Link a chat to the user and burn the connection token."""
        if now is None:
            now = datetime.now()

        await self.db.execute(
            """
            UPDATE users SET
                telegram_chat_id = ?,
                telegram_username = ?,
                telegram_connected_at = ?,
                connection_token = NULL,
                connection_token_expires = NULL
            WHERE id = ?
            """,
            (chat_id, username, now.isoformat(), user_id),
        )
        await self.db.commit()

    async def mark_monthly_notification_sent(self, user_id: int, when: datetime) -> None:
        """Set the monthly digest dedupe marker."""
        await self.db.execute(
            "UPDATE users SET last_monthly_notification_sent = ? WHERE id = ?",
            (when.isoformat(), user_id),
        )
        await self.db.commit()

    # Category operations

    async def get_categories(self, user_id: int) -> List[Category]:
        """Get all categories for a user."""
        async with self.db.execute(
            "SELECT * FROM categories WHERE user_id = ? ORDER BY sort_order, name",
            (user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return self._decode_rows(rows, self._row_to_category, "category")

    async def create_category(self, category: Category) -> Category:
        """Create a new category."""
        async with self.db.execute(
            """
            INSERT INTO categories (user_id, name, has_reminders, color, is_default, sort_order)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                category.user_id,
                category.name,
                1 if category.has_reminders else 0,
                category.color,
                1 if category.is_default else 0,
                category.sort_order,
            ),
        ) as cursor:
            row = await cursor.fetchone()
        await self.db.commit()
        return self._row_to_category(row)

    # Subscription operations

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        """Create a new subscription."""
        validate_subscription(subscription)

        async with self.db.execute(
            """
            INSERT INTO subscriptions (
                user_id, category_id, name, cost, currency, cycle, anchor_date,
                notifications_enabled, notify_days_before, last_notification_sent
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                subscription.user_id,
                subscription.category_id,
                subscription.name,
                subscription.cost,
                subscription.currency,
                subscription.cycle,
                subscription.anchor_date.isoformat() if subscription.anchor_date else None,
                1 if subscription.notifications_enabled else 0,
                _serialize_days(subscription.notify_days_before),
                subscription.last_notification_sent.isoformat()
                if subscription.last_notification_sent
                else None,
            ),
        ) as cursor:
            row = await cursor.fetchone()
        await self.db.commit()
        return self._row_to_subscription(row)

    async def get_subscriptions_by_user(
        self, user_id: int, notifications_only: bool = False
    ) -> List[Subscription]:
        """Get a user's subscriptions, optionally only those with reminders switched on."""
        if notifications_only:
            query = """
                SELECT * FROM subscriptions
                WHERE user_id = ?
                AND notifications_enabled = 1
                AND notify_days_before != ''
                ORDER BY id
            """
        else:
            query = "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY id"

        async with self.db.execute(query, (user_id,)) as cursor:
            rows = await cursor.fetchall()
            return self._decode_rows(rows, self._row_to_subscription, "subscription")

    async def mark_subscriptions_notified(
        self, subscription_ids: List[int], when: datetime
    ) -> None:
        """Set the daily reminder dedupe marker on a batch of subscriptions."""
        if not subscription_ids:
            return

        placeholders = ", ".join("?" for _ in subscription_ids)
        await self.db.execute(
            f"UPDATE subscriptions SET last_notification_sent = ? WHERE id IN ({placeholders})",
            [when.isoformat(), *subscription_ids],
        )
        await self.db.commit()

    # Helper methods

    def _decode_rows(
        self, rows: List[aiosqlite.Row], convert: Callable[[aiosqlite.Row], T], kind: str
    ) -> List[T]:
        """Convert rows one by one; a row that cannot be decoded is logged and skipped."""
        items = []
        for row in rows:
            try:
                items.append(convert(row))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed {kind} row {row['id']}: {e}")
        return items

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        """Convert a database row to a User object."""
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            telegram_chat_id=row["telegram_chat_id"],
            telegram_username=row["telegram_username"],
            telegram_connected_at=_parse_datetime(row["telegram_connected_at"]),
            connection_token=row["connection_token"],
            connection_token_expires=_parse_datetime(row["connection_token_expires"]),
            notification_time=row["notification_time"],
            monthly_notifications_enabled=bool(row["monthly_notifications_enabled"]),
            last_monthly_notification_sent=_parse_datetime(
                row["last_monthly_notification_sent"]
            ),
            created_at=_parse_datetime(row["created_at"]),
        )

    def _row_to_category(self, row: aiosqlite.Row) -> Category:
        """Convert a database row to a Category object."""
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            has_reminders=bool(row["has_reminders"]),
            color=row["color"],
            is_default=bool(row["is_default"]),
            sort_order=row["sort_order"],
        )

    def _row_to_subscription(self, row: aiosqlite.Row) -> Subscription:
        """Convert a database row to a Subscription object."""
        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            name=row["name"],
            cost=row["cost"],
            currency=row["currency"],
            cycle=row["cycle"],  # type: ignore
            anchor_date=date.fromisoformat(row["anchor_date"]) if row["anchor_date"] else None,
            notifications_enabled=bool(row["notifications_enabled"]),
            notify_days_before=_parse_days(row["notify_days_before"]),
            last_notification_sent=_parse_datetime(row["last_notification_sent"]),
            created_at=_parse_datetime(row["created_at"]),
        )
