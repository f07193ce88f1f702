"""Data models."""

from dataclasses import dataclass, field
from datetime import date, datetime

from subnotifier.utils.constants import Cycle


@dataclass
class User:
    """Tracker account, optionally linked to a Telegram chat."""

    name: str
    email: str
    notification_time: str  # HH:MM, server-local
    monthly_notifications_enabled: bool = True
    telegram_chat_id: str | None = None  # None means not connected
    telegram_username: str | None = None
    telegram_connected_at: datetime | None = None
    connection_token: str | None = None
    connection_token_expires: datetime | None = None
    last_monthly_notification_sent: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None

    @property
    def is_connected(self) -> bool:
        return bool(self.telegram_chat_id)


@dataclass
class Category:
    """Subscription category."""

    user_id: int
    name: str
    has_reminders: bool = True
    color: str = "#3B82F6"
    is_default: bool = False
    sort_order: int = 0
    id: int | None = None


@dataclass
class Subscription:
    """A recurring payment."""

    user_id: int
    category_id: int
    name: str
    cost: float
    currency: str
    cycle: Cycle
    anchor_date: date | None = None  # first/reference payment date
    notifications_enabled: bool = False
    notify_days_before: list[int] = field(default_factory=list)
    last_notification_sent: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None
