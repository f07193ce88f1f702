"""Constants and default values."""

from typing import Literal

Cycle = Literal["monthly", "annually"]

CYCLES = ("monthly", "annually")
CURRENCIES = ("RUB", "USD", "EUR", "RSD")

# Lead days a subscription may be reminded at
ALLOWED_NOTIFY_DAYS = (1, 3, 7)

CURRENCY_SYMBOLS = {
    "RUB": "₽",
    "USD": "$",
    "EUR": "€",
    "RSD": "din.",
}

# Category name used when a subscription's category cannot be resolved
UNCATEGORIZED_LABEL = "Uncategorized"

# Seeded for new users, never deletable
DEFAULT_CATEGORY_NAME = "My subscriptions"
DEFAULT_CATEGORY_COLOR = "#3B82F6"

DEFAULT_NOTIFICATION_TIME = "09:00"

# Connection tokens issued by the web app are valid this long
CONNECTION_TOKEN_TTL_MINUTES = 15
