"""Message text formatters.

Everything here is pure: it takes records and returns Telegram HTML.
"""

from collections import defaultdict
from datetime import date
from html import escape
from typing import Dict, Iterable, List, Tuple

from subnotifier.db.models import Category, User
from subnotifier.engine.recurrence import MonthlyDigest, Occurrence, monthly_equivalent
from subnotifier.utils.constants import CURRENCIES, CURRENCY_SYMBOLS, UNCATEGORIZED_LABEL


def format_amount(cost: float, currency: str) -> str:
    """Format a cost with its currency symbol, e.g. "500 ₽" or "9.99 $"."""
    value = str(int(cost)) if float(cost).is_integer() else f"{cost:.2f}"
    return f"{value} {CURRENCY_SYMBOLS.get(currency, currency)}"


def format_date(d: date, with_year: bool = True) -> str:
    """Format a date as "15 Feb 2024" (or "15 Feb")."""
    if with_year:
        return f"{d.day} {d.strftime('%b %Y')}"
    return f"{d.day} {d.strftime('%b')}"


def format_days(days: int) -> str:
    return f"{days} day{'s' if days != 1 else ''}"


def group_by_category(
    items: Iterable[Occurrence], categories: Dict[int, Category]
) -> List[Tuple[str, List[Occurrence]]]:
    """Group occurrences by category name, each group sorted by date.

    Groups come out alphabetically, with the uncategorized group last.
    """
    grouped: Dict[str, List[Occurrence]] = defaultdict(list)
    for item in items:
        category = categories.get(item.subscription.category_id)
        name = category.name if category else UNCATEGORIZED_LABEL
        grouped[name].append(item)

    names = sorted(grouped, key=lambda n: (n == UNCATEGORIZED_LABEL, n.lower()))
    return [
        (name, sorted(grouped[name], key=lambda i: (i.date, i.subscription.name)))
        for name in names
    ]


def format_reminder_message(
    days_until: int, items: List[Occurrence], categories: Dict[int, Category]
) -> str:
    """Format a lead-time reminder for payments falling ``days_until`` days from today."""
    if days_until == 0:
        header = "🔔 <b>Payments due today!</b>"
    elif days_until == 1:
        header = "⏰ <b>Payments due tomorrow!</b>"
    else:
        header = f"📅 <b>Payments due in {format_days(days_until)}</b>"

    lines = [header, ""]
    for category_name, group in group_by_category(items, categories):
        lines.append(f"<b>{escape(category_name)}</b>")
        for item in group:
            sub = item.subscription
            lines.append(
                f"  • {escape(sub.name)}: {format_amount(sub.cost, sub.currency)} "
                f"({format_date(item.date)})"
            )
        lines.append("")

    lines.append("💡 <i>Don't forget to top up your account!</i>")
    return "\n".join(lines)


def _format_digest_section(
    items: List[Occurrence], categories: Dict[int, Category]
) -> List[str]:
    lines = []
    for category_name, group in group_by_category(items, categories):
        lines.append(f"<b>{escape(category_name)}</b>")
        for item in group:
            sub = item.subscription
            notify_icon = "🔔" if sub.notifications_enabled else "🔕"
            if sub.cycle == "monthly":
                cycle_text = "📆 per month"
            else:
                cycle_text = "📅 per year"

            lines.append(f"  {notify_icon} {escape(sub.name)}")
            lines.append(f"     {format_amount(sub.cost, sub.currency)} {cycle_text}")
            lines.append(f"     💳 Payment: {format_date(item.date, with_year=False)}")
            if sub.notifications_enabled and sub.notify_days_before:
                days = ", ".join(str(d) for d in sorted(sub.notify_days_before))
                lines.append(f"     ⏰ Remind: {days} days before")
            lines.append("")
    return lines


def format_monthly_total(items: Iterable[Occurrence]) -> str:
    """Approximate monthly-equivalent total, one figure per currency."""
    totals: Dict[str, float] = defaultdict(float)
    for item in items:
        sub = item.subscription
        totals[sub.currency] += monthly_equivalent(sub.cost, sub.cycle)

    order = {c: i for i, c in enumerate(CURRENCIES)}
    return " + ".join(
        f"~{round(totals[c])} {CURRENCY_SYMBOLS.get(c, c)}"
        for c in sorted(totals, key=lambda c: order.get(c, len(order)))
    )


def format_monthly_digest(
    digest: MonthlyDigest, categories: Dict[int, Category], today: date
) -> str:
    """Format the digest of every payment in ``today``'s month."""
    paid, upcoming = digest.paid, digest.upcoming
    lines = [f"📅 <b>Subscriptions for {today.strftime('%B %Y')}</b>", ""]

    if paid:
        lines.append(f"✅ <b>Already paid ({len(paid)})</b>")
        lines.append("")
        lines.extend(_format_digest_section(paid, categories))

    if upcoming:
        if paid:
            lines.append("━━━━━━━━━━━━━━━━━")
            lines.append("")
        lines.append(f"⏳ <b>Upcoming payments ({len(upcoming)})</b>")
        lines.append("")
        lines.extend(_format_digest_section(upcoming, categories))

    lines.append(f"📊 <b>This month:</b> {len(digest.all)} subscriptions")
    lines.append(f"💰 <b>Approximate total:</b> {format_monthly_total(digest.all)}")

    if paid and upcoming:
        lines.append("")
        lines.append(f"<i>✅ Paid: {len(paid)} | ⏳ Due: {len(upcoming)}</i>")

    return "\n".join(lines)


def format_empty_month(today: date, total_subscriptions: int) -> str:
    """Reply for /month when nothing bills this month."""
    if total_subscriptions == 0:
        return (
            "📭 You have no subscriptions yet.\n\n"
            "Add subscriptions in the web app to start tracking your expenses."
        )
    return (
        f"📅 No payments scheduled for {today.strftime('%B %Y')}.\n\n"
        f"Total subscriptions: {total_subscriptions}"
    )


def format_status_message(user: User) -> str:
    """Format the /status reply for a linked chat."""
    if user.telegram_connected_at:
        connected = user.telegram_connected_at.strftime("%d %b %Y %H:%M")
    else:
        connected = "unknown"

    monthly = "on" if user.monthly_notifications_enabled else "off"
    return (
        "✅ <b>Connection status</b>\n\n"
        f"👤 User: {escape(user.name)}\n"
        f"📧 Email: {escape(user.email)}\n"
        f"📅 Connected: {connected}\n"
        f"⏰ Notification time: {user.notification_time}\n"
        f"🗓 Monthly digest: {monthly}\n\n"
        "Notifications are active!"
    )


def format_welcome_message() -> str:
    """Format the /start reply when no token was given."""
    return """
👋 <b>Welcome to the Subscription Tracker notifier!</b>

To connect notifications:
1. Open settings in the web app
2. Press "Connect Telegram"
3. Follow the link with your token

Or send the command:
<code>/start YOUR_TOKEN</code>
""".strip()


def format_connected_message(first_name: str) -> str:
    return (
        f"✅ Great, {escape(first_name)}!\n\n"
        "Telegram is now connected to your account.\n"
        "You will get notifications about upcoming payments.\n\n"
        "Available commands:\n"
        "/status - Check the connection status\n"
        "/month - This month's subscriptions\n"
        "/help - Help"
    )


def format_invalid_token_message() -> str:
    return (
        "❌ The token is invalid or has expired.\n\n"
        "Please generate a new token in the app settings."
    )


def format_already_linked_message() -> str:
    return (
        "⚠️ This Telegram account is already connected to another user.\n\n"
        "If it is yours, disconnect it in that profile's settings first."
    )


def format_not_connected_message() -> str:
    return (
        "❌ Your Telegram is not connected to an account.\n\n"
        "Use /start with the token from the app settings."
    )


def format_help_message() -> str:
    """Format the help message."""
    return """
📖 <b>Subscription Tracker notifier</b>

🔔 This bot reminds you about upcoming subscription payments.

<b>Commands:</b>
/start &lt;token&gt; - Connect Telegram to your account
/status - Check the connection status
/month - All subscriptions billing this month
/help - Show this help

📅 <b>Automatic notifications:</b>
• Reminders N days before a payment (set per subscription)
• A monthly digest on the 1st with every payment of the month

Use the web app to configure notifications.
""".strip()


def format_unknown_message() -> str:
    return "Unknown command.\n\nUse /help to see the available commands."
