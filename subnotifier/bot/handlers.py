"""Command handlers."""

import logging
from datetime import datetime

from telegram import Update
from telegram.ext import ContextTypes

from subnotifier.bot.formatters import (
    format_already_linked_message,
    format_connected_message,
    format_empty_month,
    format_help_message,
    format_invalid_token_message,
    format_monthly_digest,
    format_not_connected_message,
    format_status_message,
    format_unknown_message,
    format_welcome_message,
)
from subnotifier.db.repository import Repository
from subnotifier.engine.digest import select_monthly_digest
from subnotifier.engine.recurrence import filter_schedulable

logger = logging.getLogger(__name__)


def _now(context: ContextTypes.DEFAULT_TYPE) -> datetime:
    """Wall-clock time the scheduler also runs on (``TIMEZONE`` aware)."""
    clock = context.bot_data.get("clock", datetime.now)
    return clock()


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start [token] - link this chat to a tracker account."""
    if not update.effective_chat or not update.effective_user or not update.message:
        return

    if not context.args:
        await update.message.reply_html(format_welcome_message())
        return

    repo: Repository = context.bot_data["repo"]
    chat_id = str(update.effective_chat.id)
    token = context.args[0]

    now = _now(context)
    user = await repo.get_user_by_connection_token(token, now)
    if not user:
        await update.message.reply_text(format_invalid_token_message())
        return

    existing = await repo.get_user_by_chat_id(chat_id)
    if existing and existing.id != user.id:
        await update.message.reply_text(format_already_linked_message())
        return

    await repo.connect_telegram(
        user.id,  # type: ignore
        chat_id=chat_id,
        username=update.effective_user.username,
        now=now,
    )
    logger.info(f"Connected chat {chat_id} to user {user.id}")

    await update.message.reply_html(
        format_connected_message(update.effective_user.first_name)
    )


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status command."""
    if not update.effective_chat or not update.message:
        return

    repo: Repository = context.bot_data["repo"]
    user = await repo.get_user_by_chat_id(str(update.effective_chat.id))

    if not user:
        await update.message.reply_text(format_not_connected_message())
        return

    await update.message.reply_html(format_status_message(user))


async def month_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /month - this month's payments on demand, no dedupe marker involved."""
    if not update.effective_chat or not update.message:
        return

    repo: Repository = context.bot_data["repo"]
    user = await repo.get_user_by_chat_id(str(update.effective_chat.id))

    if not user:
        await update.message.reply_text(format_not_connected_message())
        return

    today = _now(context)
    subscriptions = await repo.get_subscriptions_by_user(user.id)  # type: ignore
    categories = {c.id: c for c in await repo.get_categories(user.id)}  # type: ignore
    digest = select_monthly_digest(filter_schedulable(subscriptions, categories), today)

    if digest.is_empty:
        await update.message.reply_text(format_empty_month(today.date(), len(subscriptions)))
        return

    await update.message.reply_html(
        format_monthly_digest(digest, categories, today.date())
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    await update.message.reply_html(format_help_message())


async def unknown_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Reply to anything that is not a known command."""
    if not update.message:
        return

    await update.message.reply_text(format_unknown_message())
