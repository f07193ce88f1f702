"""Global error handler for the bot."""

import logging
import traceback

from telegram import Update
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors raised by command handlers."""
    logger.error("Exception while handling an update:", exc_info=context.error)

    tb_list = traceback.format_exception(None, context.error, context.error.__traceback__)
    logger.debug("Traceback:\n" + "".join(tb_list))

    if isinstance(update, Update) and update.effective_message:
        try:
            error_message = "❌ Something went wrong. Please try again later."

            if "Timed out" in str(context.error) or "Timeout" in str(context.error):
                error_message = "⏱️ Request timed out.\n\nPlease try again in a moment."

            await update.effective_message.reply_text(error_message)

        except Exception as e:
            logger.error(f"Failed to send error message to user: {e}")
