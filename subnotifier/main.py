"""Main entry point for the subscription notifier bot."""

import functools
import logging
import sys

from telegram.ext import Application, CommandHandler, MessageHandler, filters

from subnotifier.bot.handlers import (
    help_command,
    month_command,
    start_command,
    status_command,
    unknown_message,
)
from subnotifier.config import Config
from subnotifier.db.migrations import run_migrations
from subnotifier.db.repository import Repository
from subnotifier.engine.gateway import TelegramGateway
from subnotifier.engine.scheduler import NotificationScheduler
from subnotifier.utils.error_handler import error_handler
from subnotifier.utils.time_utils import local_now

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    stream=sys.stdout,
)
# httpx logs every Telegram request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def post_init(application: Application) -> None:
    """Initialize resources once the bot has completed its handshake."""
    await run_migrations(Config.DATABASE_PATH)

    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()
    application.bot_data["repo"] = repo

    gateway = TelegramGateway(application.bot, timeout=Config.SEND_TIMEOUT)
    application.bot_data["gateway"] = gateway

    # Handlers and scheduler read the same wall clock
    clock = functools.partial(local_now, Config.TIMEZONE)
    application.bot_data["clock"] = clock

    scheduler = NotificationScheduler(
        gateway, repo, interval=Config.TICK_INTERVAL, clock=clock
    )
    application.bot_data["scheduler"] = scheduler

    job_queue = application.job_queue
    if job_queue:
        scheduler.start(job_queue)
    else:
        logger.error(
            "JobQueue unavailable, install python-telegram-bot[job-queue] "
            "to enable notifications"
        )

    gateway.mark_ready()
    logger.info("Subscription notifier initialized successfully")


async def post_stop(application: Application) -> None:
    """Stop scheduling new ticks and refuse further sends."""
    scheduler: NotificationScheduler | None = application.bot_data.get("scheduler")
    if scheduler:
        scheduler.stop()

    gateway: TelegramGateway | None = application.bot_data.get("gateway")
    if gateway:
        gateway.mark_not_ready()


async def post_shutdown(application: Application) -> None:
    """Cleanup resources on shutdown."""
    repo: Repository | None = application.bot_data.get("repo")
    if repo:
        await repo.close()

    logger.info("Subscription notifier shut down")


def main() -> None:
    """Start the bot."""
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    application = (
        Application.builder()
        .token(Config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_stop(post_stop)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Commands
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("month", month_command))
    application.add_handler(CommandHandler("help", help_command))

    # Anything else (must be last)
    application.add_handler(MessageHandler(filters.ALL, unknown_message))

    application.add_error_handler(error_handler)

    logger.info("Starting subscription notifier bot...")
    application.run_polling(allowed_updates=["message"])


if __name__ == "__main__":
    main()
