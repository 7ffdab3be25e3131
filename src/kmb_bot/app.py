from __future__ import annotations

from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from .commands import button, help_command, log_error, route_command, route_message, start
from .config import BotSettings
from .kmb_api import KmbClient
from .stop_cache import StopDetailCache


def build_application(settings: BotSettings) -> Application:
    """Configure the Telegram application with command and button handlers."""

    kmb_client = KmbClient(settings.kmb_settings)

    async def _close_client(application: Application) -> None:  # pragma: no cover - lifecycle
        await kmb_client.close()

    application = (
        ApplicationBuilder()
        .token(settings.telegram_token)
        .concurrent_updates(True)
        .post_shutdown(_close_client)
        .build()
    )

    application.bot_data["settings"] = settings
    application.bot_data["kmb_client"] = kmb_client
    application.bot_data["stop_cache"] = StopDetailCache(kmb_client)

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("route", route_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, route_message))
    application.add_handler(CallbackQueryHandler(button))
    application.add_error_handler(log_error)

    return application
