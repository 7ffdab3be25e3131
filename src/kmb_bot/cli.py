from __future__ import annotations

import logging

from dotenv import load_dotenv

from .app import build_application
from .config import BotSettings


def main() -> None:
    """Entry point for launching the Telegram bot."""

    load_dotenv()
    settings = BotSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    application = build_application(settings)
    application.run_polling()
