from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Self
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class KmbSettings:
    """Options for the KMB open data API."""

    base_url: str = "https://data.etabus.gov.hk/v1/transport/kmb"
    timezone: str = "Asia/Hong_Kong"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> Self:
        base_url = os.environ.get("KMB_BASE_URL", cls.base_url)
        timezone = os.environ.get("KMB_TIMEZONE", cls.timezone)
        return cls(base_url=base_url, timezone=timezone)


@dataclass(frozen=True)
class BotSettings:
    """Configuration options for the Telegram bot."""

    telegram_token: str
    kmb_settings: KmbSettings
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Self:
        """Create settings object from environment variables."""

        try:
            telegram_token = os.environ["TELEGRAM_BOT_TOKEN"]
        except KeyError as exc:
            missing = exc.args[0]
            raise RuntimeError(
                f"Missing Telegram credential in environment: {missing}"
            ) from None

        log_level = os.environ.get("LOG_LEVEL", cls.log_level).upper()
        return cls(
            telegram_token=telegram_token,
            kmb_settings=KmbSettings.from_env(),
            log_level=log_level,
        )
