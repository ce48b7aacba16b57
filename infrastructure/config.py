from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}.") from None


def _env_optional(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass(frozen=True)
class BotConfig:
    """Runtime configuration, read from the environment (and `.env`)."""

    discord_token: Optional[str]
    database_path: str = "vouch_points.db"
    database_url: Optional[str] = None
    provider_role_id: Optional[str] = None
    provider_role_name: str = "Provider"
    casino_channel_id: Optional[str] = None
    blackjack_cooldown: float = 10.0
    roulette_cooldown: float = 10.0
    slots_cooldown: float = 5.0
    blackjack_timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        load_dotenv()
        return cls(
            discord_token=_env_optional("DISCORD_TOKEN"),
            database_path=os.environ.get("DATABASE_PATH", "vouch_points.db"),
            database_url=_env_optional("DATABASE_URL"),
            provider_role_id=_env_optional("PROVIDER_ROLE_ID"),
            provider_role_name=os.environ.get("PROVIDER_ROLE_NAME", "Provider"),
            casino_channel_id=_env_optional("CASINO_CHANNEL_ID"),
            blackjack_cooldown=_env_float("BLACKJACK_COOLDOWN_SECONDS", 10.0),
            roulette_cooldown=_env_float("ROULETTE_COOLDOWN_SECONDS", 10.0),
            slots_cooldown=_env_float("SLOTS_COOLDOWN_SECONDS", 5.0),
            blackjack_timeout=_env_float("BLACKJACK_TIMEOUT_SECONDS", 30.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
