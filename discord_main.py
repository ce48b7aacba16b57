import logging
import os

from application.blackjack import BlackjackEngine
from application.casino import CasinoService
from application.cooldowns import CooldownGuard
from application.multiplier import MultiplierManager
from application.scheduling import AsyncioScheduler
from application.services import BalanceService
from infrastructure.config import BotConfig
from infrastructure.logging_setup import setup_logging
from interfaces.discord.handlers import create_discord_bot


logger = logging.getLogger(__name__)


def _build_repositories(config: BotConfig):
    if config.database_url:
        from infrastructure.db.ledger_repository_postgres import PostgresLedgerRepository
        from infrastructure.db.settings_repository_postgres import PostgresSettingsRepository

        logger.info("Using Postgres storage")
        return (
            PostgresLedgerRepository(config.database_url),
            PostgresSettingsRepository(config.database_url),
        )

    from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
    from infrastructure.db.settings_repository_sqlite import SqliteSettingsRepository

    directory = os.path.dirname(os.path.abspath(config.database_path))
    os.makedirs(directory, exist_ok=True)
    logger.info("Using SQLite storage at %s", config.database_path)
    return (
        SqliteLedgerRepository(config.database_path),
        SqliteSettingsRepository(config.database_path),
    )


def main() -> None:
    config = BotConfig.from_env()
    setup_logging(config.log_level)

    if not config.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    ledger_repo, settings_repo = _build_repositories(config)
    scheduler = AsyncioScheduler()
    cooldowns = CooldownGuard()

    balances = BalanceService(ledger_repo)
    multiplier = MultiplierManager(settings_repo, scheduler)
    blackjack = BlackjackEngine(
        balances,
        cooldowns,
        scheduler,
        cooldown_seconds=config.blackjack_cooldown,
        timeout_seconds=config.blackjack_timeout,
    )
    casino = CasinoService(
        balances,
        cooldowns,
        roulette_cooldown=config.roulette_cooldown,
        slots_cooldown=config.slots_cooldown,
    )

    bot = create_discord_bot(config, balances, multiplier, blackjack, casino)
    # Logging is already configured; keep discord.py from installing its own handler.
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
