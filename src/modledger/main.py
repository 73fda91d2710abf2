"""
Modledger
=========

A Discord moderation bot: warnings, kicks, bans, tempbans, timeouts and
purges, every one of them recorded as a numbered case, with a private
acknowledgement thread for warned and timed-out users.
"""

import os
import sys
from pathlib import Path

def resolve_base_dir() -> Path:
    """Determine the base directory of the project.
    Resolution order:
    1. MODLEDGER_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODLEDGER_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]

BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass

import discord
from aiohttp import web
from dotenv import load_dotenv

from modledger.bot.discord_platform import DiscordModerationPlatform
from modledger.bot.health import resolve_port, start_health_server
from modledger.configuration.app_configuration import AppConfig, app_config
from modledger.database import db_connection, initialize_database
from modledger.moderation.acknowledgement import AcknowledgementRegistry
from modledger.moderation.case_ledger import CaseLedger
from modledger.moderation.orchestrator import ModerationOrchestrator
from modledger.moderation.permissions import RoleLadder
from modledger.moderation.record_store import RecordStore
from modledger.scheduler.unban_scheduler import UnbanScheduler
from modledger.util.logger import get_logger, handle_exception


logger = get_logger("main")


@dataclass
class Runtime:
    """Everything started by :func:`async_main` that has to be shut down again."""

    bot: discord.Bot
    orchestrator: ModerationOrchestrator
    platform: DiscordModerationPlatform
    health_runner: web.AppRunner | None = None


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Returns
    -------
    str
        Discord bot token extracted from the loaded environment.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for slash commands, member lookups and the message event log."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.messages = True
    intents.message_content = True
    return intents


def build_orchestrator(bot: discord.Bot, config: AppConfig) -> tuple[ModerationOrchestrator, DiscordModerationPlatform]:
    """Wire the moderation core to the py-cord platform adapter."""
    platform = DiscordModerationPlatform(
        bot,
        mod_log_channel_id=config.mod_log_channel_id,
        rules_channel_id=config.rules_channel_id,
    )
    ladder = RoleLadder.from_role_ids(config.role_ids)
    if not ladder.roles:
        logger.warning("No staff roles configured; only the guild owner can use moderation commands.")

    orchestrator = ModerationOrchestrator(
        platform=platform,
        ledger=CaseLedger(db_connection),
        records=RecordStore(db_connection),
        workflows=AcknowledgementRegistry(expiry_minutes=config.acknowledgement_expiry_minutes),
        scheduler=UnbanScheduler(db_connection),
        ladder=ladder,
        warn_mute_minutes=config.warn_mute_minutes,
    )
    return orchestrator, platform


def load_cogs(
    discord_bot_instance: discord.Bot,
    orchestrator: ModerationOrchestrator,
    platform: DiscordModerationPlatform,
    config: AppConfig,
) -> None:
    """Register all operational cogs with the provided Discord bot instance."""
    from modledger.bot.cogs import acknowledgement_listener, events_listener, moderation_cmds

    events_listener.setup(discord_bot_instance, orchestrator, platform)
    acknowledgement_listener.setup(discord_bot_instance, orchestrator)
    moderation_cmds.setup(discord_bot_instance, orchestrator, config.warnings_display_limit)

    logger.info("All cogs loaded successfully.")


def create_runtime(config: AppConfig) -> Runtime:
    """Instantiate the Discord bot, the moderation core and all cogs."""
    bot = discord.Bot(intents=build_intents())
    orchestrator, platform = build_orchestrator(bot, config)
    load_cogs(bot, orchestrator, platform, config)
    return Runtime(bot=bot, orchestrator=orchestrator, platform=platform)


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection."""
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(runtime: Runtime) -> None:
    """Stop the bot, scheduler, health server and database, in that order."""
    if not runtime.bot.is_closed():
        try:
            await runtime.bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord bot: %s", exc)

    try:
        await runtime.orchestrator.scheduler.shutdown()
    except Exception as exc:
        logger.exception("Error during unban scheduler shutdown: %s", exc)

    if runtime.health_runner is not None:
        await runtime.health_runner.cleanup()

    await db_connection.close()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, bot and health server, returning an exit code."""
    token = load_environment()

    try:
        logger.info("Initializing database at %s...", app_config.database_path)
        await initialize_database(app_config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    try:
        runtime = create_runtime(app_config)
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await db_connection.close()
        return 1

    exit_code = 0
    try:
        if app_config.health_enabled:
            runtime.health_runner = await start_health_server(
                resolve_port(app_config.health_port),
                is_ready=runtime.bot.is_ready,
            )
        await start_bot(runtime.bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(runtime)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process code."""
    logger.info("Starting Modledger…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())
