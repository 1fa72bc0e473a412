from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import timedelta
from pathlib import Path

import discord
from discord.ext import commands

from .commands import CommandRegistry
from .config import Config, ConfigError, load_config
from .cooldowns import CooldownLedger
from .examples import ExampleCommands
from .giveaway_handlers import GiveawayController
from .giveaway_manager import GiveawayManager
from .reactions import ReactionRouter
from .router import InteractionRouter, interaction_kind
from .rules import WatchedDocument
from .scheduler import AsyncioScheduler
from .storage import GiveawayRepository, JsonDocumentStore, TriviaAttemptLedger, UserActionLedger
from .triggers import TriggerEngine

ENV_PATH = Path(".env")

log = logging.getLogger(__name__)


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and value[0] == value[-1] and value.startswith(("'", '"')):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str, log_dir: Path = Path("logs")) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(logging.INFO)


class BotkitBot(commands.Bot):
    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.reactions = True
        intents.members = False

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config

        minutes = config.interactions.default_timeout_minutes
        self.router = InteractionRouter(
            default_timeout=timedelta(minutes=minutes) if minutes is not None else None
        )
        self.reaction_router = ReactionRouter(self)
        self.scheduler = AsyncioScheduler()
        self.cooldowns = CooldownLedger()

        store = JsonDocumentStore(config.storage.data_dir)
        self.user_actions = UserActionLedger(store)
        self.manager = GiveawayManager(
            self,
            config,
            GiveawayRepository(store),
            TriviaAttemptLedger(store),
            self.reaction_router,
            self.scheduler,
        )

        self.registry = CommandRegistry(config.permissions)
        self.giveaways = GiveawayController(self.manager)
        self.giveaways.register(self.router)
        self.registry.add(self.giveaways.command())
        ExampleCommands(self).register(self.router, self.registry)

        self.engines = [
            TriggerEngine(
                "chatreact",
                WatchedDocument(config.triggers.chat_react.rules),
                WatchedDocument(config.triggers.chat_react.lists),
                self.cooldowns,
                self.user_actions,
                self.registry,
            ),
            TriggerEngine(
                "chatresponse",
                WatchedDocument(config.triggers.chat_response.rules),
                WatchedDocument(config.triggers.chat_response.lists),
                self.cooldowns,
                self.user_actions,
                self.registry,
            ),
        ]

    async def setup_hook(self) -> None:
        await self.manager.load()
        self.registry.install(self.tree)
        await self.tree.sync()
        test_guild_id = self.config.permissions.test_guild_id
        if test_guild_id:
            await self.tree.sync(guild=discord.Object(test_guild_id))

    async def close(self) -> None:
        self.scheduler.cancel_all()
        await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction_kind(interaction) is None:
            return
        await self.router.dispatch(interaction)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        for engine in self.engines:
            await engine.handle_message(message)

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self.reaction_router.dispatch(payload)


def build_bot(config_path: Path) -> BotkitBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    return BotkitBot(config)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord bot core")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    async with bot:
        await bot.start(bot.config.token)


if __name__ == "__main__":
    asyncio.run(main())
