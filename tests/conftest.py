from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from botkit.config import (
    Config,
    InteractionsConfig,
    LoggingConfig,
    PermissionsConfig,
    StorageConfig,
    TriggerDocuments,
    TriggersConfig,
)
from botkit.scheduler import Scheduler
from botkit.storage import MemoryDocumentStore

START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ManualScheduler(Scheduler):
    """Records timers; tests fire them explicitly."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: Dict[str, tuple] = {}

    def schedule(self, key, when, callback) -> None:
        self.timers[key] = (when, callback)

    def cancel(self, key) -> bool:
        return self.timers.pop(key, None) is not None

    def is_scheduled(self, key) -> bool:
        return key in self.timers

    async def fire_due(self) -> int:
        due = [
            (key, callback)
            for key, (when, callback) in list(self.timers.items())
            if when <= self.clock()
        ]
        for key, callback in due:
            self.timers.pop(key, None)
            await callback()
        return len(due)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


def make_config(tmp_path=None, **permissions: Any) -> Config:
    base = tmp_path or "config"
    return Config(
        token="token",
        application_id=1,
        logging=LoggingConfig(level="INFO", logger_channel_id=None),
        permissions=PermissionsConfig(**permissions),
        storage=StorageConfig(),
        interactions=InteractionsConfig(),
        triggers=TriggersConfig(
            chat_react=TriggerDocuments(
                rules=Path(base) / "chat_react.yaml", lists=Path(base) / "chat_react_lists.yaml"
            ),
            chat_response=TriggerDocuments(
                rules=Path(base) / "chat_response.yaml",
                lists=Path(base) / "chat_response_lists.yaml",
            ),
        ),
    )


def make_response(*, done: bool = False, response_type=None) -> MagicMock:
    response = MagicMock()
    response.is_done = MagicMock(return_value=done)
    response.type = response_type
    response.send_message = AsyncMock()
    response.defer = AsyncMock()
    response.edit_message = AsyncMock()
    response.send_modal = AsyncMock()
    return response


def make_interaction(
    custom_id: str = "",
    *,
    kind: str = "button",
    user_id: int = 100,
    permissions: Optional[discord.Permissions] = None,
    created_at: datetime = START,
    message_created_at: Optional[datetime] = START,
    values: Optional[List[str]] = None,
    components: Optional[List[dict]] = None,
    guild_id: Optional[int] = 10,
    channel_id: Optional[int] = 20,
    done: bool = False,
) -> SimpleNamespace:
    if kind == "modal":
        interaction_type = discord.InteractionType.modal_submit
        data: Dict[str, Any] = {"custom_id": custom_id, "components": components or []}
    elif kind == "command":
        interaction_type = discord.InteractionType.application_command
        data = {"name": custom_id}
    else:
        interaction_type = discord.InteractionType.component
        component_type = (
            discord.ComponentType.button if kind == "button" else discord.ComponentType.string_select
        )
        data = {"custom_id": custom_id, "component_type": component_type.value}
        if values is not None:
            data["values"] = values
    message = (
        SimpleNamespace(created_at=message_created_at) if message_created_at is not None else None
    )
    return SimpleNamespace(
        id=555,
        type=interaction_type,
        data=data,
        user=SimpleNamespace(id=user_id, mention=f"<@{user_id}>", roles=[]),
        permissions=permissions if permissions is not None else discord.Permissions.none(),
        app_permissions=discord.Permissions.all(),
        created_at=created_at,
        message=message,
        guild=SimpleNamespace(id=guild_id, owner_id=1) if guild_id is not None else None,
        guild_id=guild_id,
        channel_id=channel_id,
        channel=None,
        client=None,
        response=make_response(done=done),
        followup=SimpleNamespace(send=AsyncMock()),
        edit_original_response=AsyncMock(),
    )


def text_component(custom_id: str, value: str) -> dict:
    return {"type": 1, "components": [{"type": 4, "custom_id": custom_id, "value": value}]}


def make_text_channel(channel_id: int = 20, *, message_id: int = 9000) -> MagicMock:
    """A TextChannel mock whose ``send`` returns a message that can be reacted to and edited."""
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    sent = MagicMock()
    sent.id = message_id
    sent.add_reaction = AsyncMock()
    sent.edit = AsyncMock()
    channel.send = AsyncMock(return_value=sent)
    channel.fetch_message = AsyncMock(return_value=sent)
    channel.sent_message = sent
    return channel


def make_bot(channel: Optional[MagicMock] = None, *, user_id: int = 999) -> SimpleNamespace:
    return SimpleNamespace(
        user=SimpleNamespace(id=user_id),
        latency=0.042,
        get_channel=MagicMock(return_value=channel),
        fetch_channel=AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "missing")),
        get_guild=MagicMock(return_value=None),
        get_user=MagicMock(return_value=None),
        fetch_user=AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "missing")),
        get_emoji=MagicMock(return_value=None),
    )
