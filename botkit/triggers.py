"""Chat trigger rules: match phrases in messages and react, reply or run commands."""

from __future__ import annotations

import enum
import logging
import random
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

import discord

from .commands import CommandRegistry
from .cooldowns import CooldownLedger
from .rules import WatchedDocument
from .storage import UserActionLedger

log = logging.getLogger(__name__)


class TriggerMode(enum.Enum):
    REACT = "react"
    REPLY = "reply"
    RESPOND = "respond"
    COMMAND = "command"


class MatchMode(enum.Enum):
    EXACT = "exact"
    WORD = "word"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"


def find_matching_phrase(
    content: str, phrases: Sequence[str], mode: MatchMode = MatchMode.WORD
) -> Optional[str]:
    """Return the first phrase found in ``content`` under ``mode``, if any."""
    lowered = content.lower()
    for phrase in phrases:
        if not phrase:
            continue
        needle = phrase.lower()
        if mode is MatchMode.EXACT:
            if lowered == needle:
                return phrase
        elif mode is MatchMode.CONTAINS:
            if needle in lowered:
                return phrase
        elif mode is MatchMode.STARTS_WITH:
            if lowered.startswith(needle):
                return phrase
        else:
            # colons count as word characters so ":wave:" style tokens never match "wave"
            pattern = rf"(?<![\w:]){re.escape(phrase)}(?![\w:])"
            if re.search(pattern, content, re.IGNORECASE):
                return phrase
    return None


@dataclass(slots=True)
class TriggerRule:
    key: str
    mode: TriggerMode
    item_list: str
    trigger_list: Optional[str] = None
    match_mode: MatchMode = MatchMode.WORD
    allowed_channels_list: Optional[str] = None
    reload_minutes: Optional[float] = None
    max_charges: Optional[int] = None
    max_per_user: int = 0
    reset_user_minutes: Optional[float] = None
    global_scope: bool = False
    enabled: bool = True

    @classmethod
    def from_payload(cls, key: str, payload: Dict[str, Any]) -> "TriggerRule":
        reload_minutes = payload.get("reload_minutes")
        max_charges = payload.get("max_charges")
        reset_user_minutes = payload.get("reset_user_minutes")
        scope = str(payload.get("scope", "guild")).lower()
        if scope not in ("guild", "global"):
            raise ValueError(f"unknown scope {scope!r}")
        if reload_minutes is not None and float(reload_minutes) <= 0:
            raise ValueError("reload_minutes must be positive")
        if max_charges is not None and int(max_charges) <= 0:
            raise ValueError("max_charges must be positive")
        return cls(
            key=key,
            mode=TriggerMode(str(payload["mode"]).lower()),
            item_list=str(payload["item_list"]),
            trigger_list=payload.get("trigger_list"),
            match_mode=MatchMode(str(payload.get("match_mode", "word")).lower()),
            allowed_channels_list=payload.get("allowed_channels_list"),
            reload_minutes=float(reload_minutes) if reload_minutes is not None else None,
            max_charges=int(max_charges) if max_charges is not None else None,
            max_per_user=int(payload.get("max_per_user") or 0),
            reset_user_minutes=(
                float(reset_user_minutes) if reset_user_minutes is not None else None
            ),
            global_scope=scope == "global",
            enabled=bool(payload.get("enabled", True)),
        )


def render_template(template: str, author: discord.abc.User) -> str:
    return template.replace("{user}", author.mention)


class TriggerEngine:
    """Evaluates every enabled rule of one rule document against a message.

    The rule document maps rule keys to rule settings; the list document maps
    list names to the phrases, items and channel ids the rules refer to.
    """

    def __init__(
        self,
        namespace: str,
        rules: WatchedDocument,
        lists: WatchedDocument,
        cooldowns: CooldownLedger,
        user_actions: UserActionLedger,
        commands: CommandRegistry,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.namespace = namespace
        self.rules = rules
        self.lists = lists
        self.cooldowns = cooldowns
        self.user_actions = user_actions
        self.commands = commands
        self._rng = rng or random.Random()

    def load_rules(self) -> List[TriggerRule]:
        parsed: List[TriggerRule] = []
        for key, payload in self.rules.load().items():
            if not isinstance(payload, dict):
                log.warning("[%s] Rule %s must be a mapping; skipping.", self.namespace, key)
                continue
            try:
                parsed.append(TriggerRule.from_payload(str(key), payload))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("[%s] Rule %s is invalid: %s", self.namespace, key, exc)
        return parsed

    async def handle_message(self, message: discord.Message) -> int:
        """Run every matching rule; returns how many actions were performed."""
        if message.author.bot:
            return 0
        performed = 0
        for rule in self.load_rules():
            if not rule.enabled:
                continue
            try:
                if await self._apply(rule, message):
                    performed += 1
            except discord.HTTPException as exc:
                log.warning(
                    "[%s] Failed to perform %s for rule %s: %s",
                    self.namespace,
                    rule.mode.value,
                    rule.key,
                    exc,
                )
            except Exception:
                log.exception("[%s] Rule %s failed.", self.namespace, rule.key)
        return performed

    async def _apply(self, rule: TriggerRule, message: discord.Message) -> bool:
        if rule.global_scope:
            scope_id = "global"
        elif message.guild is not None:
            scope_id = str(message.guild.id)
        else:
            return False

        items = self.lists.get_list(rule.item_list)
        if not items:
            log.warning(
                "[%s] Item list %r for rule %s is empty or missing; skipping.",
                self.namespace,
                rule.item_list,
                rule.key,
            )
            return False
        triggers = self.lists.get_list(rule.trigger_list)
        if triggers is None and rule.mode not in (TriggerMode.REACT, TriggerMode.COMMAND):
            log.warning(
                "[%s] Rule %s needs a trigger list for mode %s; skipping.",
                self.namespace,
                rule.key,
                rule.mode.value,
            )
            return False
        if rule.mode is TriggerMode.COMMAND and not triggers:
            log.warning("[%s] Command rule %s has no triggers; skipping.", self.namespace, rule.key)
            return False

        allowed_channels = self.lists.get_list(rule.allowed_channels_list) or []
        if message.guild is not None and allowed_channels:
            if str(message.channel.id) not in allowed_channels:
                return False

        if triggers:
            if find_matching_phrase(message.content, triggers, rule.match_mode) is None:
                return False
        elif rule.mode is not TriggerMode.REACT:
            return False

        if rule.reload_minutes is not None and rule.max_charges is not None:
            if not self.cooldowns.try_consume(
                f"{self.namespace}_{rule.key}_cd",
                timedelta(minutes=rule.reload_minutes),
                rule.max_charges,
            ):
                return False

        if rule.max_per_user > 0:
            reset = (
                timedelta(minutes=rule.reset_user_minutes)
                if rule.reset_user_minutes
                else None
            )
            if not await self.user_actions.try_record(
                f"{self.namespace}_{rule.key}_user",
                message.author.id,
                rule.max_per_user,
                scope_id,
                reset,
            ):
                return False

        return await self._perform(rule, message, items)

    async def _perform(
        self, rule: TriggerRule, message: discord.Message, items: List[str]
    ) -> bool:
        if rule.mode is TriggerMode.COMMAND:
            return await self._run_command(rule, message, items[0])

        item = self._rng.choice(items)
        if rule.mode is TriggerMode.REACT:
            await message.add_reaction(item)
        elif rule.mode is TriggerMode.REPLY:
            await message.reply(render_template(item, message.author))
        else:
            await message.channel.send(render_template(item, message.author))
        log.debug("[%s] Rule %s performed %s in %s.", self.namespace, rule.key, rule.mode.value, message.channel.id)
        return True

    async def _run_command(
        self, rule: TriggerRule, message: discord.Message, command_name: str
    ) -> bool:
        command = self.commands.get(command_name)
        if command is None:
            log.warning("[%s] Rule %s names unknown command %r.", self.namespace, rule.key, command_name)
            return False
        if not self.commands.can_run_from_message(command, message):
            log.info(
                "[%s] User %s triggered %s but lacks permissions.",
                self.namespace,
                message.author.id,
                command_name,
            )
            return False
        if command.message_callback is None:
            log.info("[%s] Command %s has no message entry point.", self.namespace, command_name)
            return False
        log.info("[%s] User %s triggered command %s via message.", self.namespace, message.author.id, command_name)
        await command.message_callback(message)
        return True
