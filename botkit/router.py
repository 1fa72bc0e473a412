"""Routes component and modal interactions to registered handlers by custom id."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence, Tuple

import discord

from .custom_ids import CustomId, matches_prefix
from .models import TierKind, TierRule
from .timeutils import Clock, utcnow

log = logging.getLogger(__name__)
PERMISSION_LOG = logging.getLogger("botkit.permissions")

DEFAULT_LEVEL = -1
DEFAULT_TIMEOUT = timedelta(minutes=15)
FAILURE_NOTICE = "There was an error while processing this interaction."
DENIED_NOTICE = "You do not have permission to use this."


class _UseDefault(enum.Enum):
    TOKEN = 0


USE_DEFAULT = _UseDefault.TOKEN


class ComponentKind(enum.Enum):
    BUTTON = "button"
    SELECT = "select"
    MODAL = "modal"


@dataclass(slots=True, frozen=True)
class InteractionMatch:
    """What the router resolved for an interaction, passed to the handler."""
    key: str
    custom_id: CustomId
    level: int = DEFAULT_LEVEL

    @property
    def entity_id(self) -> Optional[str]:
        return self.custom_id.entity_id


Handler = Callable[[discord.Interaction, InteractionMatch], Awaitable[Any]]


@dataclass(slots=True)
class Registration:
    key: str
    handler: Handler
    timeout: Optional[timedelta]
    required_permissions: Tuple[str, ...] = ()
    tiers: Tuple[TierRule, ...] = field(default_factory=tuple)


def interaction_kind(interaction: discord.Interaction) -> Optional[ComponentKind]:
    if interaction.type is discord.InteractionType.modal_submit:
        return ComponentKind.MODAL
    if interaction.type is not discord.InteractionType.component:
        return None
    data = interaction.data or {}
    if data.get("component_type") == discord.ComponentType.button.value:
        return ComponentKind.BUTTON
    return ComponentKind.SELECT


def modal_values(interaction: discord.Interaction) -> Dict[str, str]:
    """Flatten submitted modal fields into ``{custom_id: value}``."""
    values: Dict[str, str] = {}

    def walk(components: Iterable[dict]) -> None:
        for component in components:
            if "value" in component and "custom_id" in component:
                values[component["custom_id"]] = component["value"] or ""
            if "component" in component:
                walk([component["component"]])
            if "components" in component:
                walk(component["components"])

    walk((interaction.data or {}).get("components", []))
    return values


def selected_values(interaction: discord.Interaction) -> list[str]:
    return list((interaction.data or {}).get("values", []))


def resolve_level(
    interaction: discord.Interaction, tiers: Sequence[TierRule]
) -> int:
    """First matching tier rule wins; no match yields ``DEFAULT_LEVEL``."""
    user_id = getattr(interaction.user, "id", None)
    permissions = getattr(interaction, "permissions", None)
    for rule in tiers:
        if rule.kind is TierKind.USER and user_id is not None and int(rule.value) == user_id:
            return rule.level
        if rule.kind is TierKind.PERMISSION and permissions is not None:
            if getattr(permissions, str(rule.value), False):
                return rule.level
    return DEFAULT_LEVEL


def missing_permissions(
    interaction: discord.Interaction, required: Iterable[str]
) -> list[str]:
    permissions = getattr(interaction, "permissions", None)
    return [
        name for name in required
        if permissions is None or not getattr(permissions, name, False)
    ]


async def send_private(interaction: discord.Interaction, content: str) -> None:
    """Reply privately using whichever acknowledgement is still available."""
    response = interaction.response
    if not response.is_done():
        await response.send_message(content, ephemeral=True)
    elif response.type is discord.InteractionResponseType.deferred_channel_message:
        await interaction.edit_original_response(content=content)
    else:
        await interaction.followup.send(content, ephemeral=True)


class InteractionRouter:
    """Process-wide registry of button, select and modal handlers.

    Lookup is exact first, then the longest registered id that the incoming
    custom id continues after a ``_`` separator.
    """

    def __init__(
        self, *, default_timeout: Optional[timedelta] = DEFAULT_TIMEOUT, clock: Clock = utcnow
    ) -> None:
        self.default_timeout = default_timeout
        self._clock = clock
        self._registry: Dict[ComponentKind, Dict[str, Registration]] = {
            kind: {} for kind in ComponentKind
        }

    def register_button(self, custom_id: str, handler: Handler, **options: Any) -> None:
        self.register(ComponentKind.BUTTON, custom_id, handler, **options)

    def register_select(self, custom_id: str, handler: Handler, **options: Any) -> None:
        self.register(ComponentKind.SELECT, custom_id, handler, **options)

    def register_modal(self, custom_id: str, handler: Handler, **options: Any) -> None:
        options.setdefault("timeout", None)
        self.register(ComponentKind.MODAL, custom_id, handler, **options)

    def register(
        self,
        kind: ComponentKind,
        custom_id: str,
        handler: Handler,
        *,
        timeout: Optional[timedelta] | _UseDefault = USE_DEFAULT,
        required_permissions: Iterable[str] = (),
        tiers: Iterable[TierRule] = (),
    ) -> None:
        if not custom_id:
            raise ValueError("custom_id must not be empty")
        registry = self._registry[kind]
        if custom_id in registry:
            log.warning("Replacing %s handler for %s", kind.value, custom_id)
        effective_timeout = self.default_timeout if timeout is USE_DEFAULT else timeout
        for name in required_permissions:
            if name not in discord.Permissions.VALID_FLAGS:
                raise ValueError(f"Unknown permission flag: {name}")
        registry[custom_id] = Registration(
            key=custom_id,
            handler=handler,
            timeout=effective_timeout,
            required_permissions=tuple(required_permissions),
            tiers=tuple(tiers),
        )
        log.debug("Registered %s handler for %s", kind.value, custom_id)

    def unregister(self, kind: ComponentKind, custom_id: str) -> bool:
        return self._registry[kind].pop(custom_id, None) is not None

    def registered(self, kind: ComponentKind) -> list[str]:
        return sorted(self._registry[kind])

    def find(self, kind: ComponentKind, custom_id: str) -> Optional[Registration]:
        registry = self._registry[kind]
        exact = registry.get(custom_id)
        if exact is not None:
            return exact
        best: Optional[Registration] = None
        for key, registration in registry.items():
            if matches_prefix(custom_id, key) and (best is None or len(key) > len(best.key)):
                best = registration
        return best

    async def dispatch(self, interaction: discord.Interaction) -> bool:
        """Run the handler for ``interaction``. Returns whether a handler ran."""
        kind = interaction_kind(interaction)
        if kind is None:
            return False
        custom_id = (interaction.data or {}).get("custom_id", "")
        registration = self.find(kind, custom_id)
        if registration is None:
            log.debug("No %s handler for %s; acknowledging.", kind.value, custom_id)
            await self._acknowledge(interaction)
            return False

        user_id = getattr(interaction.user, "id", None)
        missing = missing_permissions(interaction, registration.required_permissions)
        if missing:
            PERMISSION_LOG.info(
                "Denied %s for user %s: missing %s.", custom_id, user_id, missing
            )
            await self._safe_notice(interaction, DENIED_NOTICE)
            return False

        if self._is_stale(interaction, registration.timeout):
            log.debug("Dropping stale interaction %s from user %s.", custom_id, user_id)
            await self._acknowledge(interaction)
            return False

        match = InteractionMatch(
            key=registration.key,
            custom_id=CustomId.decode(custom_id, registration.key) or CustomId(registration.key),
            level=resolve_level(interaction, registration.tiers),
        )
        try:
            await registration.handler(interaction, match)
        except Exception:
            log.exception(
                "Handler %s failed for %s (user %s).", registration.key, custom_id, user_id
            )
            await self._safe_notice(interaction, FAILURE_NOTICE)
        return True

    def _is_stale(
        self, interaction: discord.Interaction, timeout: Optional[timedelta]
    ) -> bool:
        if timeout is None:
            return False
        message = getattr(interaction, "message", None)
        if message is None:
            return False
        created = getattr(interaction, "created_at", None) or self._clock()
        return created - message.created_at > timeout

    async def _acknowledge(self, interaction: discord.Interaction) -> None:
        if interaction.response.is_done():
            return
        try:
            await interaction.response.defer()
        except discord.HTTPException as exc:
            log.debug("Unable to acknowledge interaction: %s", exc)

    async def _safe_notice(self, interaction: discord.Interaction, content: str) -> None:
        try:
            await send_private(interaction, content)
        except discord.DiscordException as exc:
            log.warning("Unable to send interaction notice: %s", exc)
