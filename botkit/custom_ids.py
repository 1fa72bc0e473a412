"""Composite component ids: ``<prefix>_<entity id>_<field>_<field>...``."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

SEPARATOR = "_"
MAX_CUSTOM_ID_LENGTH = 100


def new_entity_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True, frozen=True)
class CustomId:
    """A registered prefix plus the entity it targets and optional sub-fields.

    The prefix may itself contain separators (``gw_enter_btn``); the entity id
    and the fields may not, which keeps decoding unambiguous once the prefix is
    known.
    """

    prefix: str
    entity_id: Optional[str] = None
    fields: Tuple[str, ...] = ()

    def encode(self) -> str:
        parts = [self.prefix]
        if self.entity_id is not None:
            parts.append(self.entity_id)
        elif self.fields:
            raise ValueError("fields require an entity id")
        parts.extend(self.fields)
        for part in parts[1:]:
            if not part or SEPARATOR in part:
                raise ValueError(f"invalid custom id segment: {part!r}")
        encoded = SEPARATOR.join(parts)
        if len(encoded) > MAX_CUSTOM_ID_LENGTH:
            raise ValueError(
                f"custom id exceeds {MAX_CUSTOM_ID_LENGTH} characters: {encoded!r}"
            )
        return encoded

    def __str__(self) -> str:
        return self.encode()

    def field(self, index: int, default: Optional[str] = None) -> Optional[str]:
        if 0 <= index < len(self.fields):
            return self.fields[index]
        return default

    @classmethod
    def decode(cls, raw: str, prefix: str) -> Optional["CustomId"]:
        if raw == prefix:
            return cls(prefix)
        if not raw.startswith(prefix + SEPARATOR):
            return None
        remainder = raw[len(prefix) + 1:]
        if not remainder:
            return None
        entity_id, *fields = remainder.split(SEPARATOR)
        return cls(prefix, entity_id, tuple(fields))


def matches_prefix(raw: str, prefix: str) -> bool:
    """True when ``raw`` is ``prefix`` or continues it after a separator."""
    if not raw.startswith(prefix):
        return False
    return len(raw) == len(prefix) or raw[len(prefix)] == SEPARATOR
