"""Data models used for giveaway persistence, wizard sessions and routing."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import List, Optional, Union

TITLE_MAX_LENGTH = 100
PRIZE_MAX_LENGTH = 200
# the question is shown as the answer field placeholder, which Discord caps at 100
QUESTION_MAX_LENGTH = 100
ANSWER_MAX_LENGTH = 100
UNLIMITED_ATTEMPTS = -1


class EntryMode(enum.Enum):
    BUTTON = "button"
    REACTION = "reaction"
    TRIVIA = "trivia"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def next(self) -> "EntryMode":
        members = list(EntryMode)
        return members[(members.index(self) + 1) % len(members)]


class GiveawayStatus(enum.Enum):
    ACTIVE = "Active"
    ENDED = "Ended"
    CANCELLED = "Cancelled"


@dataclass(slots=True, frozen=True)
class ButtonEntry:
    mode = EntryMode.BUTTON

    def to_payload(self) -> dict:
        return {"mode": self.mode.value}


@dataclass(slots=True, frozen=True)
class ReactionEntry:
    """Entry by reacting with one emoji.

    ``identifier`` is what incoming reactions are compared against (custom
    emoji id or the unicode emoji itself); ``display_emoji`` is what gets
    rendered and added to the announcement.
    """

    identifier: str
    display_emoji: str
    mode = EntryMode.REACTION

    def to_payload(self) -> dict:
        return {
            "mode": self.mode.value,
            "identifier": self.identifier,
            "display_emoji": self.display_emoji,
        }


@dataclass(slots=True, frozen=True)
class TriviaEntry:
    question: str
    answer: str
    max_attempts: int = UNLIMITED_ATTEMPTS
    mode = EntryMode.TRIVIA

    @property
    def unlimited(self) -> bool:
        return self.max_attempts == UNLIMITED_ATTEMPTS

    def is_correct(self, attempt: str) -> bool:
        return attempt.strip().lower() == self.answer.strip().lower()

    def to_payload(self) -> dict:
        return {
            "mode": self.mode.value,
            "question": self.question,
            "answer": self.answer,
            "max_attempts": self.max_attempts,
        }


Entry = Union[ButtonEntry, ReactionEntry, TriviaEntry]


def entry_from_payload(payload: dict) -> Entry:
    mode = EntryMode(payload.get("mode", EntryMode.BUTTON.value))
    if mode is EntryMode.REACTION:
        return ReactionEntry(
            identifier=str(payload["identifier"]),
            display_emoji=str(payload.get("display_emoji") or payload["identifier"]),
        )
    if mode is EntryMode.TRIVIA:
        max_attempts = payload.get("max_attempts")
        if not max_attempts:
            max_attempts = UNLIMITED_ATTEMPTS
        return TriviaEntry(
            question=str(payload["question"]),
            answer=str(payload["answer"]),
            max_attempts=int(max_attempts),
        )
    return ButtonEntry()


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(slots=True)
class Giveaway:
    """An announced giveaway along with its participants and outcome."""
    id: str
    guild_id: int
    channel_id: int
    message_id: int
    title: str
    prize: str
    start_time: datetime
    end_time: datetime
    creator_id: int
    entry: Entry = field(default_factory=ButtonEntry)
    winner_count: int = 1
    participants: List[int] = field(default_factory=list)
    winners: List[int] = field(default_factory=list)
    ended: bool = False
    cancelled: bool = False

    @property
    def entry_mode(self) -> EntryMode:
        return self.entry.mode

    @property
    def status(self) -> GiveawayStatus:
        if self.cancelled:
            return GiveawayStatus.CANCELLED
        if self.ended:
            return GiveawayStatus.ENDED
        return GiveawayStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return not self.ended and not self.cancelled

    def accepts_entries(self, now: datetime) -> bool:
        return self.is_active and now < self.end_time

    def add_participant(self, user_id: int) -> bool:
        """Add a participant if they are not already in the list."""
        if user_id in self.participants:
            return False
        self.participants.append(user_id)
        return True

    def to_payload(self) -> dict:
        """Serialize the giveaway to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "message_id": self.message_id,
            "title": self.title,
            "prize": self.prize,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "creator_id": self.creator_id,
            "entry": self.entry.to_payload(),
            "winner_count": self.winner_count,
            "participants": self.participants,
            "winners": self.winners,
            "ended": self.ended,
            "cancelled": self.cancelled,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "Giveaway":
        """Reconstruct a Giveaway from serialized payload data."""
        cancelled = bool(payload.get("cancelled", False))
        return cls(
            id=str(payload["id"]),
            guild_id=int(payload["guild_id"]),
            channel_id=int(payload["channel_id"]),
            message_id=int(payload["message_id"]),
            title=str(payload["title"]),
            prize=str(payload["prize"]),
            start_time=_aware(datetime.fromisoformat(payload["start_time"])),
            end_time=_aware(datetime.fromisoformat(payload["end_time"])),
            creator_id=int(payload["creator_id"]),
            entry=entry_from_payload(payload.get("entry") or {}),
            winner_count=int(payload.get("winner_count", 1)),
            participants=list(map(int, payload.get("participants", []))),
            winners=list(map(int, payload.get("winners", []))),
            # a cancelled giveaway is always ended
            ended=bool(payload.get("ended", False)) or cancelled,
            cancelled=cancelled,
        )


@dataclass(slots=True)
class CreationSession:
    """Wizard state for a giveaway draft that has not been announced yet."""
    session_id: str
    guild_id: int
    channel_id: int
    creator_id: int
    title: Optional[str] = None
    prize: Optional[str] = None
    duration: timedelta = timedelta(hours=1)
    winner_count: int = 1
    entry_mode: EntryMode = EntryMode.BUTTON
    reaction_identifier: Optional[str] = None
    reaction_display: Optional[str] = None
    trivia_question: Optional[str] = None
    trivia_answer: Optional[str] = None
    max_trivia_attempts: int = UNLIMITED_ATTEMPTS
    created_at: Optional[datetime] = None

    def validate(self) -> Optional[str]:
        """Return a user facing problem with the draft, or ``None`` if it can start."""
        if not self.title or not self.prize or self.duration.total_seconds() <= 0:
            return "Please set title, prize, and a valid duration before starting."
        if self.winner_count <= 0:
            return "The number of winners must be at least 1."
        if self.entry_mode is EntryMode.TRIVIA and not (
            self.trivia_question and self.trivia_answer
        ):
            return "For trivia, set question and answer."
        if self.entry_mode is EntryMode.REACTION and not self.reaction_identifier:
            return "For reaction entry, set the emoji to react with."
        return None

    def build_entry(self) -> Entry:
        if self.entry_mode is EntryMode.REACTION:
            if self.reaction_identifier is None:
                raise ValueError("Reaction entry needs an emoji.")
            return ReactionEntry(
                identifier=self.reaction_identifier,
                display_emoji=self.reaction_display or self.reaction_identifier,
            )
        if self.entry_mode is EntryMode.TRIVIA:
            if not (self.trivia_question and self.trivia_answer):
                raise ValueError("Trivia entry needs a question and an answer.")
            return TriviaEntry(
                question=self.trivia_question,
                answer=self.trivia_answer,
                max_attempts=self.max_trivia_attempts or UNLIMITED_ATTEMPTS,
            )
        return ButtonEntry()


class TierKind(enum.Enum):
    USER = "user"
    PERMISSION = "permission"


@dataclass(slots=True, frozen=True)
class TierRule:
    """Assigns ``level`` to invokers matching a user id or holding a permission."""
    kind: TierKind
    value: Union[int, str]
    level: int

    @classmethod
    def user(cls, user_id: int, level: int) -> "TierRule":
        return cls(TierKind.USER, int(user_id), level)

    @classmethod
    def permission(cls, flag: str, level: int) -> "TierRule":
        return cls(TierKind.PERMISSION, flag, level)
