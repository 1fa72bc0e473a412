"""Clock and duration helpers shared by the ledgers and the giveaway engine."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional

Clock = Callable[[], datetime]

_UNIT_TOKEN_RE = re.compile(r"(\d+)\s*([dhms])")
_UNIT_ONLY_RE = re.compile(r"^(?:\s*\d+\s*[dhms])+\s*$")
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def parse_duration(value: str) -> Optional[timedelta]:
    """Parse ``1d2h30m``, ``HH:MM:SS``, ``MM:SS`` or a bare number of minutes.

    Returns ``None`` for unparseable input or a non-positive duration.
    """
    text = (value or "").strip().lower()
    if not text:
        return None

    if _UNIT_ONLY_RE.match(text):
        seconds = sum(
            int(amount) * _UNIT_SECONDS[unit]
            for amount, unit in _UNIT_TOKEN_RE.findall(text)
        )
    else:
        parts = text.split(":")
        try:
            numbers = [int(part) for part in parts]
        except ValueError:
            return None
        if any(number < 0 for number in numbers):
            return None
        if len(numbers) == 3:
            seconds = numbers[0] * 3600 + numbers[1] * 60 + numbers[2]
        elif len(numbers) == 2:
            seconds = numbers[0] * 60 + numbers[1]
        elif len(numbers) == 1:
            seconds = numbers[0] * 60
        else:
            return None

    if seconds <= 0:
        return None
    return timedelta(seconds=seconds)


def format_duration(duration: Optional[timedelta]) -> str:
    if duration is None or duration.total_seconds() <= 0:
        return "Not Set"
    total = int(duration.total_seconds())
    if total == 0:
        return "Less than 1s"
    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    # seconds only matter for short durations
    if seconds and not days and not hours:
        parts.append(f"{seconds}s")
    return " ".join(parts) if parts else "0s"
