"""In-memory token buckets used to throttle chat triggers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from .timeutils import Clock, utcnow

log = logging.getLogger(__name__)


@dataclass(slots=True)
class _Bucket:
    charges: int
    last_refill: datetime


@dataclass(slots=True)
class _ItemUsage:
    uses: int = 0
    exhausted_at: Optional[datetime] = None


class CooldownLedger:
    """Lazily refilled token buckets keyed by arbitrary string ids.

    A bucket starts full. Each call tops it up by the number of whole refill
    intervals elapsed since the last refill and moves ``last_refill`` forward
    by exactly that many intervals, so partial progress towards the next
    charge carries over. Buckets live for the lifetime of the ledger.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._items: Dict[Tuple[str, str], _ItemUsage] = {}

    def try_consume(
        self,
        key: str,
        refill_interval: timedelta,
        max_charges: int,
        *,
        item: Optional[str] = None,
        item_max: Optional[int] = None,
        item_refill_interval: Optional[timedelta] = None,
    ) -> bool:
        if max_charges <= 0:
            raise ValueError("max_charges must be greater than zero")
        if refill_interval <= timedelta(0):
            raise ValueError("refill_interval must be positive")

        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(charges=max_charges, last_refill=now)
            self._buckets[key] = bucket
        else:
            self._refill(bucket, now, refill_interval, max_charges)

        if bucket.charges <= 0:
            log.debug("Cooldown %s exhausted.", key)
            return False

        usage: Optional[_ItemUsage] = None
        if item is not None and item_max is not None and item_max > 0:
            usage = self._items.setdefault((key, item), _ItemUsage())
            if usage.uses >= item_max:
                window = item_refill_interval or refill_interval
                if usage.exhausted_at is not None and now < usage.exhausted_at + window:
                    log.debug("Cooldown %s item %r exhausted.", key, item)
                    return False
                usage.uses = 0
                usage.exhausted_at = None

        bucket.charges -= 1
        if usage is not None:
            usage.uses += 1
            if usage.uses >= (item_max or 0):
                usage.exhausted_at = now
        return True

    def remaining(self, key: str) -> Optional[int]:
        bucket = self._buckets.get(key)
        return bucket.charges if bucket else None

    def reset(self, key: str) -> None:
        self._buckets.pop(key, None)
        for item_key in [k for k in self._items if k[0] == key]:
            del self._items[item_key]

    @staticmethod
    def _refill(
        bucket: _Bucket, now: datetime, interval: timedelta, max_charges: int
    ) -> None:
        elapsed = now - bucket.last_refill
        if elapsed < interval:
            return
        whole_intervals = elapsed // interval
        bucket.charges = min(max_charges, bucket.charges + whole_intervals)
        bucket.last_refill += interval * whole_intervals
