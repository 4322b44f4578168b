from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fxrelay.models.rates import Snapshot
from .errors import CacheEmpty

"""Process rate cache.

Purpose:
    Hold at most one Snapshot together with its capture time and derived
    expiry, so request handlers and the push channel can serve rates without
    ever calling the upstream provider.

Design:
    - Expiry is the earlier of the local TTL bound (as_of + TTL) and the
      provider's own `time_next_update_unix`.
    - Snapshot, as_of and expiry live in one frozen _CacheEntry; put() swaps the
      reference in a single assignment so a reader sees either the old entry
      or the new one, never a mix.
    - One instance per application, created by the composition root
      (fxrelay.main.create_app) and passed to whoever needs it.
"""


@dataclass(frozen=True)
class CacheEntry:
    snapshot: Snapshot
    as_of_unix: int
    expires_at_ms: int

    @property
    def expires_unix(self) -> int:
        return self.expires_at_ms // 1000


def compute_expires_at_ms(as_of_unix: int, ttl_ms: int, next_update_unix: int) -> int:
    local_ms = as_of_unix * 1000 + ttl_ms
    if next_update_unix <= 0:
        # provider did not declare a window
        return local_ms
    # never below as_of: an already-passed provider bound means "expired now"
    return max(as_of_unix * 1000, min(local_ms, next_update_unix * 1000))


class RateCache:
    """Single-snapshot cache with dual expiry."""

    def __init__(self, ttl_ms: int):
        if ttl_ms <= 0:
            raise ValueError("cache ttl must be positive milliseconds")
        self._ttl_ms = ttl_ms
        self._entry: Optional[CacheEntry] = None

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @property
    def entry(self) -> Optional[CacheEntry]:
        """Current entry regardless of validity (None before the first put)."""
        return self._entry

    def is_empty(self) -> bool:
        return self._entry is None

    def put(self, snapshot: Snapshot, now_ms: int) -> CacheEntry:
        as_of_unix = now_ms // 1000
        entry = CacheEntry(
            snapshot=snapshot,
            as_of_unix=as_of_unix,
            expires_at_ms=compute_expires_at_ms(
                as_of_unix, self._ttl_ms, snapshot.next_update_unix
            ),
        )
        self._entry = entry
        return entry

    def peek(self, now_ms: int) -> Optional[CacheEntry]:
        entry = self._entry
        if entry is None or now_ms >= entry.expires_at_ms:
            return None
        return entry

    def valid_entry(self, now_ms: int) -> CacheEntry:
        entry = self.peek(now_ms)
        if entry is None:
            raise CacheEmpty()
        return entry

    def get(self, now_ms: int) -> Snapshot:
        return self.valid_entry(now_ms).snapshot

    def is_valid(self, now_ms: int) -> bool:
        return self.peek(now_ms) is not None

    def remaining_ms(self, now_ms: int) -> int:
        entry = self._entry
        if entry is None:
            return 0
        return max(0, entry.expires_at_ms - now_ms)

    def payload(self, now_ms: int) -> Dict[str, Any]:
        return build_payload(self.valid_entry(now_ms), self._ttl_ms)


def build_payload(entry: CacheEntry, ttl_ms: int) -> Dict[str, Any]:
    """Snapshot plus cache metadata, as pushed to subscribers and served on /api/rates."""
    data = entry.snapshot.as_wire_dict()
    data.update(
        as_of_unix=entry.as_of_unix,
        cache_ttl_ms=ttl_ms,
        expires_unix=entry.expires_unix,
    )
    return data
