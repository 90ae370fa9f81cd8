# app/x402/cache.py
"""
Verified-payment cache.

Remembers successful verifications by transaction hash so that retries with
an already-proven payment are admitted without another ledger query.

Only admitted verdicts (Verified / DevModeBypass) can be stored. Failed or
pending proofs are never cached because they may still confirm later.

Thread-safe: entries are immutable and swapped in under a lock, so readers
see either no entry or a fully populated one (last writer wins).
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.x402.models import VerificationVerdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached verdict and the time it was stored."""
    verdict: VerificationVerdict
    created_at: float

    def is_expired(self, now: float, ttl_seconds: Optional[float]) -> bool:
        if ttl_seconds is None:
            return False
        return now - self.created_at >= ttl_seconds


class VerifiedPaymentCache:
    """
    In-memory, TTL-capable cache of verified payments.

    Args:
        ttl_seconds: Entry lifetime. None keeps entries forever.
        max_entries: Optional size bound; the oldest entries are evicted first.
        clock: Time source (seconds), injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive or None")

        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> Optional[float]:
        return self._ttl_seconds

    def get(self, transaction_hash: str, scope: str = "") -> Optional[VerificationVerdict]:
        """
        Return the cached verdict for a hash, or None if absent or expired.

        A verdict is only found under the scope it was stored with.
        """
        key = self._key(transaction_hash, scope)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now, self._ttl_seconds):
                del self._entries[key]
                logger.debug(f"x402: Cache entry expired for {transaction_hash}")
                return None
            return entry.verdict

    def put(self, transaction_hash: str, verdict: VerificationVerdict, scope: str = "") -> None:
        """
        Store an admitted verdict.

        Raises:
            ValueError: if the verdict is not cache-eligible
        """
        if not verdict.is_cache_eligible:
            raise ValueError(f"Refusing to cache non-admitted verdict: {verdict.status.value}")

        key = self._key(transaction_hash, scope)
        entry = CacheEntry(verdict=verdict, created_at=self._clock())

        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"x402: Evicted cached payment {evicted}")

    def prune(self) -> int:
        """Drop expired entries. Returns the number removed."""
        if self._ttl_seconds is None:
            return 0

        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if entry.is_expired(now, self._ttl_seconds)
            ]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info(f"x402: Pruned {len(expired)} expired payment cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Optional[float]]:
        with self._lock:
            size = len(self._entries)
        return {
            "entries": size,
            "ttl_seconds": self._ttl_seconds,
            "max_entries": self._max_entries,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def _key(transaction_hash: str, scope: str = "") -> str:
        # EVM hashes are hex; casing does not identify a different transaction
        key = transaction_hash.strip().lower()
        return f"{scope}|{key}" if scope else key
