# ─────────────────────────────────────────────────────────────────────────────
# Quota Gate — per-client fixed window with lazy rollover
# ─────────────────────────────────────────────────────────────────────────────
# Each client identity gets `limit` requests per window. The window starts at
# the client's first request and rolls over lazily on the first request after
# it expires; there is no timer per client.
#
# Thread-safe: the read-check-increment sequence runs under one lock, so two
# concurrent requests from the same client can never both take the last slot.
#
# Bounded: records live in a cachetools LRUCache capped at `max_clients`; the
# least recently seen identity is evicted first. `sweep()` additionally drops
# expired records that have been idle past a grace period.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import structlog
from cachetools import Cache, LRUCache  # type: ignore[import-untyped]

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClientQuotaRecord:
    """Request count and window expiry for one client identity."""

    client_id: str
    count: int
    window_reset_at: datetime
    last_seen_at: datetime


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of one admission check. Rejection is not an error."""

    admitted: bool
    client_id: str
    count: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    def retry_after_seconds(self, now: datetime | None = None) -> int:
        """Whole seconds until the window resets (at least 1)."""
        delta = (self.reset_at - (now or utcnow())).total_seconds()
        return max(math.ceil(delta), 1)


class _RecordCache(LRUCache):
    """LRUCache that counts the records it pushes out."""

    def __init__(self, maxsize: int) -> None:
        super().__init__(maxsize=maxsize)
        self.evictions = 0

    def popitem(self) -> tuple[str, ClientQuotaRecord]:
        client_id, record = super().popitem()
        self.evictions += 1
        logger.debug("quota_record_evicted", client_id=client_id)
        return client_id, record

    def peek(self, client_id: str) -> ClientQuotaRecord | None:
        """Read without refreshing recency."""
        if client_id not in self:
            return None
        return Cache.__getitem__(self, client_id)


class QuotaGate:
    """Admit-or-reject per client identity over a fixed rolling window."""

    def __init__(self, limit: int = 50, window_seconds: int = 3600, max_clients: int = 10_000):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if max_clients < 1:
            raise ValueError("max_clients must be >= 1")
        self._limit = limit
        self._window = timedelta(seconds=window_seconds)
        self._max_clients = max_clients
        self._records = _RecordCache(max_clients)
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return int(self._window.total_seconds())

    @property
    def active_clients(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def evictions(self) -> int:
        with self._lock:
            return self._records.evictions

    def admit(self, client_id: str, now: datetime | None = None) -> QuotaDecision:
        """Count one request for ``client_id`` and decide whether to serve it.

        New client or expired window: start a fresh window with count=1.
        Inside the window and under the limit: increment. Otherwise reject,
        reporting the stored reset time unchanged.
        """
        now = now or utcnow()
        with self._lock:
            # LRUCache.get refreshes recency, so rejected clients stay warm too
            record = self._records.get(client_id)

            if record is None or now > record.window_reset_at:
                record = ClientQuotaRecord(
                    client_id=client_id,
                    count=1,
                    window_reset_at=now + self._window,
                    last_seen_at=now,
                )
                self._records[client_id] = record
                return self._decision(record, admitted=True)

            record.last_seen_at = now

            if record.count < self._limit:
                record.count += 1
                return self._decision(record, admitted=True)

            decision = self._decision(record, admitted=False)

        logger.info(
            "quota_rejected",
            client_id=client_id,
            count=decision.count,
            limit=self._limit,
            reset_at=decision.reset_at.isoformat(),
        )
        return decision

    def sweep(self, now: datetime | None = None, idle_grace_seconds: float = 0) -> int:
        """Drop records whose window expired and that sat idle past the grace.

        Returns the number of records removed. A swept client simply starts
        a fresh window on its next request, same as after a lazy rollover.
        """
        now = now or utcnow()
        grace = timedelta(seconds=idle_grace_seconds)
        with self._lock:
            stale = []
            for client_id in list(self._records):
                record = self._records.peek(client_id)
                if now > record.window_reset_at and now - record.last_seen_at > grace:
                    stale.append(client_id)
            for client_id in stale:
                del self._records[client_id]
        if stale:
            logger.debug("quota_sweep", removed=len(stale), remaining=self.active_clients)
        return len(stale)

    def get(self, client_id: str) -> ClientQuotaRecord | None:
        """Snapshot of a record. Mutating it does not affect the gate."""
        with self._lock:
            record = self._records.peek(client_id)
            return replace(record) if record is not None else None

    def reset(self) -> None:
        with self._lock:
            # A fresh cache, so clearing is not counted as eviction
            evictions = self._records.evictions
            self._records = _RecordCache(self._max_clients)
            self._records.evictions = evictions

    def _decision(self, record: ClientQuotaRecord, admitted: bool) -> QuotaDecision:
        return QuotaDecision(
            admitted=admitted,
            client_id=record.client_id,
            count=record.count,
            limit=self._limit,
            reset_at=record.window_reset_at,
        )
