"""Sampling of backend activity and long-running transactions.

Every sample counts client backends by what they are doing. It also
notes transactions that have been open for longer than a second. The
counts add up until they are read, and the long transactions are kept
until they are read too. Only the longest ones are kept, up to a limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

__all__ = [
    "CLIENT_BACKEND",
    "PG_WAIT_LWLOCK",
    "PG_WAIT_LOCK",
    "LONG_TRANSACTION_THRESHOLD",
    "IDLE_IN_TRANSACTION_QUERY",
    "DEFAULT_LONG_TRANSACTION_MAX",
    "DEFAULT_QUERY_SIZE",
    "BackendState",
    "Backend",
    "ActivitySummary",
    "LongTransaction",
    "ActivitySampler",
]

CLIENT_BACKEND = "client backend"

PG_WAIT_LWLOCK = 0x01000000
PG_WAIT_LOCK = 0x03000000
_WAIT_CLASS_MASK = 0xFF000000

LONG_TRANSACTION_THRESHOLD = 1.0  # seconds
IDLE_IN_TRANSACTION_QUERY = "<IDLE> in transaction"
DEFAULT_LONG_TRANSACTION_MAX = 10
DEFAULT_QUERY_SIZE = 1024


class BackendState(Enum):
    """What a backend is currently doing."""

    UNDEFINED = "undefined"
    IDLE = "idle"
    RUNNING = "active"
    IDLE_IN_TRANSACTION = "idle in transaction"
    FASTPATH = "fastpath function call"
    IDLE_IN_TRANSACTION_ABORTED = "idle in transaction (aborted)"
    DISABLED = "disabled"


@dataclass(frozen=True)
class Backend:
    """A snapshot of one server backend's status."""

    pid: int
    state: BackendState = BackendState.UNDEFINED
    backend_type: str = CLIENT_BACKEND
    wait_event_info: int = 0
    xact_start: Optional[datetime] = None
    query: str = ""
    client_addr: str = ""
    alive: bool = True
    in_vacuum: bool = False

    @property
    def is_waiting(self) -> bool:
        """Whether the backend waits on a lock or a lightweight lock."""
        wait_class = self.wait_event_info & _WAIT_CLASS_MASK
        return wait_class in (PG_WAIT_LWLOCK, PG_WAIT_LOCK)


@dataclass(frozen=True)
class ActivitySummary:
    """Backend counts summed over the samples since the last read."""

    idle: int
    idle_in_xact: int
    waiting: int
    running: int
    max_backends: int


@dataclass(frozen=True)
class LongTransaction:
    """A transaction seen open for longer than the threshold."""

    client: Optional[str]
    pid: int
    start: datetime
    duration: float
    query: str


@dataclass
class _LongXact:
    pid: int
    start: datetime
    client: str
    duration: float = 0.0
    query: str = ""


def _seconds_between(start: datetime, stop: datetime) -> float:
    delta = (stop - start).total_seconds()
    return delta if delta > 0 else 0.0


class ActivitySampler:
    """Collects activity counts and long transactions across samples."""

    def __init__(
        self,
        long_transaction_max: int = DEFAULT_LONG_TRANSACTION_MAX,
        query_size: int = DEFAULT_QUERY_SIZE,
    ) -> None:
        if long_transaction_max < 1:
            raise ValueError("long_transaction_max must be at least 1")
        if query_size < 1:
            raise ValueError("query_size must be at least 1")
        self.long_transaction_max = long_transaction_max
        self.query_size = query_size
        self._samples = 0
        self._idle = 0
        self._idle_in_xact = 0
        self._waiting = 0
        self._running = 0
        self._max_backends = 0
        self._long_xacts: dict[tuple[int, datetime], _LongXact] = {}

    @property
    def samples(self) -> int:
        """Number of samples taken since the counts were last read."""
        return self._samples

    def _clip(self, text: str) -> str:
        return text[: self.query_size - 1]

    def sample(self, backends: Iterable[Backend], now: datetime, my_pid: int) -> None:
        """Take one sample of the given backends at time ``now``.

        The backend with ``my_pid`` is not counted, but its transaction may
        still be recorded as a long one.
        """
        counted = idle = idle_in_xact = waiting = running = 0

        for backend in backends:
            if backend.pid == 0 or backend.backend_type != CLIENT_BACKEND:
                continue

            if backend.pid != my_pid:
                if not backend.alive:
                    continue
                if backend.is_waiting:
                    waiting += 1
                elif backend.state is BackendState.IDLE:
                    idle += 1
                elif backend.state is BackendState.IDLE_IN_TRANSACTION:
                    idle_in_xact += 1
                elif backend.state is BackendState.RUNNING:
                    running += 1
                counted += 1

            if backend.xact_start is None:
                continue
            duration = _seconds_between(backend.xact_start, now)
            if duration < LONG_TRANSACTION_THRESHOLD:
                continue
            if not backend.alive or backend.in_vacuum:
                continue

            key = (backend.pid, backend.xact_start)
            entry = self._long_xacts.get(key)
            if entry is None:
                entry = _LongXact(
                    pid=backend.pid,
                    start=backend.xact_start,
                    client=backend.client_addr,
                )
                self._long_xacts[key] = entry
            if backend.state is BackendState.IDLE_IN_TRANSACTION:
                entry.query = self._clip(IDLE_IN_TRANSACTION_QUERY)
            else:
                entry.query = self._clip(backend.query)
            entry.duration = duration

        self._idle += idle
        self._idle_in_xact += idle_in_xact
        self._waiting += waiting
        self._running += running
        self._max_backends = max(self._max_backends, counted)
        self._samples += 1

        self._discard_excess()

    def _discard_excess(self) -> None:
        excess = len(self._long_xacts) - self.long_transaction_max
        if excess <= 0:
            return
        shortest = sorted(self._long_xacts.items(), key=lambda item: item[1].duration)
        for key, _ in shortest[:excess]:
            del self._long_xacts[key]

    def activity(self) -> Optional[ActivitySummary]:
        """Return the summed counts and start over; None if nothing was sampled."""
        if self._samples == 0:
            return None
        summary = ActivitySummary(
            idle=self._idle,
            idle_in_xact=self._idle_in_xact,
            waiting=self._waiting,
            running=self._running,
            max_backends=self._max_backends,
        )
        self._samples = 0
        self._idle = self._idle_in_xact = self._waiting = self._running = 0
        self._max_backends = 0
        return summary

    def long_transactions(self) -> list[LongTransaction]:
        """Return the recorded long transactions and forget them."""
        rows = [
            LongTransaction(
                client=entry.client or None,
                pid=entry.pid,
                start=entry.start,
                duration=entry.duration,
                query=entry.query,
            )
            for entry in self._long_xacts.values()
        ]
        self._long_xacts.clear()
        return rows