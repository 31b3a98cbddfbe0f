"""
Bounded log store: the most recent N entries, oldest evicted first.

Entries are addressed by the arrival sequence number the store assigns on
push. Resident sequence numbers are always the contiguous range
[first_seq, next_seq), so lookups are a subtraction plus a modulo into a
fixed ring of slots. A sequence number that has been evicted simply stops
resolving; it never comes to mean a different entry.

Sequence numbering survives clear(): the counter keeps counting, so an id
held by the UI before a clear can never alias an entry that arrives after it.
"""

import logging
from typing import Iterator

from .entry import LogEntry
from .errors import ConfigError

logger = logging.getLogger(__name__)


class BoundedLogStore:
    # Mutated only from the event-loop thread; no locking.

    def __init__(self, capacity: int):
        if not isinstance(capacity, int) or capacity < 1:
            raise ConfigError(f'store capacity must be a positive integer, got {capacity!r}')
        self._capacity      = capacity
        self._slots: list   = [None] * capacity
        self._first_seq     = 0     # oldest resident seq
        self._next_seq      = 0     # seq handed to the next push
        self._evicted_total = 0

    # Size / access

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._next_seq - self._first_seq

    def __contains__(self, seq) -> bool:
        return isinstance(seq, int) and self._first_seq <= seq < self._next_seq

    def __iter__(self) -> Iterator[LogEntry]:
        return self.iterate()

    @property
    def first_seq(self) -> int | None:
        return self._first_seq if len(self) else None

    @property
    def last_seq(self) -> int | None:
        return self._next_seq - 1 if len(self) else None

    @property
    def next_seq(self) -> int:
        return self._next_seq

    @property
    def evicted_total(self) -> int:
        return self._evicted_total

    def get(self, seq: int) -> LogEntry | None:
        if seq not in self:
            return None
        return self._slots[seq % self._capacity]

    # Mutation

    def push(self, entry: LogEntry) -> int:
        seq = self._next_seq
        if len(self) == self._capacity:
            # The slot about to be reused holds the oldest entry.
            self._first_seq     += 1
            self._evicted_total += 1
        self._slots[seq % self._capacity] = entry.with_seq(seq)
        self._next_seq = seq + 1
        return seq

    def clear(self) -> None:
        dropped = len(self)
        self._slots     = [None] * self._capacity
        self._first_seq = self._next_seq
        logger.debug('store cleared (%d entries dropped, next seq %d)',
                     dropped, self._next_seq)

    # Iteration

    def iterate(self, after: int | None = None) -> Iterator[LogEntry]:
        """
        Yield resident entries in ascending sequence order, optionally starting
        after the given sequence number. The generator re-reads the store bounds
        at every step, so entries pushed while it is suspended are picked up and
        entries evicted meanwhile are skipped.
        """
        seq = self._first_seq if after is None else max(after + 1, self._first_seq)
        while seq < self._next_seq:
            if seq < self._first_seq:
                seq = self._first_seq
                continue
            yield self._slots[seq % self._capacity]
            seq += 1
