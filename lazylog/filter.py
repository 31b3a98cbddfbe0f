"""
Live filter over the bounded store.

The engine holds zero or one predicate and the ordered set of sequence
numbers that currently satisfy it. New arrivals are tested one at a time
(on_new_entry); a new predicate or detail level re-tests the whole store
(recompute_all). Eviction only ever removes the oldest entries, so pruning the
visible set is a walk from its front.

With no predicate the visible set is a view over the whole store; nothing is
materialised.
"""

import logging
import re
from bisect import bisect_left

from .entry import LogEntry
from .errors import InvalidPatternError
from .store import BoundedLogStore

logger = logging.getLogger(__name__)

_REGEX_META = re.compile(r'[.^$*+?{}\[\]\\|()]')

COMPACT_AFTER = 1024


def looks_like_regex(text: str) -> bool:
    return bool(_REGEX_META.search(text))


class Pattern:
    # A compiled predicate: literal substring or regular expression.

    def __init__(self, text: str, case_sensitive: bool = False):
        self.text           = text
        self.case_sensitive = case_sensitive
        self.is_regex       = looks_like_regex(text)
        if self.is_regex:
            flags = 0 if case_sensitive else re.IGNORECASE
            try:
                self._re = re.compile(text, flags)
            except re.error as exc:
                raise InvalidPatternError(text, str(exc)) from None
            self._needle = None
        else:
            self._re     = None
            self._needle = text if case_sensitive else text.lower()

    def matches(self, text: str) -> bool:
        if self._re is not None:
            return self._re.search(text) is not None
        hay = text if self.case_sensitive else text.lower()
        return self._needle in hay

    def spans(self, text: str) -> list:
        # (start, end) of every non-empty match, for highlighting.
        if self._re is not None:
            return [m.span() for m in self._re.finditer(text) if m.end() > m.start()]
        if not self._needle:
            return []
        hay  = text if self.case_sensitive else text.lower()
        out  = []
        step = len(self._needle)
        i    = hay.find(self._needle)
        while i >= 0:
            out.append((i, i + step))
            i = hay.find(self._needle, i + step)
        return out

    def narrows(self, previous: 'Pattern | None') -> bool:
        """
        True when every text matching self also matched previous: both literal,
        same case mode, and the new needle contains the old one.
        """
        if previous is None or self.is_regex or previous.is_regex:
            return False
        if self.case_sensitive != previous.case_sensitive:
            return False
        return previous._needle in self._needle

    def __repr__(self):
        kind = 'regex' if self.is_regex else 'literal'
        return f'Pattern({self.text!r}, {kind})'


# Visible-set views

class _VisibleView:
    # Ascending sequence numbers; subclasses supply __len__, __getitem__, _insert_pos.

    def __bool__(self) -> bool:
        return len(self) > 0

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    def __contains__(self, seq) -> bool:
        return self.index_of(seq) is not None

    def index_of(self, seq) -> int | None:
        if seq is None:
            return None
        pos = self._insert_pos(seq)
        if pos < len(self) and self[pos] == seq:
            return pos
        return None

    def nearest(self, seq) -> int | None:
        """
        seq itself when visible, else the closest visible seq below it, else the
        closest above it; None when the view is empty.
        """
        n = len(self)
        if n == 0 or seq is None:
            return None
        pos = self._insert_pos(seq)
        if pos < n and self[pos] == seq:
            return seq
        if pos > 0:
            return self[pos - 1]
        return self[pos]

    @property
    def oldest(self) -> int | None:
        return self[0] if len(self) else None

    @property
    def newest(self) -> int | None:
        return self[len(self) - 1] if len(self) else None

    def _insert_pos(self, seq: int) -> int:
        raise NotImplementedError


class AllVisible(_VisibleView):
    # Every resident entry of the store.

    def __init__(self, store: BoundedLogStore):
        self._store = store

    def __len__(self) -> int:
        return len(self._store)

    def __getitem__(self, i: int) -> int:
        n = len(self._store)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError('visible index out of range')
        return self._store.first_seq + i

    def _insert_pos(self, seq: int) -> int:
        first = self._store.first_seq
        if first is None:
            return 0
        return max(0, min(seq - first, len(self._store)))


class VisibleSet(_VisibleView):
    # Materialised matches; the list is trimmed lazily from the front.

    def __init__(self, seqs=None):
        self._seqs = list(seqs or [])
        self._head = 0

    def __len__(self) -> int:
        return len(self._seqs) - self._head

    def __getitem__(self, i: int) -> int:
        n = len(self)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError('visible index out of range')
        return self._seqs[self._head + i]

    def __iter__(self):
        return iter(self._seqs[self._head:])

    def _insert_pos(self, seq: int) -> int:
        return bisect_left(self._seqs, seq, lo=self._head) - self._head

    def append(self, seq: int) -> None:
        self._seqs.append(seq)

    def drop_below(self, min_seq: int) -> int:
        start = self._head
        while self._head < len(self._seqs) and self._seqs[self._head] < min_seq:
            self._head += 1
        dropped = self._head - start
        if self._head > COMPACT_AFTER and self._head * 2 > len(self._seqs):
            del self._seqs[:self._head]
            self._head = 0
        return dropped

    def as_list(self) -> list:
        return self._seqs[self._head:]


# Engine

class FilterEngine:
    # Owned by the event-loop thread alongside the store.

    def __init__(self, store: BoundedLogStore, interpreter, detail_level: int = 0,
                 case_sensitive: bool = False):
        self._store          = store
        self._interpreter    = interpreter
        self._detail_level   = detail_level
        self._case_sensitive = case_sensitive
        self._pattern: Pattern | None = None
        self._visible        = VisibleSet()
        self._all            = AllVisible(store)
        self._text_cache: dict = {}
        self._pruned_upto    = 0

    # State

    @property
    def pattern(self) -> Pattern | None:
        return self._pattern

    @property
    def active(self) -> bool:
        return self._pattern is not None

    @property
    def detail_level(self) -> int:
        return self._detail_level

    @property
    def visible(self) -> _VisibleView:
        return self._visible if self._pattern is not None else self._all

    # Predicate

    def set_pattern(self, text: str) -> Pattern | None:
        """
        Install a new predicate and re-derive the visible set. Empty text clears
        the filter. An invalid regular expression raises InvalidPatternError and
        leaves both the previous predicate and its visible set in place.
        """
        if not text:
            self.clear()
            return None
        new = Pattern(text, self._case_sensitive)
        previous      = self._pattern
        self._pattern = new
        if new.narrows(previous):
            self._retest(self._visible.as_list())
        else:
            self.recompute_all()
        logger.debug('filter %r: %d of %d entries visible',
                     text, len(self._visible), len(self._store))
        return new

    def clear(self) -> None:
        self._pattern = None
        self._visible = VisibleSet()

    def set_detail_level(self, level: int) -> None:
        # Searchable text depends on the detail level; cached text is stale.
        self._detail_level = level
        self._text_cache.clear()
        if self._pattern is not None:
            self.recompute_all()

    # Matching

    def searchable_text(self, entry: LogEntry) -> str:
        text = self._text_cache.get(entry.seq)
        if text is None:
            text = self._interpreter.searchable_text(entry, self._detail_level)
            self._text_cache[entry.seq] = text
        return text

    def matches(self, entry: LogEntry) -> bool:
        if self._pattern is None:
            return True
        return self._pattern.matches(self.searchable_text(entry))

    def on_new_entry(self, entry: LogEntry) -> bool:
        # Call for every stored entry, in arrival order.
        if self._pattern is None:
            return True
        if self._pattern.matches(self.searchable_text(entry)):
            self._visible.append(entry.seq)
            return True
        return False

    def recompute_all(self) -> None:
        self._retest(None)

    def _retest(self, seqs) -> None:
        pat     = self._pattern
        matched = []
        if seqs is None:
            entries = self._store.iterate()
        else:
            entries = (e for e in map(self._store.get, seqs) if e is not None)
        for entry in entries:
            if pat is None or pat.matches(self.searchable_text(entry)):
                matched.append(entry.seq)
        self._visible = VisibleSet(matched)

    # Eviction

    def prune(self) -> None:
        # Forget sequence numbers the store no longer holds.
        first = self._store.first_seq
        if first is None:
            first = self._store.next_seq
        if self._pattern is not None:
            self._visible.drop_below(first)
        if not len(self._store):
            self._text_cache.clear()
        else:
            for seq in range(self._pruned_upto, first):
                self._text_cache.pop(seq, None)
        self._pruned_upto = first
