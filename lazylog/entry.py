"""
LogEntry: one structured, immutable log record.

Interpreters build entries from raw records; the store hands back a copy
carrying the arrival sequence number it assigned. Metadata is an open
key -> value mapping (level, tag, origin, pid ...), read-only once built.
"""

import dataclasses
import uuid
from datetime import datetime
from types import MappingProxyType
from typing import Mapping


def arrival_time() -> str:
    # Local wall clock as HH:MM:SS.mmm, used when a record carries no timestamp.
    return datetime.now().strftime('%H:%M:%S.%f')[:-3]


@dataclasses.dataclass(frozen=True)
class LogEntry:
    content:  str
    raw:      str
    time:     str                 = dataclasses.field(default_factory=arrival_time)
    metadata: Mapping[str, str]   = dataclasses.field(default_factory=dict)
    id:       uuid.UUID           = dataclasses.field(default_factory=uuid.uuid4)
    seq:      int | None          = None

    def __post_init__(self):
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, 'metadata',
                               MappingProxyType(dict(self.metadata)))

    def get(self, key: str, default: str = '') -> str:
        return self.metadata.get(key, default)

    def with_metadata(self, key: str, value: str) -> 'LogEntry':
        merged = dict(self.metadata)
        merged[key] = value
        return dataclasses.replace(self, metadata=merged)

    def with_seq(self, seq: int) -> 'LogEntry':
        return dataclasses.replace(self, seq=seq)

    @property
    def first_line(self) -> str:
        # First non-blank line of a multi-line message, for single-row previews.
        for line in self.content.split('\n'):
            line = line.strip()
            if line:
                return line
        return self.content


def clamp_detail(level: int, maximum: int) -> int:
    return max(0, min(level, maximum))
