"""
Record interpreters: turn raw records into LogEntry objects and format them.

An interpreter owns every text rule of a log format: how a raw line is split
into time / level / tag / origin / message, what each detail level shows, what
the filter searches, and what gets exported. The viewer core never looks at
raw text itself.

Log types are plain dicts (built-ins below, or JSON files in a directory):

    {
      "id": "app", "name": "time | LEVEL | message",
      "detect": {"filename_keywords": ["app"], "content_regex": "^[0-9]{2}:"},
      "regex": "^(?P<time>[0-9:.]+) [|] (?P<level>[A-Z]+) [|] (?P<msg>.*)$",
      "level_rules": [{"regex": "ERROR", "level": "ERROR"}],
      "level_map": {"E": "ERROR"},
      "fields": ["time", "level", "tag", "origin"],
      "strict": false
    }

Named groups other than time/msg end up in the entry metadata.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

from .entry import LogEntry, arrival_time

logger = logging.getLogger(__name__)

FIELD_ORDER = ('time', 'level', 'tag', 'origin')


def _bracketed(entry: LogEntry, fields, level: int) -> str:
    # Detail level n shows the first n non-empty fields in front of the message.
    parts = []
    for name in fields[:max(0, level)]:
        value = entry.time if name == 'time' else entry.get(name)
        if value:
            parts.append(f'[{value}]')
    parts.append(entry.first_line)
    return ' '.join(parts)


# Interpreter contract

class RecordInterpreter(ABC):
    id   = 'base'
    name = 'Base'

    @abstractmethod
    def parse(self, raw: str) -> LogEntry | None:
        """Build an entry from one raw record; None drops the record."""

    @abstractmethod
    def format_preview(self, entry: LogEntry, level: int) -> str:
        ...

    def searchable_text(self, entry: LogEntry, level: int) -> str:
        return self.format_preview(entry, level)

    def export_text(self, entry: LogEntry) -> str:
        return f'{entry.time} {entry.raw}'

    def max_detail_level(self) -> int:
        return 4

    def detail_lines(self, entry: LogEntry) -> list:
        # Everything known about one entry, for the Details panel.
        lines = [f'{"time":>8}: {entry.time}']
        for key in sorted(entry.metadata):
            lines.append(f'{key:>8}: {entry.metadata[key]}')
        lines.append(f'{"seq":>8}: {entry.seq}')
        lines.append('')
        lines.extend(entry.content.split('\n'))
        return lines

    def score(self, path: str, lines: list) -> int:
        return 0


class PlainInterpreter(RecordInterpreter):
    id   = 'plain'
    name = 'Plain / Other'

    def parse(self, raw: str) -> LogEntry | None:
        line = raw.rstrip('\r\n')
        if not line.strip():
            return None
        return LogEntry(content=line, raw=line)

    def format_preview(self, entry: LogEntry, level: int) -> str:
        if level <= 0:
            return entry.first_line
        return f'[{entry.time}] {entry.first_line}'

    def max_detail_level(self) -> int:
        return 1


# Regex-driven log types

def _expect(value, kind, what: str):
    if not isinstance(value, kind):
        raise ValueError(f'{what} must be a {kind.__name__}, got {type(value).__name__}')
    return value


def _field_names(fields) -> tuple:
    # Stat-field dicts from older log-type files carry no preview field; keep the names only.
    if fields is None:
        return FIELD_ORDER
    names = tuple(f for f in _expect(fields, list, 'fields') if isinstance(f, str))
    return names if names or not fields else FIELD_ORDER


class LevelRule:
    def __init__(self, d: dict):
        _expect(d, dict, 'level rule')
        flags      = re.IGNORECASE if 'i' in d.get('flags', '') else 0
        self.re    = re.compile(d['regex'], flags)
        self.level = d['level']


class PatternInterpreter(RecordInterpreter):
    def __init__(self, d: dict):
        self.id   = d['id']
        self.name = d['name']

        det         = d.get('detect', {})
        self._kw    = [k.lower() for k in det.get('filename_keywords', [])]
        cp          = det.get('content_regex', '')
        self._cre   = re.compile(cp) if cp else None

        flags          = re.IGNORECASE if 'i' in d.get('flags', '') else 0
        self.line_re   = re.compile(d['regex'], flags | re.DOTALL) if d.get('regex') else None
        self.strict    = d.get('strict', False)
        self.fields    = _field_names(d.get('fields'))
        self.level_map = {str(k).upper(): str(v) for k, v in
                          _expect(d.get('level_map', {}), dict, 'level_map').items()}
        self.level_rules = [LevelRule(r) for r in
                            _expect(d.get('level_rules', []), list, 'level_rules')]
        # Pre-compiled combined level regex: one pass instead of N per line
        self._combined_re, self._combined_map = self._build_combined_re()

    def _build_combined_re(self):
        if not self.level_rules:
            return None, {}
        parts   = []
        grp_map = {}
        for i, rule in enumerate(self.level_rules):
            grp = f'_lvl{i}'
            parts.append(f'(?P<{grp}>{rule.re.pattern})')
            grp_map[grp] = rule.level
        flags = re.IGNORECASE if any(
            re.IGNORECASE & r.re.flags for r in self.level_rules) else 0
        try:
            return re.compile('|'.join(parts), flags), grp_map
        except re.error as exc:
            logger.warning('log type %r: could not build combined level regex, '
                           'falling back to individual rules (%s)', self.id, exc)
            return None, {}

    def detect_level(self, line: str) -> str:
        if self._combined_re is None:
            for rule in self.level_rules:
                if rule.re.search(line):
                    return rule.level
            return ''
        m = self._combined_re.search(line)
        if m:
            return self._combined_map.get(m.lastgroup, '')
        return ''

    def score(self, path: str, lines: list) -> int:
        # Heuristic match score against a file path + content sample.
        s    = 0
        name = os.path.basename(path or '').lower()
        for kw in self._kw:
            if kw in name:
                s += 10
        sample = lines[:20]
        if self._cre:
            for line in sample:
                if self._cre.search(line):
                    s += 5
                    break
        if self.line_re:
            s += sum(1 for line in sample if line and self.line_re.match(line))
        return s

    def parse(self, raw: str) -> LogEntry | None:
        line = raw.rstrip('\r\n')
        if not line.strip():
            return None
        m = self.line_re.match(line) if self.line_re else None
        if m is None:
            if self.strict and self.line_re is not None:
                return None
            meta  = {}
            level = self.detect_level(line)
            if level:
                meta['level'] = level
            return LogEntry(content=line, raw=line, metadata=meta)

        groups = {k: v.strip() for k, v in m.groupdict().items() if v}
        msg    = groups.pop('msg', line)
        time   = groups.pop('time', '') or arrival_time()
        level  = groups.get('level', '')
        if level:
            groups['level'] = self.level_map.get(level.upper(), level.upper())
        else:
            detected = self.detect_level(msg)
            if detected:
                groups['level'] = detected
        return LogEntry(content=msg, raw=line, time=time, metadata=groups)

    def format_preview(self, entry: LogEntry, level: int) -> str:
        return _bracketed(entry, self.fields, level)

    def max_detail_level(self) -> int:
        return len(self.fields)


# JSON lines

class JsonInterpreter(RecordInterpreter):
    id   = 'json'
    name = 'JSON lines'

    MESSAGE_KEYS = ('message', 'msg', 'text', 'log')
    TIME_KEYS    = ('time', 'timestamp', 'ts', '@timestamp', 'asctime')
    LEVEL_KEYS   = ('level', 'severity', 'levelname', 'lvl')
    TAG_KEYS     = ('logger', 'name', 'tag', 'module', 'component')

    def __init__(self, strict: bool = False):
        # strict: drop lines that are not JSON objects instead of keeping them as plain text
        self.strict = strict

    @staticmethod
    def _pop_first(obj: dict, keys) -> str:
        for key in keys:
            if key in obj and obj[key] is not None:
                return str(obj.pop(key))
        return ''

    def parse(self, raw: str) -> LogEntry | None:
        line = raw.strip()
        if not line:
            return None
        try:
            obj = json.loads(line)
        except ValueError:
            obj = None
        if not isinstance(obj, dict):
            if self.strict:
                return None
            return LogEntry(content=line, raw=line)

        obj     = dict(obj)
        content = self._pop_first(obj, self.MESSAGE_KEYS)
        time    = self._pop_first(obj, self.TIME_KEYS) or arrival_time()
        meta    = {}
        level   = self._pop_first(obj, self.LEVEL_KEYS)
        tag     = self._pop_first(obj, self.TAG_KEYS)
        if level:
            meta['level'] = level.upper()
        if tag:
            meta['tag'] = tag
        for key, value in obj.items():
            meta[str(key)] = value if isinstance(value, str) else json.dumps(value)
        return LogEntry(content=content or line, raw=line, time=time, metadata=meta)

    def format_preview(self, entry: LogEntry, level: int) -> str:
        text = _bracketed(entry, ('time', 'level', 'tag'), level)
        if level >= 4:
            extra = [f'{k}={v}' for k, v in sorted(entry.metadata.items())
                     if k not in ('level', 'tag')]
            if extra:
                text = f'{text} {" ".join(extra)}'
        return text

    def export_text(self, entry: LogEntry) -> str:
        return entry.raw

    def score(self, path: str, lines: list) -> int:
        s = 10 if path and path.lower().endswith(('.json', '.jsonl', '.ndjson')) else 0
        for line in lines[:20]:
            line = line.strip()
            if line.startswith('{') and line.endswith('}'):
                s += 2
        return s


# Built-in log types

_LEVEL_RULES = [
    {'regex': r'\b(?:FATAL|CRITICAL|ERROR|ERR)\b', 'level': 'ERROR'},
    {'regex': r'\b(?:WARNING|WARN)\b',             'level': 'WARN'},
    {'regex': r'\bINFO\b',                         'level': 'INFO'},
    {'regex': r'\b(?:DEBUG|TRACE)\b',              'level': 'DEBUG'},
]

BUILTIN_LOG_TYPES = [
    {
        'id': 'bracketed', 'name': '[time] [LEVEL] [tag] message',
        'detect': {'content_regex': r'^\[\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}'},
        'regex': (r'^\[(?P<time>[^\]]+)\]\s*\[(?P<level>\w+)\]\s*'
                  r'(?:\[(?P<tag>[^\]]+)\]\s*)?(?:\[(?P<origin>[^\]]+)\]\s*)?(?P<msg>.*)$'),
        'level_rules': _LEVEL_RULES,
        'level_map': {'WARNING': 'WARN', 'ERR': 'ERROR'},
    },
    {
        'id': 'iso', 'name': 'ISO timestamp + level',
        'detect': {'content_regex': r'^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}'},
        'regex': (r'^(?P<time>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?\S*)\s+'
                  r'(?:\[?(?P<level>TRACE|DEBUG|INFO|WARN(?:ING)?|ERROR|CRITICAL|FATAL)\]?:?\s+)?'
                  r'(?:(?P<tag>[\w.\-]+):\s+)?(?P<msg>.*)$'),
        'level_rules': _LEVEL_RULES,
        'level_map': {'WARNING': 'WARN', 'CRITICAL': 'ERROR', 'FATAL': 'ERROR'},
    },
    {
        'id': 'syslog', 'name': 'syslog',
        'detect': {'filename_keywords': ['syslog', 'messages', 'auth'],
                   'content_regex': r'^\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}\s'},
        'regex': (r'^(?P<time>\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+(?P<origin>\S+)\s+'
                  r'(?P<tag>[^:\[\s]+)(?:\[(?P<pid>\d+)\])?:\s*(?P<msg>.*)$'),
        'level_rules': _LEVEL_RULES,
        'fields': ['time', 'level', 'tag', 'origin'],
    },
    {
        'id': 'logcat', 'name': 'Android logcat (threadtime)',
        'detect': {'filename_keywords': ['logcat', 'android'],
                   'content_regex': r'^\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d{3}\s+\d+\s+\d+\s+[VDIWEFA]\s'},
        'regex': (r'^(?P<time>\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d{3})\s+(?P<pid>\d+)\s+'
                  r'(?P<tid>\d+)\s+(?P<level>[VDIWEFA])\s+(?P<tag>.*?)\s*:\s(?P<msg>.*)$'),
        'level_map': {'V': 'VERBOSE', 'D': 'DEBUG', 'I': 'INFO', 'W': 'WARN',
                      'E': 'ERROR', 'F': 'FATAL', 'A': 'ASSERT'},
        'fields': ['time', 'level', 'tag', 'pid'],
    },
]


def load_log_types(directory: str | Path | None = None) -> list:
    # Built-ins first, then every valid *.json definition in directory.
    types = [PlainInterpreter()]
    types.extend(PatternInterpreter(d) for d in BUILTIN_LOG_TYPES)
    types.append(JsonInterpreter())
    if directory is None:
        return types
    for fp in sorted(Path(directory).glob('*.json')):
        try:
            with open(fp, encoding='utf-8') as f:
                data = json.load(f)
            if 'id' in data and 'name' in data:
                types.append(PatternInterpreter(data))
            else:
                logger.warning('%s: log type needs "id" and "name", skipped', fp.name)
        except (OSError, ValueError, KeyError, TypeError, AttributeError, re.error) as e:
            logger.warning('%s: %s', fp.name, e)
    return types


def find_log_type(type_id: str, log_types: list) -> RecordInterpreter | None:
    return next((lt for lt in log_types if lt.id == type_id), None)


def auto_detect(path: str, lines: list, log_types: list) -> RecordInterpreter:
    # Highest score wins; ties keep list order, so plain text wins an all-zero race.
    return max(log_types, key=lambda lt: lt.score(path, lines))
