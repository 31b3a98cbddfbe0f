"""lazylog: real-time terminal log viewer."""

from .config import IngestionConfig
from .entry import LogEntry
from .errors import ConfigError, InvalidPatternError, LazylogError, SourceError
from .filter import FilterEngine
from .ingest import HandoffChannel, IngestionBridge, WorkerState, interruptible_wait
from .interpreters import (JsonInterpreter, PatternInterpreter, PlainInterpreter,
                           RecordInterpreter, auto_detect, load_log_types)
from .navigation import Focus, NavigationState
from .sources import CommandSource, FileTailSource, SourceAdapter
from .store import BoundedLogStore
from .viewer import LogViewer

__version__ = '0.1.0'
