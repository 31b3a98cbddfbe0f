"""
Logging setup. While the terminal is in raw mode nothing may reach stderr, so
lazylog's own log records go to an in-memory buffer shown in the Debug panel
(and, optionally, to a file).
"""

import logging
import threading
from collections import deque

LOG_FORMAT  = '%(asctime)s %(levelname)-5s %(name)s: %(message)s'
DATE_FORMAT = '%H:%M:%S'

DEFAULT_BUFFER_LINES = 500


class DebugLogBuffer(logging.Handler):
    # Bounded, thread-safe record store; worker threads log into it too.

    def __init__(self, maxlen: int = DEFAULT_BUFFER_LINES, level=logging.NOTSET):
        super().__init__(level)
        self._lines: deque = deque(maxlen=maxlen)
        self._mutex   = threading.Lock()
        self._version = 0
        self.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._mutex:
            self._lines.extend(text.split('\n'))
            self._version += 1

    @property
    def version(self) -> int:
        # Bumped on every record; lets the UI skip redraws when nothing changed.
        return self._version

    def snapshot(self) -> list:
        with self._mutex:
            return list(self._lines)

    def clear(self) -> None:
        with self._mutex:
            self._lines.clear()
            self._version += 1

    def __len__(self) -> int:
        return len(self._lines)


def configure_logging(level=logging.INFO, log_file: str | None = None,
                      maxlen: int = DEFAULT_BUFFER_LINES) -> DebugLogBuffer:
    """
    Route the lazylog logger to a fresh DebugLogBuffer (plus log_file when
    given) and return the buffer. Records never propagate to the root logger.
    """
    root = logging.getLogger('lazylog')
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
    root.propagate = False

    buffer = DebugLogBuffer(maxlen)
    root.addHandler(buffer)
    if log_file:
        fh = logging.FileHandler(log_file, encoding='utf-8')
        fh.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root.addHandler(fh)
    return buffer
