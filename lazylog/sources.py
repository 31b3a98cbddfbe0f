"""
Source adapters: where raw records come from.

An adapter is driven by exactly one ingestion worker thread:

    start()  once; raising makes the source failed for good
    poll()   repeatedly; returns the raw records available now (maybe none).
             Raising is a transient failure, the worker retries next tick.
    stop()   exactly once, on every exit path

Adapters that wait (reconnect backoff, retry loops) must do it through
self.sleep(), which returns early, and returns True, once shutdown has been
requested.
"""

import logging
import os
import queue as _queue
import subprocess
import threading
import time
from abc import ABC, abstractmethod

from .errors import SourceError

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    name = 'source'

    _waiter = None

    def bind(self, waiter) -> None:
        # Called by the bridge before start().
        self._waiter = waiter

    def sleep(self, seconds: float) -> bool:
        if self._waiter is None:
            time.sleep(seconds)
            return False
        return self._waiter(seconds)

    @property
    def stopping(self) -> bool:
        return self._waiter is not None and self._waiter.stopped

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def poll(self) -> list: ...

    @abstractmethod
    def stop(self) -> None: ...

    def sample(self, max_lines: int = 20) -> list:
        # Leading lines for log-type auto detection; empty when unknown.
        return []


# File tailing

class FileTailSource(SourceAdapter):
    """
    Follows a growing file. Only complete lines are returned; a trailing
    fragment is held back until its newline arrives. A file that shrinks, or
    is replaced by a new file under the same path, is read again from the top.
    """
    CHUNK = 4 * 1024 * 1024   # max bytes read per poll

    def __init__(self, path: str, from_start: bool = True, encoding: str = 'utf-8'):
        self.path       = path
        self.name       = os.path.basename(path) or path
        self.from_start = from_start
        self.encoding   = encoding
        self._pos       = 0
        self._inode     = None
        self._partial   = b''

    def start(self) -> None:
        try:
            st = os.stat(self.path)
        except OSError as exc:
            raise SourceError(f'cannot open {self.path}: {exc.strerror or exc}') from exc
        self._inode = st.st_ino
        self._pos   = 0 if self.from_start else st.st_size
        logger.debug('tailing %s from byte %d', self.path, self._pos)

    def poll(self) -> list:
        try:
            st = os.stat(self.path)
        except OSError as exc:
            raise SourceError(f'{self.path}: {exc.strerror or exc}') from exc
        if st.st_ino != self._inode or st.st_size < self._pos:
            logger.info('%s was truncated or replaced, reading from the start', self.path)
            self._inode   = st.st_ino
            self._pos     = 0
            self._partial = b''
        if st.st_size <= self._pos:
            return []
        with open(self.path, 'rb') as fh:
            fh.seek(self._pos)
            data = fh.read(self.CHUNK)
        self._pos += len(data)
        return self._split(data)

    def _split(self, data: bytes) -> list:
        chunks = (self._partial + data).split(b'\n')
        self._partial = chunks.pop()
        return [c.decode(self.encoding, errors='replace').rstrip('\r') for c in chunks]

    def stop(self) -> None:
        if self._partial:
            logger.debug('%s: %d unterminated bytes discarded', self.path, len(self._partial))
        self._partial = b''

    def sample(self, max_lines: int = 20) -> list:
        try:
            with open(self.path, encoding=self.encoding, errors='replace') as fh:
                return [line.rstrip('\n') for _, line in zip(range(max_lines), fh)]
        except OSError:
            return []


# External command

class CommandSource(SourceAdapter):
    """
    Runs a command (adb logcat, journalctl -f, kubectl logs -f ...) and
    collects its output, stderr included. A reader thread blocks on the pipe
    and feeds an internal queue; poll() only drains it. When the command
    exits it is restarted after a delay that doubles up to max_retry_delay and
    resets once output flows again.
    """

    def __init__(self, argv: list, retry_delay: float = 1.0,
                 max_retry_delay: float = 8.0, name: str | None = None):
        if not argv:
            raise SourceError('empty command')
        self.argv            = list(argv)
        self.name            = name or os.path.basename(self.argv[0])
        self.retry_delay     = retry_delay
        self.max_retry_delay = max_retry_delay
        self.restarts        = 0
        self._delay          = retry_delay
        self._proc           = None
        self._reader         = None
        self._lines: _queue.SimpleQueue = _queue.SimpleQueue()
        self._eof            = False

    def _spawn(self) -> None:
        try:
            proc = subprocess.Popen(
                self.argv, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT, text=True, encoding='utf-8',
                errors='replace', bufsize=1)
        except OSError as exc:
            raise SourceError(f'cannot run {self.argv[0]}: {exc.strerror or exc}') from exc
        self._proc   = proc
        self._eof    = False
        self._reader = threading.Thread(target=self._read, args=(proc,), daemon=True,
                                        name=f'reader-{self.name}')
        self._reader.start()
        logger.debug('started %s (pid %d)', ' '.join(self.argv), proc.pid)

    def _read(self, proc) -> None:
        # Reader thread: one queue item per line, None at end of stream.
        try:
            for line in proc.stdout:
                self._lines.put(line.rstrip('\n'))
        except (OSError, ValueError) as exc:
            logger.debug('%s: reader stopped: %s', self.name, exc)
        finally:
            self._lines.put(None)

    def _drain(self) -> list:
        out = []
        while True:
            try:
                line = self._lines.get_nowait()
            except _queue.Empty:
                return out
            if line is None:
                self._eof = True
            else:
                out.append(line)

    def start(self) -> None:
        self._spawn()

    def poll(self) -> list:
        lines = self._drain()
        if lines:
            self._delay = self.retry_delay
        if self._proc is not None and self._eof:
            code = self._proc.poll()
            if code is None:
                # Output closed but the process lingers; look again next tick.
                return lines
            logger.warning('%s exited with status %s, restarting in %.1fs',
                           self.name, code, self._delay)
            self._close_pipe(self._proc)
            self._proc = None
        if self._proc is None:
            if self.sleep(self._delay):
                return lines
            delay       = self._delay
            self._delay = min(self._delay * 2, self.max_retry_delay)
            self.restarts += 1
            try:
                self._spawn()
            except SourceError:
                if lines:
                    # Keep what was read; the failure surfaces on the next poll.
                    logger.debug('%s: respawn failed after %.1fs backoff', self.name, delay)
                    return lines
                raise
        return lines

    def _close_pipe(self, proc) -> None:
        # Only close once the reader is done with it.
        reader = self._reader
        if reader is not None:
            reader.join(timeout=0.1)
        if proc.stdout is not None and (reader is None or not reader.is_alive()):
            proc.stdout.close()

    def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        try:
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=0.2)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    logger.debug('%s did not exit on SIGTERM, killed', self.name)
                    proc.wait(timeout=0.5)
        finally:
            self._close_pipe(proc)
