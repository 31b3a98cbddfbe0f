"""pytest configuration and fixtures for lazylog tests."""

import logging
import threading
import time

import pytest

from lazylog.config import IngestionConfig
from lazylog.entry import LogEntry
from lazylog.ingest import MSG_ENTRIES, HandoffChannel
from lazylog.interpreters import PlainInterpreter
from lazylog.sources import SourceAdapter
from lazylog.viewer import LogViewer


class ScriptedSource(SourceAdapter):
    """Adapter that replays prepared batches and counts lifecycle calls."""
    name = 'scripted'

    def __init__(self, batches=(), fail_start=None, poll_errors=0, stop_error=None):
        self.batches     = list(batches)
        self.fail_start  = fail_start
        self.poll_errors = poll_errors
        self.stop_error  = stop_error
        self.starts = 0
        self.polls  = 0
        self.stops  = 0

    def start(self):
        self.starts += 1
        if self.fail_start is not None:
            raise self.fail_start

    def poll(self):
        self.polls += 1
        if self.poll_errors:
            self.poll_errors -= 1
            raise OSError('flaky source')
        if self.batches:
            return self.batches.pop(0)
        return []

    def stop(self):
        self.stops += 1
        if self.stop_error is not None:
            raise self.stop_error


class BackoffSource(ScriptedSource):
    # Every poll waits out a long reconnect delay.
    def __init__(self, delay=30.0):
        super().__init__()
        self.delay = delay
        self.interrupted = threading.Event()

    def poll(self):
        self.polls += 1
        if self.sleep(self.delay):
            self.interrupted.set()
        return []


def wait_for(predicate, timeout=3.0, step=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


def entry(text, time='00:00:00.000', **meta):
    return LogEntry(content=text, raw=text, time=time, metadata=meta)


@pytest.fixture
def fast_config():
    return IngestionConfig(source_poll_interval=0.01, check_interval=0.02,
                           shutdown_grace=0.25, capacity=100)


@pytest.fixture
def plain():
    return PlainInterpreter()


@pytest.fixture
def make_viewer(plain):
    def _make(interpreter=None, clock=time.monotonic, **overrides):
        overrides.setdefault('capacity', 100)
        config = IngestionConfig(**overrides)
        return LogViewer(config, interpreter or plain, channel=HandoffChannel(), clock=clock)
    return _make


@pytest.fixture
def feed():
    def _feed(viewer, *texts, source='test'):
        viewer.channel.put(MSG_ENTRIES, source, [entry(t) for t in texts])
        return viewer.ingest_tick()
    return _feed


@pytest.fixture
def lazylog_logger():
    log = logging.getLogger('lazylog')
    yield log
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.setLevel(logging.NOTSET)
    log.propagate = True
