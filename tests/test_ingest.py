"""Tests for the ingestion bridge: workers, handoff and cancellation."""

import threading
import time

from conftest import BackoffSource, ScriptedSource, wait_for
from lazylog.ingest import (MSG_ENTRIES, MSG_FAILED, MSG_STOPPED, HandoffChannel,
                            IngestionBridge, Waiter, WorkerState, interruptible_wait)
from lazylog.interpreters import PlainInterpreter


def collect(channel, until, timeout=3.0):
    """Drain channel messages until `until(messages)` holds."""
    seen = []

    def _ready():
        seen.extend(channel.drain())
        return until(seen)

    wait_for(_ready, timeout)
    return seen


def entry_texts(messages, source=None):
    return [e.content for kind, src, payload in messages
            if kind == MSG_ENTRIES and (source is None or src == source)
            for e in payload]


# interruptible_wait

def test_interruptible_wait_runs_full_duration_without_stop():
    stop = threading.Event()
    t0 = time.monotonic()
    assert interruptible_wait(stop, 0.06, 0.02) is False
    assert time.monotonic() - t0 >= 0.05


def test_interruptible_wait_returns_soon_after_stop():
    stop = threading.Event()
    threading.Timer(0.05, stop.set).start()
    t0 = time.monotonic()
    assert interruptible_wait(stop, 10.0, 0.02) is True
    assert time.monotonic() - t0 < 0.5


def test_interruptible_wait_already_stopped():
    stop = threading.Event()
    stop.set()
    assert interruptible_wait(stop, 10.0, 0.02) is True


def test_waiter_reports_stop():
    stop = threading.Event()
    waiter = Waiter(stop, 0.02)
    assert not waiter.stopped
    stop.set()
    assert waiter.stopped
    assert waiter(5.0) is True


# HandoffChannel

def test_channel_drain_is_fifo_and_bounded():
    ch = HandoffChannel()
    for i in range(5):
        ch.put(MSG_ENTRIES, 'src', i)
    assert [m[2] for m in ch.drain(3)] == [0, 1, 2]
    assert [m[2] for m in ch.drain()] == [3, 4]
    assert ch.drain() == []
    assert ch.empty()


# Workers

def test_entries_arrive_in_source_order(fast_config):
    src = ScriptedSource(batches=[['a', 'b'], [], ['c']])
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    bridge.add_source('s', src)
    bridge.start()
    msgs = collect(bridge.channel, lambda m: len(entry_texts(m)) >= 3)
    assert entry_texts(msgs) == ['a', 'b', 'c']
    assert bridge.shutdown() == []
    assert src.starts == 1
    assert src.stops == 1
    assert bridge.states() == {'s': WorkerState.STOPPED}


def test_declined_records_are_dropped(fast_config):
    src = ScriptedSource(batches=[['a', '', '   ', 'b']])
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    worker = bridge.add_source('s', src)
    bridge.start()
    msgs = collect(bridge.channel, lambda m: len(entry_texts(m)) >= 2)
    bridge.shutdown()
    assert entry_texts(msgs) == ['a', 'b']
    assert worker.dropped == 2


def test_start_failure_is_reported_and_never_polls(fast_config):
    src = ScriptedSource(fail_start=RuntimeError('no device'))
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    bridge.add_source('adb', src)
    bridge.start()
    msgs = collect(bridge.channel, lambda m: any(k == MSG_STOPPED for k, _, _ in m))
    assert (MSG_FAILED, 'adb', 'no device') in msgs
    assert src.polls == 0
    assert src.stops == 1
    assert bridge.shutdown() == []
    assert bridge.states()['adb'] is WorkerState.STOPPED


def test_poll_failures_are_transient(fast_config):
    src = ScriptedSource(batches=[['after errors']], poll_errors=2)
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    worker = bridge.add_source('s', src)
    bridge.start()
    msgs = collect(bridge.channel, lambda m: entry_texts(m))
    bridge.shutdown()
    assert entry_texts(msgs) == ['after errors']
    assert worker.poll_failures == 2


def test_stop_error_does_not_block_shutdown(fast_config):
    src = ScriptedSource(stop_error=RuntimeError('already gone'))
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    bridge.add_source('s', src)
    bridge.start()
    wait_for(lambda: src.polls > 0)
    assert bridge.shutdown() == []
    assert src.stops == 1
    msgs = bridge.channel.drain()
    assert (MSG_STOPPED, 's', None) in msgs


def test_shutdown_bounded_during_backoff(fast_config):
    src = BackoffSource(delay=30.0)
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    worker = bridge.add_source('slow', src)
    bridge.start()
    assert wait_for(lambda: src.polls > 0)
    time.sleep(0.05)
    t0 = time.monotonic()
    bridge.request_stop()
    assert worker.join(timeout=1.0)
    elapsed = time.monotonic() - t0
    assert elapsed <= fast_config.check_interval + 0.05
    assert bridge.shutdown() == []
    assert src.interrupted.is_set()
    assert src.stops == 1


def test_single_stop_signal_reaches_every_worker(fast_config):
    sources = [BackoffSource(delay=30.0) for _ in range(4)]
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    for i, src in enumerate(sources):
        bridge.add_source(f's{i}', src)
    bridge.start()
    assert wait_for(lambda: all(s.polls for s in sources))
    assert bridge.shutdown() == []
    assert all(s.stops == 1 for s in sources)
    assert not bridge.running


def test_duplicate_names_are_made_unique(fast_config):
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    a = bridge.add_source('log', ScriptedSource())
    b = bridge.add_source('log', ScriptedSource())
    assert (a.name, b.name) == ('log', 'log#2')


def test_shutdown_before_start(fast_config):
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    src = ScriptedSource()
    bridge.add_source('s', src)
    assert bridge.shutdown() == []
    assert src.starts == 0


def test_dead_worker_reported_once(fast_config):
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    worker = bridge.add_source('s', ScriptedSource(fail_start=RuntimeError('boom')))
    # A worker whose exit path never confirms the stop.
    worker._release = lambda: None
    bridge.start()
    assert wait_for(lambda: not worker.alive)
    assert bridge.dead_workers() == ['s']
    assert bridge.dead_workers() == []
    assert not worker.claim_dead_report()


def test_stopped_worker_is_never_reported_dead(fast_config):
    bridge = IngestionBridge(fast_config, PlainInterpreter())
    worker = bridge.add_source('s', ScriptedSource())
    assert not worker.claim_dead_report()
    bridge.start()
    assert bridge.shutdown() == []
    assert not worker.claim_dead_report()
    assert bridge.dead_workers() == []
