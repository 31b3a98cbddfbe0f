"""
Ingestion bridge: runs every source adapter on its own daemon thread and hands
parsed entries to the event loop through a single queue.

Worker lifecycle:

    IDLE -> STARTING -> RUNNING -> STOP_REQUESTED -> STOPPED
               \\_____________(start failed)_______/

Cross-thread state is limited to the handoff channel (a SimpleQueue) and one
shared stop signal (a threading.Event). Workers never touch the store.

Every wait on a worker thread, including adapter reconnect backoff, goes
through interruptible_wait(): it sleeps in slices no longer than the check
interval and returns as soon as the stop signal is set. Shutdown latency is
therefore one check interval plus whatever a single poll() call takes,
whatever the poll interval or backoff schedule.

Channel message tuples:
  ('entries', source, [LogEntry, ...])   -- one poll's worth, in source order
  ('failed',  source, str)               -- start() raised; no polling follows
  ('stopped', source, None)              -- adapter released, thread exiting
"""

import enum
import logging
import queue as _queue
import threading
import time

from .config import IngestionConfig

logger = logging.getLogger(__name__)

MSG_ENTRIES = 'entries'
MSG_FAILED  = 'failed'
MSG_STOPPED = 'stopped'


class WorkerState(enum.Enum):
    IDLE           = 'idle'
    STARTING       = 'starting'
    RUNNING        = 'running'
    STOP_REQUESTED = 'stop-requested'
    STOPPED        = 'stopped'


def interruptible_wait(stop: threading.Event, duration: float,
                       check_interval: float) -> bool:
    """
    Wait up to `duration` seconds, re-checking `stop` at least every
    `check_interval` seconds. Returns True if the stop signal was observed.
    """
    deadline = time.monotonic() + max(0.0, duration)
    while True:
        if stop.is_set():
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        stop.wait(min(check_interval, remaining))


class Waiter:
    # The interruptible wait bound to one bridge, handed to adapters.

    def __init__(self, stop: threading.Event, check_interval: float):
        self._stop           = stop
        self._check_interval = check_interval

    def __call__(self, seconds: float) -> bool:
        return interruptible_wait(self._stop, seconds, self._check_interval)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class HandoffChannel:
    # Many producers (workers), one consumer (the event loop).

    def __init__(self):
        self._q: _queue.SimpleQueue = _queue.SimpleQueue()

    def put(self, kind: str, source: str, payload=None) -> None:
        self._q.put((kind, source, payload))

    def drain(self, max_items: int | None = None) -> list:
        # Whatever is queued right now; never blocks.
        out = []
        while max_items is None or len(out) < max_items:
            try:
                out.append(self._q.get_nowait())
            except _queue.Empty:
                break
        return out

    def empty(self) -> bool:
        return self._q.empty()


# Workers

class SourceWorker:

    def __init__(self, name: str, adapter, interpreter, channel: HandoffChannel,
                 stop: threading.Event, config: IngestionConfig):
        self.name         = name
        self.adapter      = adapter
        self.interpreter  = interpreter
        self.state        = WorkerState.IDLE
        self.poll_failures = 0
        self.dropped      = 0
        self.received     = 0
        self._channel     = channel
        self._stop        = stop
        self._config      = config
        self._reported    = False    # dead-worker warning already raised
        self._thread      = threading.Thread(target=self._run, daemon=True,
                                             name=f'source-{name}')

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread.ident is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def started(self) -> bool:
        return self._thread.ident is not None

    def claim_dead_report(self) -> bool:
        # True exactly once for a thread that ended without confirming its stop.
        if (not self.started or self.alive or self.state is WorkerState.STOPPED
                or self._reported):
            return False
        self._reported = True
        return True

    # Worker thread

    def _run(self) -> None:
        self.state = WorkerState.STARTING
        try:
            try:
                self.adapter.start()
            except Exception as exc:
                logger.error('source %s failed to start: %s', self.name, exc)
                self._channel.put(MSG_FAILED, self.name, str(exc) or type(exc).__name__)
                return
            self.state = WorkerState.RUNNING
            logger.debug('source %s running', self.name)
            wait = self._config.source_poll_interval
            check = self._config.check_interval
            while not self._stop.is_set():
                self._poll_once()
                if interruptible_wait(self._stop, wait, check):
                    break
            self.state = WorkerState.STOP_REQUESTED
        finally:
            self._release()

    def _poll_once(self) -> None:
        try:
            records = self.adapter.poll()
        except Exception as exc:
            # Transient: log and retry on the next tick.
            self.poll_failures += 1
            logger.warning('source %s: poll failed (%d so far): %s',
                           self.name, self.poll_failures, exc)
            return
        if not records:
            return
        entries = []
        dropped = 0
        for raw in records:
            try:
                entry = self.interpreter.parse(raw)
            except Exception as exc:
                logger.debug('source %s: parse error on %r: %s', self.name, raw[:80], exc)
                entry = None
            if entry is None:
                dropped += 1
            else:
                entries.append(entry)
        self.received += len(entries)
        self.dropped  += dropped
        if dropped:
            logger.debug('source %s: dropped %d of %d records', self.name, dropped, len(records))
        if entries:
            self._channel.put(MSG_ENTRIES, self.name, entries)

    def _release(self) -> None:
        # Runs exactly once, on every exit path.
        try:
            self.adapter.stop()
        except Exception as exc:
            logger.error('source %s: error while stopping: %s', self.name, exc)
        self.state = WorkerState.STOPPED
        self._channel.put(MSG_STOPPED, self.name, None)
        logger.debug('source %s stopped', self.name)


# Bridge

class IngestionBridge:

    def __init__(self, config: IngestionConfig, interpreter,
                 channel: HandoffChannel | None = None):
        self.config      = config
        self.interpreter = interpreter
        self.channel     = channel or HandoffChannel()
        self.stop_signal = threading.Event()
        self._workers: dict = {}

    @property
    def workers(self) -> list:
        return list(self._workers.values())

    def add_source(self, name: str, adapter, interpreter=None) -> SourceWorker:
        base, n = name, 2
        while name in self._workers:
            name = f'{base}#{n}'
            n += 1
        adapter.bind(Waiter(self.stop_signal, self.config.check_interval))
        worker = SourceWorker(name, adapter, interpreter or self.interpreter,
                              self.channel, self.stop_signal, self.config)
        self._workers[name] = worker
        return worker

    def start(self) -> None:
        for worker in self._workers.values():
            if not worker.started:
                worker.start()

    def request_stop(self) -> None:
        if not self.stop_signal.is_set():
            logger.debug('stop requested for %d source(s)', len(self._workers))
        self.stop_signal.set()

    def shutdown(self, timeout: float | None = None) -> list:
        """
        Signal every worker and wait for them within one shared deadline.
        Returns the names of workers that had not confirmed by then; they are
        daemon threads and will not hold the process open.
        """
        self.request_stop()
        if timeout is None:
            timeout = self.config.shutdown_timeout
        deadline = time.monotonic() + timeout
        pending  = []
        for worker in self._workers.values():
            if not worker.join(max(0.0, deadline - time.monotonic())):
                pending.append(worker.name)
        if pending:
            logger.warning('sources still running after %.0f ms: %s',
                           timeout * 1000, ', '.join(pending))
        return pending

    def states(self) -> dict:
        return {name: w.state for name, w in self._workers.items()}

    def dead_workers(self) -> list:
        # Threads gone without confirming stop; each is reported once.
        return [w.name for w in self._workers.values() if w.claim_dead_report()]

    @property
    def running(self) -> bool:
        return any(w.alive for w in self._workers.values())
