"""Tests for the file and command source adapters."""

import os
import signal
import sys
import threading
import time

import pytest

from conftest import wait_for
from lazylog.errors import SourceError
from lazylog.ingest import Waiter
from lazylog.sources import CommandSource, FileTailSource


def append(path, text):
    with open(path, 'a', encoding='utf-8') as fh:
        fh.write(text)


# FileTailSource

def test_tail_reads_existing_lines(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text('one\ntwo\n')
    src = FileTailSource(str(log))
    src.start()
    assert src.poll() == ['one', 'two']
    assert src.poll() == []
    append(log, 'three\n')
    assert src.poll() == ['three']


def test_tail_from_end_skips_existing(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text('old\n')
    src = FileTailSource(str(log), from_start=False)
    src.start()
    assert src.poll() == []
    append(log, 'new\n')
    assert src.poll() == ['new']


def test_tail_holds_back_partial_line(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text('')
    src = FileTailSource(str(log))
    src.start()
    append(log, 'hal')
    assert src.poll() == []
    append(log, 'f\r\nnext')
    assert src.poll() == ['half']
    append(log, '\n')
    assert src.poll() == ['next']


def test_tail_restarts_after_truncation(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text('aaaa\nbbbb\n')
    src = FileTailSource(str(log))
    src.start()
    src.poll()
    log.write_text('c\n')
    assert src.poll() == ['c']


def test_tail_replaces_undecodable_bytes(tmp_path):
    log = tmp_path / 'bin.log'
    log.write_bytes(b'ok \xff\xfe\n')
    src = FileTailSource(str(log))
    src.start()
    assert src.poll() == ['ok \ufffd\ufffd']


def test_tail_missing_file(tmp_path):
    src = FileTailSource(str(tmp_path / 'nope.log'))
    with pytest.raises(SourceError):
        src.start()


def test_tail_file_removed_while_running(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text('x\n')
    src = FileTailSource(str(log))
    src.start()
    os.remove(log)
    with pytest.raises(SourceError):
        src.poll()


def test_tail_sample(tmp_path):
    log = tmp_path / 'app.log'
    log.write_text(''.join(f'{i}\n' for i in range(50)))
    assert FileTailSource(str(log)).sample(3) == ['0', '1', '2']
    assert FileTailSource(str(tmp_path / 'none')).sample() == []


# CommandSource

def _script(code):
    return [sys.executable, '-c', code]


def stopped_waiter():
    stop = threading.Event()
    stop.set()
    return Waiter(stop, 0.02)


def test_command_output_is_collected():
    src = CommandSource(_script('print("one"); print("two")'))
    src.bind(stopped_waiter())   # no restart once the command exits
    src.start()
    lines = []

    def _got_both():
        lines.extend(src.poll())
        return len(lines) >= 2

    assert wait_for(_got_both, timeout=10)
    assert lines == ['one', 'two']
    src.stop()


def test_command_is_restarted_with_backoff():
    src = CommandSource(_script('print("tick")'), retry_delay=0.01, max_retry_delay=0.04)
    src.bind(Waiter(threading.Event(), 0.02))
    src.start()
    lines = []

    def _restarted():
        lines.extend(src.poll())
        return src.restarts >= 2 and len(lines) >= 2

    try:
        assert wait_for(_restarted, timeout=15)
    finally:
        src.stop()
    assert set(lines) == {'tick'}


def test_command_stop_terminates_process():
    src = CommandSource(_script('import time; time.sleep(60)'))
    src.start()
    proc = src._proc
    t0 = time.monotonic()
    src.stop()
    assert proc.returncode is not None
    assert proc.stdout.closed
    assert time.monotonic() - t0 < 2


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX signals')
def test_command_stop_kills_and_reaps_stubborn_process():
    src = CommandSource(_script(
        'import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); '
        'print("ready", flush=True); time.sleep(60)'))
    src.start()
    assert wait_for(lambda: src.poll() == ['ready'], timeout=10)
    proc = src._proc
    src.stop()
    assert proc.returncode == -signal.SIGKILL
    assert proc.stdout.closed


def test_command_not_found():
    src = CommandSource(['/nonexistent/lazylog-test-cmd'])
    with pytest.raises(SourceError):
        src.start()


def test_empty_command_rejected():
    with pytest.raises(SourceError):
        CommandSource([])


def test_command_name_defaults_to_program():
    assert CommandSource(['/usr/bin/journalctl', '-f']).name == 'journalctl'
