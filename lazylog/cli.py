"""
lazylog: real-time terminal log viewer

Usage:    lazylog --file app.log
          lazylog --command "adb logcat -v threadtime"
          lazylog -f a.log -f b.log --filter "ERROR|WARN"

Log type definitions can be added as JSON files in a directory passed with
--logtypes; see lazylog.interpreters for the format.
"""

import argparse
import logging
import os
import shlex
import sys

from .config import (DEFAULT_CAPACITY, DEFAULT_CHECK_INTERVAL, DEFAULT_DETAIL_LEVEL,
                     DEFAULT_SOURCE_POLL_INTERVAL, DEFAULT_UI_POLL_INTERVAL,
                     IngestionConfig)
from .debuglog import configure_logging
from .errors import ConfigError, SourceError
from .ingest import IngestionBridge
from .interpreters import auto_detect, find_log_type, load_log_types
from .sources import CommandSource, FileTailSource
from .tui import LogApp
from .viewer import LogViewer

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog='lazylog',
        description='lazylog: real-time terminal log viewer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    src = ap.add_argument_group('sources')
    src.add_argument('-f', '--file', metavar='PATH', action='append', default=[],
                     help='log file to follow (repeatable)')
    src.add_argument('-c', '--command', metavar='CMD', action='append', default=[],
                     help='command whose output to follow, e.g. "journalctl -f" (repeatable)')
    src.add_argument('--tail', action='store_true',
                     help='start files at their current end instead of the beginning')

    fmt = ap.add_argument_group('format')
    fmt.add_argument('--format', default='auto', metavar='ID',
                     help='log type: auto, plain, json or a log type id (default: auto)')
    fmt.add_argument('--logtypes', metavar='DIR',
                     help='directory of extra log type definitions (*.json)')

    view = ap.add_argument_group('view')
    view.add_argument('--filter', metavar='TEXT', help='initial filter')
    view.add_argument('--detail', type=int, default=DEFAULT_DETAIL_LEVEL,
                      help=f'initial detail level (default: {DEFAULT_DETAIL_LEVEL})')
    view.add_argument('--case-sensitive', action='store_true',
                      help='match filters case-sensitively')
    view.add_argument('--capacity', type=int, default=DEFAULT_CAPACITY,
                      help=f'entries kept in memory (default: {DEFAULT_CAPACITY})')

    timing = ap.add_argument_group('timing')
    timing.add_argument('--poll-ms', type=float, default=DEFAULT_SOURCE_POLL_INTERVAL * 1000,
                        help='source poll interval in ms (default: %(default).0f)')
    timing.add_argument('--ui-poll-ms', type=float, default=DEFAULT_UI_POLL_INTERVAL * 1000,
                        help='interface refresh interval in ms (default: %(default).0f)')
    timing.add_argument('--check-ms', type=float, default=DEFAULT_CHECK_INTERVAL * 1000,
                        help='stop-signal check interval in ms, 20-50 (default: %(default).0f)')

    dbg = ap.add_argument_group('diagnostics')
    dbg.add_argument('--debug', action='store_true', help='show the Debug panel at start')
    dbg.add_argument('--log-level', choices=LOG_LEVELS, default='INFO',
                     help='level of lazylog\'s own log (default: INFO)')
    dbg.add_argument('--log-file', metavar='PATH', help='also write lazylog\'s own log here')
    return ap


def config_from_args(args) -> IngestionConfig:
    return IngestionConfig(
        ui_poll_interval     = args.ui_poll_ms / 1000,
        source_poll_interval = args.poll_ms / 1000,
        capacity             = args.capacity,
        check_interval       = args.check_ms / 1000,
        show_debug_logs      = args.debug,
        initial_filter       = args.filter,
        detail_level         = args.detail,
        case_sensitive       = args.case_sensitive,
    )


def build_sources(args) -> list:
    sources = [FileTailSource(path, from_start=not args.tail) for path in args.file]
    for cmd in args.command:
        sources.append(CommandSource(shlex.split(cmd)))
    return sources


def choose_interpreter(fmt: str, sources: list, log_types: list):
    """
    Explicit id wins; 'auto' scores every type against the first source's
    name and leading lines.
    """
    if fmt != 'auto':
        lt = find_log_type(fmt, log_types)
        if lt is None:
            known = ', '.join(t.id for t in log_types)
            raise ConfigError(f'unknown log type {fmt!r} (known: {known})')
        return lt
    first = sources[0]
    if isinstance(first, FileTailSource):
        hint = first.path
    else:
        hint = ' '.join(os.path.basename(a) for a in first.argv)
    return auto_detect(hint, first.sample(), log_types)


def main(argv=None) -> int:
    ap   = build_parser()
    args = ap.parse_args(argv)
    if not args.file and not args.command:
        ap.error('give at least one --file or --command')
    for path in args.file:
        if not os.path.isfile(path):
            ap.error(f'{path!r} not found')

    try:
        config      = config_from_args(args)
        sources     = build_sources(args)
        log_types   = load_log_types(args.logtypes)
        interpreter = choose_interpreter(args.format, sources, log_types)
    except (ConfigError, SourceError) as exc:
        ap.error(str(exc))
    except ValueError as exc:
        # shlex on unbalanced quotes
        ap.error(f'bad --command: {exc}')

    buffer = configure_logging(getattr(logging, args.log_level), args.log_file)
    logger.info('lazylog starting: %d source(s), log type %s', len(sources), interpreter.id)

    bridge = IngestionBridge(config, interpreter)
    for source in sources:
        bridge.add_source(source.name, source)
    viewer = LogViewer(config, interpreter, bridge=bridge, debug_buffer=buffer)
    viewer.tag_sources = len(sources) > 1

    app     = LogApp(viewer, title=', '.join(w.name for w in bridge.workers))
    pending = app.run()
    if pending:
        print(f'lazylog: sources still running at exit: {", ".join(pending)}',
              file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
