"""
LogViewer: the event-loop side of the viewer, independent of any terminal.

One instance owns the store, the filter engine and the navigation state, and
is only ever touched from the loop thread. The front end calls ingest_tick()
on the ingestion cadence and the input operations below on keypresses; after
either it can read `dirty` to decide whether to redraw.

Ordering within one ingest tick:

    sample "following"  ->  push + filter each entry in arrival order
    ->  prune evicted seqs  ->  reconcile selection  ->  autoscroll
"""

import logging
import os
import time
from datetime import datetime

from .config import IngestionConfig
from .entry import LogEntry, clamp_detail
from .errors import InvalidPatternError
from .filter import FilterEngine
from .ingest import MSG_ENTRIES, MSG_FAILED, MSG_STOPPED, HandoffChannel
from .navigation import HORIZONTAL_SCROLL_STEP, Focus, NavigationState
from .store import BoundedLogStore

logger = logging.getLogger(__name__)

NOTICE_DURATION = 0.8
EXPORT_SEPARATOR = '\n\n'


class LogViewer:

    def __init__(self, config: IngestionConfig, interpreter,
                 channel: HandoffChannel | None = None, bridge=None,
                 debug_buffer=None, clock=time.monotonic):
        self.config       = config
        self.interpreter  = interpreter
        self.bridge       = bridge
        self.channel      = channel or (bridge.channel if bridge else HandoffChannel())
        self.debug_buffer = debug_buffer
        self._clock       = clock

        self.max_detail = interpreter.max_detail_level()
        self.store  = BoundedLogStore(config.capacity)
        self.nav    = NavigationState(detail_level=clamp_detail(config.detail_level, self.max_detail))
        self.filter = FilterEngine(self.store, interpreter, self.nav.detail_level,
                                   config.case_sensitive)

        self.show_debug   = config.show_debug_logs
        self.tag_sources  = False   # stamp entries with their source name
        self.filter_text  = ''
        self.filter_error: str | None = None
        self.source_errors: dict = {}   # source name -> persistent warning
        self.stopped_sources: set = set()
        self.received     = 0
        self.dirty        = True
        self._notice: tuple | None = None   # (text, expires_at)

        if config.initial_filter:
            self.apply_filter(config.initial_filter)

    # Ingestion

    @property
    def visible(self):
        return self.filter.visible

    def ingest_tick(self, max_items: int | None = None) -> int:
        """
        Drain what the channel holds right now (at most max_items messages)
        and fold it into the store, filter and selection. Never blocks.
        Returns the number of entries stored.
        """
        messages  = self.channel.drain(max_items)
        following = self.nav.is_following(self.filter.visible)
        stored    = 0
        for kind, source, payload in messages:
            if kind == MSG_ENTRIES:
                for entry in payload:
                    if self.tag_sources:
                        entry = entry.with_metadata('source', source)
                    seq = self.store.push(entry)
                    self.filter.on_new_entry(self.store.get(seq))
                    stored += 1
            elif kind == MSG_FAILED:
                self.source_errors[source] = f'{source}: {payload}'
            elif kind == MSG_STOPPED:
                self.stopped_sources.add(source)
            else:
                logger.debug('unknown channel message %r from %s', kind, source)

        if stored:
            self.received += stored
            self.filter.prune()
            visible = self.filter.visible
            self.nav.reconcile(visible)
            self.nav.after_arrivals(visible, following)

        if self.bridge is not None:
            for name in self.bridge.dead_workers():
                logger.error('source %s: worker thread exited without stopping', name)
                self.source_errors[name] = f'{name}: worker exited unexpectedly'
                self.dirty = True

        if messages:
            self.dirty = True
        return stored

    def _view_changed(self) -> None:
        # A visible selection stays put; only a vanished one moves.
        self.nav.reconcile(self.filter.visible)
        self.dirty = True

    # Filtering

    def apply_filter(self, text: str) -> bool:
        """
        Install `text` as the live filter. An invalid expression is reported in
        filter_error and the filter in effect stays as it was.
        """
        try:
            self.filter.set_pattern(text)
        except InvalidPatternError as exc:
            self.filter_error = exc.reason
            self.dirty = True
            logger.debug('%s', exc)
            return False
        self.filter_error = None
        self.filter_text  = text
        self._view_changed()
        return True

    def clear_filter(self) -> None:
        self.apply_filter('')

    def clear_logs(self) -> None:
        self.store.clear()
        self.filter.recompute_all()
        self.filter.prune()
        self.nav.reconcile(self.filter.visible)
        self.notice('logs cleared')
        self.dirty = True

    def change_detail(self, delta: int) -> bool:
        if not self.nav.change_detail(delta, self.max_detail):
            return False
        self.filter.set_detail_level(self.nav.detail_level)
        self._view_changed()
        return True

    # Movement, routed by focus

    def _panel_lines(self, panel: Focus) -> int:
        if panel is Focus.DETAILS:
            return len(self.detail_lines())
        if panel is Focus.DEBUG:
            return len(self.debug_lines())
        return len(self.filter.visible)

    def scroll_panel(self, panel: Focus, delta: int) -> None:
        if panel in (Focus.DETAILS, Focus.DEBUG):
            self.nav.scroll_panel(panel, delta, self._panel_lines(panel))
        else:
            # Logs, and no focus at all, move the selection.
            self.nav.step(self.filter.visible, delta)
        self.dirty = True

    def move(self, delta: int) -> None:
        self.scroll_panel(self.nav.focus, delta)

    def page(self, direction: int, page_size: int) -> None:
        self.move(direction * max(1, page_size))

    def first(self) -> None:
        self._jump(top=True)

    def last(self) -> None:
        self._jump(top=False)

    def _jump(self, top: bool) -> None:
        focus = self.nav.focus
        if focus in (Focus.DETAILS, Focus.DEBUG):
            count = self._panel_lines(focus)
            self.nav.scroll[focus] = 0 if top else max(0, count - 1)
        elif top:
            self.nav.first(self.filter.visible)
        else:
            self.nav.last(self.filter.visible)
        self.dirty = True

    def select(self, seq: int) -> bool:
        if self.nav.select(self.filter.visible, seq):
            self.dirty = True
            return True
        return False

    def select_index(self, index: int) -> bool:
        if self.nav.select_index(self.filter.visible, index):
            self.dirty = True
            return True
        return False

    def scroll_horizontal(self, direction: int, max_offset: int | None = None) -> bool:
        panel = self.nav.focus if self.nav.focus is not Focus.NONE else Focus.LOGS
        changed = self.nav.scroll_horizontal(direction * HORIZONTAL_SCROLL_STEP,
                                             max_offset, panel)
        self.dirty = self.dirty or changed
        return changed

    # Toggles and focus

    def set_focus(self, focus: Focus) -> bool:
        if focus is Focus.DEBUG and not self.show_debug:
            return False
        self.nav.set_focus(focus)
        self.dirty = True
        return True

    def toggle_wrap(self) -> bool:
        self.dirty = True
        return self.nav.toggle_wrap()

    def toggle_autoscroll(self) -> bool:
        on = self.nav.toggle_autoscroll(self.filter.visible)
        self.notice('autoscroll on' if on else 'autoscroll off')
        self.dirty = True
        return on

    def toggle_debug(self) -> bool:
        self.show_debug = not self.show_debug
        if not self.show_debug and self.nav.focus is Focus.DEBUG:
            self.nav.set_focus(Focus.LOGS)
        self.dirty = True
        return self.show_debug

    @property
    def autoscroll_suspended(self) -> bool:
        return self.nav.autoscroll_suspended(self.filter.visible)

    # Reading

    def selected_entry(self) -> LogEntry | None:
        if self.nav.selected is None:
            return None
        return self.store.get(self.nav.selected)

    def visible_entries(self, start: int = 0, stop: int | None = None) -> list:
        visible = self.filter.visible
        n    = len(visible)
        stop = n if stop is None else min(stop, n)
        out  = []
        for i in range(max(0, start), stop):
            entry = self.store.get(visible[i])
            if entry is not None:
                out.append(entry)
        return out

    def preview(self, entry: LogEntry) -> str:
        return self.interpreter.format_preview(entry, self.nav.detail_level)

    def detail_lines(self) -> list:
        entry = self.selected_entry()
        if entry is None:
            return []
        return self.interpreter.detail_lines(entry)

    def debug_lines(self) -> list:
        if self.debug_buffer is None:
            return []
        return self.debug_buffer.snapshot()

    def warnings(self) -> list:
        return list(self.source_errors.values())

    # Export

    def export_selected(self) -> str | None:
        entry = self.selected_entry()
        if entry is None:
            return None
        return self.interpreter.export_text(entry)

    def export_visible(self) -> str:
        return EXPORT_SEPARATOR.join(
            self.interpreter.export_text(e) for e in self.visible_entries())

    def save_export(self, text: str, directory: str | None = None) -> str | None:
        # Write to a timestamped .txt file; failures become a notice.
        ts    = datetime.now().strftime('%Y%m%d_%H%M%S')
        fname = f'lazylog_export_{ts}.txt'
        fpath = os.path.join(directory or os.getcwd(), fname)
        try:
            with open(fpath, 'w', encoding='utf-8') as fh:
                fh.write(text)
                if text and not text.endswith('\n'):
                    fh.write('\n')
        except OSError as exc:
            logger.warning('export failed: %s', exc)
            self.notice(f'export failed: {exc.strerror or exc}')
            return None
        logger.info('exported to %s', fpath)
        self.notice(f'exported -> {fname}')
        return fpath

    # Notices

    def notice(self, text: str, duration: float = NOTICE_DURATION) -> None:
        self._notice = (text, self._clock() + duration)
        self.dirty = True

    @property
    def current_notice(self) -> str | None:
        if self._notice is None:
            return None
        text, expires = self._notice
        if self._clock() >= expires:
            return None
        return text

    def expire_notices(self) -> bool:
        # True when a notice just timed out and the screen needs repainting.
        if self._notice is not None and self._clock() >= self._notice[1]:
            self._notice = None
            self.dirty = True
            return True
        return False

    # Shutdown

    def shutdown(self, timeout: float | None = None) -> list:
        if self.bridge is None:
            return []
        return self.bridge.shutdown(timeout)
