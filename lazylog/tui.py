"""
urwid front end.

Three stacked panels (Logs, Details, optional Debug) between a title/filter
header and a footer. All state lives in the LogViewer; widgets here only read
it back on refresh. Two alarms drive the loop at independent cadences:

  ui tick      (ui_poll_interval)      expire notices, repaint when dirty
  ingest tick  (source_poll_interval)  LogViewer.ingest_tick()

Keyboard and mouse input arrive through urwid's own event loop, so a slow or
stalled source never delays a keypress.
"""

import logging

import urwid

from .navigation import Focus
from .viewer import LogViewer

logger = logging.getLogger(__name__)

# Palette
PALETTE = [
    # chrome
    ('header',   'white,bold',        'dark blue'),
    ('h_dim',    'light blue',        'dark blue'),
    ('tail_on',  'light green,bold',  'dark blue'),
    ('tail_off', 'dark gray',         'dark blue'),
    ('tail_hold','yellow,bold',       'dark blue'),
    ('footer',   'black',             'light gray'),
    ('fk',       'dark blue,bold',    'light gray'),
    ('fwarn',    'light red,bold',    'light gray'),
    ('notice',   'black,bold',        'dark cyan'),
    # filter bar
    ('fl',       'dark cyan,bold',    'default'),
    ('fe',       'white',             'dark gray'),
    ('fe_f',     'white,bold',        'dark blue'),
    ('ferr',     'light red,bold',    'dark gray'),
    # panels
    ('panel',    'dark gray',         'default'),
    ('panel_f',  'light cyan,bold',   'default'),
    ('body',     'light gray',        'default'),
    ('dbg',      'dark cyan',         'default'),
    # log rows by level
    ('ln',       'light gray',        'default'),
    ('le',       'light red',         'default'),
    ('lw',       'yellow',            'default'),
    ('li',       'light green',       'default'),
    ('ld',       'dark cyan',         'default'),
    ('hm',       'black',             'yellow'),
    ('sel',      'black,bold',        'dark cyan'),
    # scrollbar
    ('scrollbar_thumb', 'dark cyan',  'default'),
    ('scrollbar_trough','dark gray',  'default'),
    # help overlay
    ('help',     'white',             'dark blue'),
]

_LEVEL_ATTR = {
    'ERROR': 'le', 'FATAL': 'le', 'ASSERT': 'le', 'CRITICAL': 'le',
    'WARN': 'lw', 'WARNING': 'lw',
    'INFO': 'li',
    'DEBUG': 'ld', 'VERBOSE': 'ld', 'TRACE': 'ld',
}

FILTER_DEBOUNCE   = 0.15
WHEEL_STEP        = 3
DEBUG_PANEL_ROWS  = 8
MAX_MESSAGES_TICK = 256   # channel messages folded in per ingest tick

HELP_TEXT = """\
  q, ctrl c   quit
  /           edit filter (live)      Enter  keep filter      Esc  clear filter
  j k, up dn  move selection, or scroll the focused panel
  PgUp PgDn   page                    g G    first / last
  [ ]         less / more detail      w      toggle wrap
  h l, < >    scroll sideways (wrap off)
  1 2 3 0     focus Logs / Details / Debug / none
  b           toggle Debug panel      t      toggle autoscroll
  c           clear logs
  y           export selected entry   a      export all visible entries
  ?           this help

  Filters containing any of  . ^ $ * + ? { } [ ] \\ | ( )  are regular
  expressions, anything else is a case-insensitive substring.

  Mouse: wheel scrolls the panel under the pointer, click selects a row.
"""


def _highlight(text: str, spans: list, base: str) -> list:
    if not spans:
        return [(base, text)]
    out, pos = [], 0
    for start, end in spans:
        if start > pos:
            out.append((base, text[pos:start]))
        out.append(('hm', text[start:end]))
        pos = end
    if pos < len(text):
        out.append((base, text[pos:]))
    return out


# Log rows
class EntryWalker(urwid.ListWalker):
    """
    ListWalker over the viewer's visible set. Builds row widgets only for the
    positions the ListBox is about to paint; built rows are cached by sequence
    number until the detail level, wrap mode, offset or filter changes.
    """
    CACHE_SIZE = 600

    def __init__(self, viewer: LogViewer):
        self._viewer = viewer
        self._focus  = 0
        self._cache: dict = {}
        self._cache_order: list = []
        self._key    = None

    def refresh(self) -> None:
        v   = self._viewer
        key = (v.nav.detail_level, v.nav.wrap, v.nav.horizontal_offset(Focus.LOGS),
               v.filter.pattern)
        if key != self._key:
            self._key = key
            self._cache.clear()
            self._cache_order.clear()
        n   = len(v.visible)
        idx = v.nav.selected_index(v.visible)
        self._focus = idx if idx is not None else max(0, min(self._focus, n - 1))
        self._modified()

    def _build(self, pos):
        seq = self._viewer.visible[pos]
        if seq in self._cache:
            return self._cache[seq]
        v     = self._viewer
        entry = v.store.get(seq)
        text  = v.preview(entry) if entry is not None else ''
        hoff  = v.nav.horizontal_offset(Focus.LOGS)
        if hoff:
            text = text[hoff:]
        base  = _LEVEL_ATTR.get(entry.get('level').upper(), 'ln') if entry is not None else 'ln'
        spans = v.filter.pattern.spans(text) if v.filter.pattern is not None else []
        w = urwid.AttrMap(
            urwid.Text(_highlight(text, spans, base), wrap='space' if v.nav.wrap else 'clip'),
            None, 'sel')
        if len(self._cache) >= self.CACHE_SIZE:
            evict = self._cache_order.pop(0)
            self._cache.pop(evict, None)
        self._cache[seq] = w
        self._cache_order.append(seq)
        return w

    # ListWalker protocol
    def __len__(self):
        return len(self._viewer.visible)

    def get_focus(self):
        if not len(self):
            return None, None
        return self._build(self._focus), self._focus

    def set_focus(self, pos):
        if 0 <= pos < len(self):
            self._focus = pos
            self._modified()

    def get_next(self, pos):
        nxt = pos + 1
        if nxt >= len(self):
            return None, None
        return self._build(nxt), nxt

    def get_prev(self, pos):
        prv = pos - 1
        if prv < 0 or prv >= len(self):
            return None, None
        return self._build(prv), prv

    # Scrolling protocol (for ScrollBar)
    def get_scrollpos(self, size=None, focus=False):
        return self._focus

    def rows_max(self, size=None, focus=False):
        return len(self)


class LogListBox(urwid.ListBox):
    # Keys bubble up to the app; focus follows the viewer's selection.

    def __init__(self, app: 'LogApp', walker: EntryWalker):
        super().__init__(walker)
        self._app = app
        self.rows = 1

    def keypress(self, size, key):
        return key

    def render(self, size, focus=False):
        self.rows = size[1]
        self._follow_selection(size)
        return super().render(size, focus)

    def _follow_selection(self, size):
        v   = self._app.viewer
        idx = v.nav.selected_index(v.visible)
        if idx is None:
            return
        if v.nav.wrap:
            # Rows have variable height; let the ListBox place the focus.
            self.set_focus(idx)
            return
        top = v.nav.ensure_visible(v.visible, size[1])
        self.change_focus(size, idx, offset_inset=idx - top)

    def mouse_event(self, size, event, button, col, row, focus):
        if event == 'mouse press' and button in (4, 5):
            self._app.on_wheel(Focus.LOGS, -WHEEL_STEP if button == 4 else WHEEL_STEP)
            return True
        if event == 'mouse press' and button == 1:
            wpos = self._row_to_wpos(size, row)
            if wpos is not None and self._app.on_row_click(wpos):
                return True
        return False

    def _row_to_wpos(self, size, target_row):
        _, focus_pos = self.body.get_focus()
        if focus_pos is None:
            return None
        offset, _inset = self.get_focus_offset_inset(size)
        return focus_pos - offset + target_row


# ScrollBar
class ClickScrollBar(urwid.ScrollBar):
    # Clicking the trough jumps the selection; wheel on the strip scrolls.

    def __init__(self, widget, app: 'LogApp', **kw):
        super().__init__(widget, **kw)
        self._app = app

    def mouse_event(self, size, event, button, col, row, focus):
        maxcol = size[0]
        on_sb  = col >= maxcol - self.scrollbar_width
        if not on_sb:
            return super().mouse_event(size, event, button, col, row, focus)
        if event != 'mouse press':
            return False
        if button in (4, 5):
            self._app.on_wheel(Focus.LOGS, -WHEEL_STEP if button == 4 else WHEEL_STEP)
            return True
        if button == 1:
            maxrow = size[1]
            self._app.on_scrollbar_jump(max(0.0, min(1.0, row / max(1, maxrow - 1))))
            return True
        return False


# Details / Debug
class TextPanel(urwid.Widget):
    """
    Box widget showing a slice of plain lines from a vertical offset.
    Offset None pins the view to the last lines.
    """
    _sizing     = frozenset(['box'])
    _selectable = False

    def __init__(self, app: 'LogApp', panel: Focus, attr: str = 'body'):
        super().__init__()
        self._app    = app
        self._panel  = panel
        self._attr   = attr
        self._lines  = []
        self._offset = 0
        self._hoff   = 0
        self._wrap   = True
        self.rows    = 1

    def set_content(self, lines: list, offset: int | None, hoff: int, wrap: bool) -> None:
        self._lines  = lines
        self._offset = offset
        self._hoff   = hoff
        self._wrap   = wrap
        self._invalidate()

    def render(self, size, focus=False):
        maxcol, maxrow = size
        self.rows = maxrow
        lines = self._lines
        last  = max(0, len(lines) - maxrow)
        top   = last if self._offset is None else min(self._offset, last)
        shown = lines[top:top + maxrow]
        if not self._wrap and self._hoff:
            shown = [line[self._hoff:] for line in shown]
        text = urwid.Text((self._attr, '\n'.join(shown)),
                          wrap='space' if self._wrap else 'clip')
        canv = urwid.CompositeCanvas(text.render((maxcol,)))
        rows = canv.rows()
        if rows > maxrow:
            canv.trim_end(rows - maxrow)
        elif rows < maxrow:
            canv.pad_trim_top_bottom(0, maxrow - rows)
        return canv

    def mouse_event(self, size, event, button, col, row, focus):
        if event == 'mouse press' and button in (4, 5):
            self._app.on_wheel(self._panel, -WHEEL_STEP if button == 4 else WHEEL_STEP)
            return True
        if event == 'mouse press' and button == 1:
            self._app.on_panel_click(self._panel)
            return True
        return False


class FilterEdit(urwid.Edit):
    # Edit that lets Enter/Esc bubble up to unhandled_input.
    def keypress(self, size, key):
        if key in ('enter', 'esc'):
            return key
        return super().keypress(size, key)


# Main Application
class LogApp:
    def __init__(self, viewer: LogViewer, title: str = ''):
        self.viewer = viewer
        self.title  = title

        self._loop_ref      = None
        self._filter_alarm  = None
        self._help_open     = False
        self._debug_version = -1

        self._build_ui()
        self.refresh()

    # Build
    def _build_ui(self):
        self.w_title = urwid.Text('', wrap='clip')

        self.w_edit = FilterEdit(caption='', edit_text=self.viewer.filter_text)
        urwid.connect_signal(self.w_edit, 'postchange',
                             lambda *_: self._on_edit_change())
        self.w_err_msg = urwid.Text('', wrap='clip')
        self.w_filter_cols = urwid.Columns([
            ('pack', urwid.Text(('fl', ' Filter: '))),
            urwid.AttrMap(self.w_edit, 'fe', 'fe_f'),
            ('pack', urwid.AttrMap(self.w_err_msg, 'ferr')),
        ], dividechars=0, focus_column=1)

        self.w_header = urwid.Pile([
            urwid.AttrMap(self.w_title, 'header'),
            self.w_filter_cols,
        ])

        self.walker  = EntryWalker(self.viewer)
        self.listbox = LogListBox(self, self.walker)
        self._scrollbar = ClickScrollBar(self.listbox, self, side='right', width=1,
                                         thumb_char='┃', trough_char='│')
        self.details = TextPanel(self, Focus.DETAILS)
        self.debug   = TextPanel(self, Focus.DEBUG, attr='dbg')

        self._boxes = {
            Focus.LOGS:    urwid.LineBox(self._scrollbar, title='Logs'),
            Focus.DETAILS: urwid.LineBox(self.details, title='Details'),
            Focus.DEBUG:   urwid.LineBox(self.debug, title='Debug'),
        }
        self._frames = {p: urwid.AttrMap(box, 'panel') for p, box in self._boxes.items()}
        self._body = urwid.Pile([])
        self._layout_body()

        self.w_footer = urwid.Text('', wrap='clip')
        self.frame = urwid.Frame(
            body       = self._body,
            header     = self.w_header,
            footer     = urwid.AttrMap(self.w_footer, 'footer'),
            focus_part = 'body',
        )
        self.top = self.frame

    def _layout_body(self):
        contents = [
            (self._frames[Focus.LOGS],    self._body.options('weight', 3)),
            (self._frames[Focus.DETAILS], self._body.options('weight', 1)),
        ]
        if self.viewer.show_debug:
            contents.append((self._frames[Focus.DEBUG],
                             self._body.options('given', DEBUG_PANEL_ROWS)))
        self._body.contents = contents
        self._body.focus_position = 0

    # Refresh
    def refresh(self):
        v   = self.viewer
        nav = v.nav
        self.walker.refresh()
        self.details.set_content(v.detail_lines(), nav.scroll[Focus.DETAILS],
                                 nav.horizontal_offset(Focus.DETAILS), nav.wrap)
        if v.show_debug:
            offset = nav.scroll[Focus.DEBUG] if nav.focus is Focus.DEBUG else None
            self.debug.set_content(v.debug_lines(), offset,
                                   nav.horizontal_offset(Focus.DEBUG), nav.wrap)
        for panel, frame in self._frames.items():
            frame.set_attr_map({None: 'panel_f' if panel is nav.focus else 'panel'})
        self._boxes[Focus.LOGS].set_title(
            f'Logs  {len(v.visible):,} / {len(v.store):,}'
            + (f'  filter: {v.filter_text}' if v.filter.active else ''))
        self._boxes[Focus.DETAILS].set_title(f'Details  (detail {nav.detail_level}/{v.max_detail})')
        self.w_err_msg.set_text(f'  ⚠ {v.filter_error} ' if v.filter_error else '')
        self._refresh_title()
        self._refresh_footer()
        v.dirty = False

    def _refresh_title(self):
        v = self.viewer
        if not v.nav.autoscroll:
            state = ('tail_off', '○ ────')
        elif v.autoscroll_suspended:
            state = ('tail_hold', '‖ HOLD')
        else:
            state = ('tail_on', '● LIVE')
        self.w_title.set_text([
            ('header', ' ◉  lazylog  '),
            ('h_dim',  self.title),
            ('header', f'  [{v.interpreter.name}]  '),
            state,
        ])

    def _refresh_footer(self):
        v = self.viewer
        notice   = v.current_notice
        warnings = v.warnings()
        extra = []
        if notice:
            extra.append(('notice', f' {notice} '))
        if warnings:
            extra.append(('fwarn', f'  ⚠ {"; ".join(warnings)}'))
        evicted = f'  ({v.store.evicted_total:,} evicted)' if v.store.evicted_total else ''
        self.w_footer.set_text([
            ('fk', '  q'),   ('footer', ':quit  '),
            ('fk', '/'),     ('footer', ':filter  '),
            ('fk', '[ ]'),   ('footer', ':detail  '),
            ('fk', 'w'),     ('footer', ':wrap  '),
            ('fk', 't'),     ('footer', ':autoscroll  '),
            ('fk', 'y a'),   ('footer', ':export  '),
            ('fk', '?'),     ('footer', ':help  '),
            ('footer', f'  {v.received:,} received{evicted}  '),
            *extra,
        ])

    # Filter
    def focus_filter(self):
        self.frame.focus_position = 'header'
        self.w_header.focus_position = 1

    def _on_edit_change(self):
        if self._loop_ref is None:
            self._apply_edit()
            return
        if self._filter_alarm is not None:
            self._loop_ref.remove_alarm(self._filter_alarm)
        self._filter_alarm = self._loop_ref.set_alarm_in(
            FILTER_DEBOUNCE, self._on_filter_alarm)

    def _on_filter_alarm(self, loop, user_data):
        self._filter_alarm = None
        self._apply_edit()

    def _apply_edit(self):
        self.viewer.apply_filter(self.w_edit.get_edit_text())
        self.refresh()

    def clear_filter(self):
        if self._filter_alarm is not None and self._loop_ref is not None:
            self._loop_ref.remove_alarm(self._filter_alarm)
            self._filter_alarm = None
        self.w_edit.set_edit_text('')
        self.viewer.clear_filter()
        self.frame.focus_position = 'body'
        self.refresh()

    # Mouse
    def on_wheel(self, panel: Focus, delta: int):
        self.viewer.scroll_panel(panel, delta)
        self.refresh()

    def on_row_click(self, index: int) -> bool:
        v = self.viewer
        if not v.select_index(index):
            return False
        v.set_focus(Focus.LOGS)
        self.refresh()
        return True

    def on_scrollbar_jump(self, fraction: float):
        n = len(self.viewer.visible)
        if n:
            self.viewer.select_index(round(fraction * (n - 1)))
            self.refresh()

    def on_panel_click(self, panel: Focus):
        self.viewer.set_focus(panel)
        self.refresh()

    # Help
    def _show_help(self):
        box = urwid.LineBox(urwid.Filler(urwid.Text(HELP_TEXT), valign='top'),
                            title='lazylog keys')
        self.top = urwid.Overlay(urwid.AttrMap(box, 'help'), self.frame,
                                 align='center', width=('relative', 80),
                                 valign='middle', height=('relative', 70))
        self._help_open = True
        if self._loop_ref is not None:
            self._loop_ref.widget = self.top

    def _hide_help(self):
        self.top = self.frame
        self._help_open = False
        if self._loop_ref is not None:
            self._loop_ref.widget = self.top

    # Input handler
    def handle_input(self, key):
        if not isinstance(key, str):
            return
        if self._help_open:
            self._hide_help()
            return

        v   = self.viewer
        nav = v.nav

        if key in ('q', 'Q', 'ctrl c'):
            raise urwid.ExitMainLoop()

        if self.frame.focus_position == 'header':
            if key == 'enter':
                self.frame.focus_position = 'body'
            elif key == 'esc':
                self.clear_filter()
            return

        if key == '/':
            self.focus_filter()
        elif key == 'esc':
            self.clear_filter()
        elif key in ('j', 'down'):
            v.move(1)
        elif key in ('k', 'up'):
            v.move(-1)
        elif key in ('page down', ' '):
            v.page(1, self._page_size())
        elif key == 'page up':
            v.page(-1, self._page_size())
        elif key in ('g', 'home'):
            v.first()
        elif key in ('G', 'end'):
            v.last()
        elif key == '[':
            v.change_detail(-1)
        elif key == ']':
            v.change_detail(1)
        elif key == '1':
            v.set_focus(Focus.LOGS)
        elif key == '2':
            v.set_focus(Focus.DETAILS)
        elif key == '3':
            if v.set_focus(Focus.DEBUG):
                # Start from the lines currently on screen.
                nav.scroll[Focus.DEBUG] = max(0, len(v.debug_lines()) - self.debug.rows)
        elif key == '0':
            v.set_focus(Focus.NONE)
        elif key == 'w':
            v.toggle_wrap()
        elif key == 'b':
            v.toggle_debug()
            self._layout_body()
        elif key in ('h', 'left'):
            v.scroll_horizontal(-1)
        elif key in ('l', 'right'):
            v.scroll_horizontal(1)
        elif key == 't':
            v.toggle_autoscroll()
        elif key == 'c':
            v.clear_logs()
        elif key == 'y':
            text = v.export_selected()
            if text is None:
                v.notice('nothing selected')
            else:
                v.save_export(text)
        elif key == 'a':
            text = v.export_visible()
            if text:
                v.save_export(text)
            else:
                v.notice('nothing to export')
        elif key == '?':
            self._show_help()
            return
        else:
            return
        self.refresh()

    def _page_size(self) -> int:
        focus = self.viewer.nav.focus
        if focus is Focus.DETAILS:
            return max(1, self.details.rows - 1)
        if focus is Focus.DEBUG:
            return max(1, self.debug.rows - 1)
        return max(1, self.listbox.rows - 1)

    # Alarms
    def _on_ui_tick(self, loop, _):
        v = self.viewer
        v.expire_notices()
        if v.show_debug and v.debug_buffer is not None:
            version = v.debug_buffer.version
            if version != self._debug_version:
                self._debug_version = version
                v.dirty = True
        if v.dirty:
            self.refresh()
        loop.set_alarm_in(v.config.ui_poll_interval, self._on_ui_tick)

    def _on_ingest_tick(self, loop, _):
        self.viewer.ingest_tick(MAX_MESSAGES_TICK)
        loop.set_alarm_in(self.viewer.config.source_poll_interval, self._on_ingest_tick)

    # Run
    def run(self) -> list:
        """
        Run the main loop until the user quits, then stop every source.
        Returns the names of sources that did not stop within the bound.
        """
        loop = urwid.MainLoop(
            self.top,
            palette         = PALETTE,
            unhandled_input = self.handle_input,
            handle_mouse    = True,
        )
        self._loop_ref = loop
        loop.set_alarm_in(0, self._on_ingest_tick)
        loop.set_alarm_in(0, self._on_ui_tick)
        if self.viewer.bridge is not None:
            self.viewer.bridge.start()
        try:
            loop.run()
        except KeyboardInterrupt:
            pass
        finally:
            self._loop_ref = None
            pending = self.viewer.shutdown()
        return pending
