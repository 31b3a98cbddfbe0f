"""
Navigation, selection and focus.

Selection is a sequence number, not a row index: rows shift as the store
evicts and the filter changes, sequence numbers do not. A selected sequence
number may dangle (evicted or filtered out); reconcile() moves it to the
nearest visible entry, preferring the next-older one.

Every movement operation takes the current visible view (see lazylog.filter)
and clamps at both ends.
"""

import enum
import logging

from .entry import clamp_detail

logger = logging.getLogger(__name__)

SCROLL_PAD             = 1
HORIZONTAL_SCROLL_STEP = 5


class Focus(enum.Enum):
    LOGS    = 'logs'
    DETAILS = 'details'
    DEBUG   = 'debug'
    NONE    = 'none'


PANELS = (Focus.LOGS, Focus.DETAILS, Focus.DEBUG)


class NavigationState:

    def __init__(self, detail_level: int = 1, autoscroll: bool = True,
                 wrap: bool = True, focus: Focus = Focus.LOGS):
        self.selected: int | None = None
        self.scroll   = {p: 0 for p in PANELS}    # vertical offset per panel
        self.hscroll  = {p: 0 for p in PANELS}    # horizontal offset per panel
        self.detail_level = detail_level
        self.autoscroll   = autoscroll
        self.wrap         = wrap
        self.focus        = focus

    # Selection

    def _select(self, seq: int | None) -> bool:
        if seq == self.selected:
            return False
        self.selected = seq
        # A different entry in the Details panel starts at its top.
        self.scroll[Focus.DETAILS]  = 0
        self.hscroll[Focus.DETAILS] = 0
        return True

    def selected_index(self, visible) -> int | None:
        return visible.index_of(self.selected)

    def select(self, visible, seq: int) -> bool:
        if seq not in visible:
            return False
        self._select(seq)
        return True

    def select_index(self, visible, index: int) -> bool:
        if not 0 <= index < len(visible):
            return False
        self._select(visible[index])
        return True

    def step(self, visible, delta: int) -> None:
        n = len(visible)
        if n == 0:
            self._select(None)
            return
        idx = visible.index_of(self.selected)
        if idx is None:
            anchor = visible.nearest(self.selected)
            if anchor is None:
                # Nothing selected yet: start from the top, as a fresh list would.
                self._select(visible[0])
                return
            idx = visible.index_of(anchor)
        self._select(visible[max(0, min(n - 1, idx + delta))])

    def page(self, visible, direction: int, page_size: int) -> None:
        self.step(visible, direction * max(1, page_size))

    def first(self, visible) -> None:
        self._select(visible.oldest)

    def last(self, visible) -> None:
        self._select(visible.newest)

    def reconcile(self, visible) -> bool:
        """
        Re-validate the selection against the visible view. A selection that is
        gone falls back to the nearest visible entry (older first, then newer);
        an empty view clears it. Returns True when the selection moved.
        """
        if self.selected is None:
            return False
        return self._select(visible.nearest(self.selected))

    # Autoscroll

    def is_at_newest(self, visible) -> bool:
        return self.selected is not None and self.selected == visible.newest

    def is_following(self, visible) -> bool:
        # Sampled before new entries land.
        return self.autoscroll and (self.selected is None or self.is_at_newest(visible))

    def after_arrivals(self, visible, following: bool) -> bool:
        if following and len(visible):
            return self._select(visible.newest)
        return False

    def autoscroll_suspended(self, visible) -> bool:
        return self.autoscroll and not self.is_following(visible)

    def set_autoscroll(self, enabled: bool, visible=None) -> None:
        self.autoscroll = enabled
        if enabled and visible is not None:
            self.last(visible)

    def toggle_autoscroll(self, visible) -> bool:
        self.set_autoscroll(not self.autoscroll, visible)
        return self.autoscroll

    # Detail level

    def change_detail(self, delta: int, maximum: int) -> bool:
        new = clamp_detail(self.detail_level + delta, maximum)
        if new == self.detail_level:
            return False
        self.detail_level = new
        return True

    # Focus and panel scrolling

    def set_focus(self, focus: Focus) -> None:
        self.focus = focus

    def scroll_panel(self, panel: Focus, delta: int, line_count: int) -> int:
        top = max(0, line_count - 1)
        self.scroll[panel] = max(0, min(top, self.scroll[panel] + delta))
        return self.scroll[panel]

    def ensure_visible(self, visible, viewport_height: int, pad: int = SCROLL_PAD) -> int:
        """
        Adjust the Logs scroll offset so the selected row sits inside the
        viewport with `pad` rows of margin, never scrolling past the point where
        the last row is fully shown.
        """
        total = len(visible)
        pos   = self.scroll[Focus.LOGS]
        idx   = visible.index_of(self.selected)
        if viewport_height <= 0:
            return pos
        if idx is not None:
            pad = pad if viewport_height > 2 else 0
            if idx < pos + pad:
                pos = idx - pad
            elif idx > pos + viewport_height - 1 - pad:
                pos = idx + pad + 1 - viewport_height
        pos = max(0, min(pos, max(0, total - viewport_height)))
        self.scroll[Focus.LOGS] = pos
        return pos

    # Wrapping and horizontal scroll

    def toggle_wrap(self) -> bool:
        self.wrap = not self.wrap
        return self.wrap

    def scroll_horizontal(self, delta: int, max_offset: int | None = None,
                          panel: Focus | None = None) -> bool:
        # Inert while wrapping: content reflows to the panel width instead.
        if self.wrap:
            return False
        panel = panel or self.focus
        if panel not in self.hscroll:
            return False
        new = max(0, self.hscroll[panel] + delta)
        if max_offset is not None:
            new = min(new, max(0, max_offset))
        changed = new != self.hscroll[panel]
        self.hscroll[panel] = new
        return changed

    def horizontal_offset(self, panel: Focus) -> int:
        if self.wrap:
            return 0
        return self.hscroll.get(panel, 0)
