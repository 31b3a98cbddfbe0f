"""
Run-time configuration. Built once at startup (normally from the CLI flags)
and never mutated afterwards; every component receives the same instance.
"""

import dataclasses

from .errors import ConfigError

DEFAULT_UI_POLL_INTERVAL     = 0.016
DEFAULT_SOURCE_POLL_INTERVAL = 0.100
DEFAULT_CAPACITY             = 16_384
DEFAULT_CHECK_INTERVAL       = 0.025
DEFAULT_SHUTDOWN_GRACE       = 0.250
DEFAULT_DETAIL_LEVEL         = 1

CHECK_INTERVAL_RANGE = (0.020, 0.050)


@dataclasses.dataclass(frozen=True)
class IngestionConfig:
    ui_poll_interval:     float      = DEFAULT_UI_POLL_INTERVAL
    source_poll_interval: float      = DEFAULT_SOURCE_POLL_INTERVAL
    capacity:             int        = DEFAULT_CAPACITY
    check_interval:       float      = DEFAULT_CHECK_INTERVAL
    # Allowance for one in-flight poll call on top of the check interval.
    shutdown_grace:       float      = DEFAULT_SHUTDOWN_GRACE
    show_debug_logs:      bool       = False
    initial_filter:       str | None = None
    detail_level:         int        = DEFAULT_DETAIL_LEVEL
    case_sensitive:       bool       = False

    def __post_init__(self):
        if not isinstance(self.capacity, int) or self.capacity < 1:
            raise ConfigError(f'capacity must be a positive integer, got {self.capacity!r}')
        for name in ('ui_poll_interval', 'source_poll_interval', 'shutdown_grace'):
            value = getattr(self, name)
            if value is None or value < 0 or (value == 0 and name != 'shutdown_grace'):
                raise ConfigError(f'{name} must be positive, got {value!r}')
        lo, hi = CHECK_INTERVAL_RANGE
        if not lo <= self.check_interval <= hi:
            raise ConfigError(
                f'check_interval must lie within {lo * 1000:.0f}-{hi * 1000:.0f} ms, '
                f'got {self.check_interval * 1000:.0f} ms')
        if self.detail_level < 0:
            raise ConfigError(f'detail_level must not be negative, got {self.detail_level}')

    @property
    def shutdown_timeout(self) -> float:
        # Longest the loop thread may wait for workers after the stop signal.
        return self.check_interval + self.shutdown_grace
