"""Exception hierarchy shared by the viewer core and its adapters."""


class LazylogError(Exception):
    pass


class ConfigError(LazylogError, ValueError):
    # Rejected at construction time; the only errors allowed to stop startup.
    pass


class InvalidPatternError(LazylogError, ValueError):
    def __init__(self, pattern: str, reason: str):
        super().__init__(f'invalid pattern {pattern!r}: {reason}')
        self.pattern = pattern
        self.reason  = reason


class SourceError(LazylogError):
    pass
