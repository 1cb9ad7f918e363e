"""Error taxonomy for the trade P&L engine."""


class TradebookError(Exception):
    """Base class for engine errors."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(TradebookError):
    """Caller-fixable problem with a trade write (no partial write occurs)."""
    pass


class NotFoundError(TradebookError):
    """Trade does not exist or is owned by a different user."""
    pass


class TransientSourceError(TradebookError):
    """Network, parse or missing-data failure talking to a rate source.

    Only raised inside the refresh path; the exchange rate cache contains it.
    """
    pass
