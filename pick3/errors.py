"""
Error taxonomy for the Pick 3 scoring and backtesting engine.

Mutation-path errors (SequencingError, ValidationError) are raised before
any state changes. StateIntegrityError and Cancelled abort a single backtest run.
CapacityExceeded is a warning: callers get partial results plus a
truncation flag.
"""


class Pick3Error(Exception):
    """Base class for engine errors."""

    kind = "Pick3Error"

    def __init__(self, message, index=None):
        super().__init__(message)
        self.message = message
        self.index = index

    def to_dict(self):
        return {"index": self.index, "kind": self.kind, "message": self.message}


class SequencingError(Pick3Error):
    """A draw was applied out of order, twice, or with a gap."""

    kind = "SequencingError"


class ValidationError(Pick3Error):
    """Malformed symbol, feature key or configuration."""

    kind = "ValidationError"


class StateIntegrityError(Pick3Error):
    """Snapshot state does not match the index a backtest step asked for."""

    kind = "StateIntegrityError"


class Cancelled(Pick3Error):
    """A backtest was cancelled between steps; it can be resumed."""

    kind = "Cancelled"


class CapacityExceeded(UserWarning):
    """Candidate enumeration hit its bound; results were truncated."""

    kind = "CapacityExceeded"
