# errors.py
from __future__ import annotations


class BandFactorError(Exception):
    """Base class for every error raised by bandfactor."""


class UserInputError(BandFactorError):
    """Problems with CLI arguments or profile files; printed without traceback."""


class BandConfigurationError(BandFactorError):
    """Invalid configuration, e.g. a bit length no band covers."""


class InputValidationError(BandFactorError):
    pass


class OutOfBandRangeError(BandFactorError):
    def __init__(self, value_bits: int, band_name: str, lo: int, hi: int):
        super().__init__(
            f"input has {value_bits} bits, outside {band_name} range [{lo}, {hi}]"
        )
        self.bits = value_bits
        self.band_name = band_name


class UnsupportedInputTypeError(BandFactorError):
    pass


class UnknownOperationError(BandFactorError):
    pass


class UnknownStrategyError(BandFactorError):
    pass


class CollaboratorNotConfiguredError(BandFactorError):
    def __init__(self, collaborator: str, operation: str = ""):
        where = f" (needed by {operation})" if operation else ""
        super().__init__(f"collaborator '{collaborator}' is not configured{where}")
        self.collaborator = collaborator


class AlgorithmExhaustedError(BandFactorError):
    """Every algorithm in a portfolio failed to split the remainder."""

    def __init__(self, tried, remaining):
        self.tried = tuple(tried)
        self.remaining = tuple(remaining)
        super().__init__(
            f"{', '.join(self.tried) or 'no algorithm'} left {len(self.remaining)} composite(s) unsplit"
        )


# --- distributed band --------------------------------------------------------

class NoAvailableNodesError(BandFactorError):
    pass


class ConsensusFailureError(BandFactorError):
    pass


class NodeFailureError(BandFactorError):
    def __init__(self, node_id: str, reason: str = ""):
        super().__init__(f"node {node_id} failed" + (f": {reason}" if reason else ""))
        self.node_id = node_id


class StrategyTimeoutError(BandFactorError, TimeoutError):
    """Deadline expired; the in-flight algorithm was abandoned."""
