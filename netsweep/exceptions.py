"""Project-specific exception types for clearer error semantics."""

from typing import Optional


class NetsweepError(Exception):
    """Base class for harness errors."""
    pass

class ConfigurationError(NetsweepError, ValueError):
    """Invalid sweep parameters; raised before any run executes."""
    pass

class ShapingError(NetsweepError):
    """Network shaping rule could not be installed or queried."""
    pass

class InstrumentationError(NetsweepError):
    """Accounting rule install/read/remove failure."""
    pass

class EndpointStartupError(NetsweepError):
    """The attestor / target endpoints never became reachable."""
    pass

class ProtocolError(NetsweepError):
    """The external protocol round failed or returned an explicit error."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
