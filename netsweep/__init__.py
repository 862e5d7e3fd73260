"""Network-condition benchmarking harness.

Drives repeated protocol rounds under emulated bandwidth/latency, attributes
bytes to ports with accounting rules, and exports one row per measured run.
"""

from .exceptions import (
    ConfigurationError,
    EndpointStartupError,
    InstrumentationError,
    NetsweepError,
    ProtocolError,
    ShapingError,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "EndpointStartupError",
    "InstrumentationError",
    "NetsweepError",
    "ProtocolError",
    "ShapingError",
    "__version__",
]
