"""isomsea public API."""

from isomsea._version import __version__
from isomsea.core.types import MSEARequest
from isomsea.errors import (
    ConfigurationError,
    EmptyUniverseError,
    InsufficientDataError,
    ResolutionAmbiguityWarning,
    RunCancelledError,
    SetTooSmallError,
)
from isomsea.pipeline.run import MSEARun, run_msea, run_msea_contrasts

__all__ = [
    "__version__",
    "MSEARequest",
    "MSEARun",
    "run_msea",
    "run_msea_contrasts",
    "ConfigurationError",
    "EmptyUniverseError",
    "InsufficientDataError",
    "SetTooSmallError",
    "RunCancelledError",
    "ResolutionAmbiguityWarning",
]
