"""Exception and warning taxonomy for isomsea runs."""

from __future__ import annotations


class MSEAError(Exception):
    """Base class for all isomsea errors."""


class ConfigurationError(MSEAError, ValueError):
    """Invalid request options; raised before any computation starts."""


class EmptyUniverseError(MSEAError):
    """No feature survived universe filtering."""


class InsufficientDataError(MSEAError, ValueError):
    """A feature has fewer than two observations in one condition."""

    def __init__(self, feature: str, n_x: int, n_y: int) -> None:
        self.feature = str(feature)
        self.n_x = int(n_x)
        self.n_y = int(n_y)
        super().__init__(
            f"Feature '{self.feature}' has too few observations "
            f"(n_x={self.n_x}, n_y={self.n_y}); need at least 2 per condition."
        )


class SetTooSmallError(MSEAError, ValueError):
    """A pathway has fewer resolved members than the minimum set size."""

    def __init__(self, pathway: str, size: int, min_size: int) -> None:
        self.pathway = str(pathway)
        self.size = int(size)
        self.min_size = int(min_size)
        super().__init__(
            f"Pathway '{self.pathway}' has {self.size} resolved members "
            f"(min_pathway_size={self.min_size})."
        )


class RunCancelledError(MSEAError):
    """The enrichment run was cancelled before aggregation."""


class ResolutionAmbiguityWarning(UserWarning):
    """Some features map to more than one candidate identity."""
