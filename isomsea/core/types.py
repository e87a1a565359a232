"""Typed configuration and result containers for isomsea."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping

import numpy as np
import pandas as pd

from isomsea.errors import ConfigurationError

RANKING_ALIASES: dict[str, str] = {
    "logfc": "logFC",
    "log2fc": "logFC",
    "wilcox.test": "wilcox.test",
    "wilcox": "wilcox.test",
    "t.test": "t.test",
    "ttest": "t.test",
    "bws": "BWS",
}

GSEA_ALIASES: dict[str, str] = {
    "signed-ks": "signed-KS",
    "ks_signed": "signed-KS",
    "ks": "signed-KS",
    "fgsea-style": "fgsea-style",
    "fgsea": "fgsea-style",
}

COMBINE_METHODS: tuple[str, ...] = ("median", "stouffer")
AMBIGUITY_METHODS: tuple[str, ...] = ("cv", "crossing")
PRIORS: tuple[str, ...] = ("uniform", "confidence")
POLARITIES: tuple[str, ...] = ("positive", "negative")
BACKENDS: tuple[str, ...] = ("loky", "threading", "multiprocessing")

# Dotted option names accepted by `MSEARequest.from_dict`.
OPTION_ALIASES: dict[str, str] = {
    "ranking.by": "ranking_by",
    "gsea.method": "gsea_method",
    "condition.x": "condition_x",
    "condition.y": "condition_y",
    "min.pathway.size": "min_pathway_size",
    "max.pathway.size": "max_pathway_size",
    "n.bootstraps": "n_bootstraps",
}


def _canonical(value: str, aliases: dict[str, str], option: str) -> str:
    key = str(value).strip().lower()
    if key not in aliases:
        allowed = sorted(set(aliases.values()))
        raise ConfigurationError(f"Unknown {option} '{value}'. Allowed: {', '.join(allowed)}.")
    return aliases[key]


def _whole_number(value: Any, option: str) -> int:
    """Integer option value; floats are accepted only when integral."""
    if isinstance(value, (bool, np.bool_)):
        raise ConfigurationError(f"{option} must be a whole number, got {value!r}.")
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)) and np.isfinite(value) and float(value).is_integer():
        return int(value)
    raise ConfigurationError(f"{option} must be a whole number, got {value!r}.")


def _real_number(value: Any, option: str) -> float:
    if isinstance(value, (bool, np.bool_)) or not isinstance(
        value, (int, float, np.integer, np.floating)
    ):
        raise ConfigurationError(f"{option} must be a number, got {value!r}.")
    return float(value)


@dataclass(frozen=True)
class MSEARequest:
    """All options recognised by one enrichment run."""

    condition_x: str
    condition_y: str
    ranking_by: str = "logFC"
    gsea_method: str = "signed-KS"
    n_bootstraps: int = 50
    min_pathway_size: int = 2
    max_pathway_size: int | None = None
    consider_isomers: bool = True
    consider_isobars: bool = True
    polarization_mode: str | None = None
    database: str | None = None
    fdr_threshold: float = 0.1
    background_type: str = "sub_class"
    condition_col: str = "condition"
    report_ambiguity_scores: bool = True
    mass_tolerance_ppm: float = 3.0
    prior: str = "uniform"
    resample_cells: bool = False
    n_permutations: int = 1000
    combine_method: str = "median"
    ambiguity_method: str = "cv"
    alpha: float = 0.05
    min_support_fraction: float = 0.5
    keep_replicate_results: bool = True
    seed: int = 0
    n_jobs: int = 1
    backend: str = "loky"

    def validate(self) -> "MSEARequest":
        """Return a normalised copy, raising `ConfigurationError` on bad options."""
        ranking = _canonical(self.ranking_by, RANKING_ALIASES, "ranking.by")
        method = _canonical(self.gsea_method, GSEA_ALIASES, "gsea.method")

        n_bootstraps = _whole_number(self.n_bootstraps, "n_bootstraps")
        min_size = _whole_number(self.min_pathway_size, "min_pathway_size")
        max_size = (
            None
            if self.max_pathway_size is None
            else _whole_number(self.max_pathway_size, "max_pathway_size")
        )
        n_permutations = _whole_number(self.n_permutations, "n_permutations")
        seed = _whole_number(self.seed, "seed")
        n_jobs = _whole_number(self.n_jobs, "n_jobs")

        if n_bootstraps < 1:
            raise ConfigurationError(f"n_bootstraps must be a positive integer, got {n_bootstraps}.")
        if min_size < 1:
            raise ConfigurationError(f"min_pathway_size must be >= 1, got {min_size}.")
        if max_size is not None and max_size < min_size:
            raise ConfigurationError("max_pathway_size must be >= min_pathway_size.")
        if method == "fgsea-style" and n_permutations < 1:
            raise ConfigurationError("n_permutations must be >= 1 for the fgsea-style method.")
        if str(self.condition_x) == str(self.condition_y):
            raise ConfigurationError("condition.x and condition.y must differ.")
        if not 0.0 < _real_number(self.fdr_threshold, "fdr_threshold") <= 1.0:
            raise ConfigurationError("fdr_threshold must be in (0, 1].")
        if not 0.0 < _real_number(self.alpha, "alpha") < 1.0:
            raise ConfigurationError("alpha must be in (0, 1).")
        if not 0.0 <= _real_number(self.min_support_fraction, "min_support_fraction") <= 1.0:
            raise ConfigurationError("min_support_fraction must be in [0, 1].")
        if _real_number(self.mass_tolerance_ppm, "mass_tolerance_ppm") < 0.0:
            raise ConfigurationError("mass_tolerance_ppm must be non-negative.")
        if n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero.")

        polarity = None
        if self.polarization_mode is not None:
            polarity = str(self.polarization_mode).strip().lower()
            if polarity not in POLARITIES:
                raise ConfigurationError(
                    f"polarization_mode must be one of {POLARITIES}, got '{self.polarization_mode}'."
                )
        for value, allowed, option in (
            (self.combine_method, COMBINE_METHODS, "combine_method"),
            (self.ambiguity_method, AMBIGUITY_METHODS, "ambiguity_method"),
            (self.prior, PRIORS, "prior"),
            (self.backend, BACKENDS, "backend"),
        ):
            if str(value) not in allowed:
                raise ConfigurationError(f"{option} must be one of {allowed}, got '{value}'.")

        return MSEARequest(
            **{
                **self.to_dict(),
                "ranking_by": ranking,
                "gsea_method": method,
                "n_bootstraps": n_bootstraps,
                "min_pathway_size": min_size,
                "max_pathway_size": max_size,
                "polarization_mode": polarity,
                "condition_x": str(self.condition_x),
                "condition_y": str(self.condition_y),
                "n_permutations": n_permutations,
                "seed": seed,
                "n_jobs": n_jobs,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def with_conditions(self, condition_x: str, condition_y: str) -> "MSEARequest":
        return MSEARequest(
            **{**self.to_dict(), "condition_x": condition_x, "condition_y": condition_y}
        )

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "MSEARequest":
        """Build a request from config keys (dotted names or field names)."""
        known = {f.name for f in fields(MSEARequest)}
        kwargs: dict[str, Any] = {}
        for raw_key, value in payload.items():
            key = OPTION_ALIASES.get(str(raw_key), str(raw_key).replace(".", "_"))
            if key not in known:
                raise ConfigurationError(f"Unknown option '{raw_key}'.")
            kwargs[key] = value
        for required in ("condition_x", "condition_y"):
            if required not in kwargs:
                raise ConfigurationError(f"Missing required option '{required}'.")
        return MSEARequest(**kwargs)


@dataclass(frozen=True)
class CandidateIdentity:
    """One putative metabolite assignable to a feature."""

    molecule_id: str
    formula: str
    adduct: str
    mz: float
    fdr: float
    source_feature: str
    relation: str = "self"
    molecule_name: str = ""
    weight: float = 1.0


@dataclass(frozen=True)
class Resolution:
    """One candidate chosen per feature for a single replicate."""

    replicate: int
    seed: int
    assignment: Mapping[str, CandidateIdentity]

    def molecule_of(self, feature: str) -> str:
        return self.assignment[feature].molecule_id

    def molecules(self) -> frozenset[str]:
        return frozenset(c.molecule_id for c in self.assignment.values())


@dataclass(frozen=True)
class EnrichmentResult:
    """Enrichment of one pathway in one replicate."""

    pathway: str
    es: float
    pvalue: float
    set_size: int
    nes: float = float("nan")


@dataclass(frozen=True)
class ReplicateResult:
    """Everything a single bootstrap replicate contributes to aggregation."""

    replicate: int
    seed: int
    results: tuple[EnrichmentResult, ...]
    excluded_small: tuple[str, ...] = ()
    excluded_large: tuple[str, ...] = ()
    n_ranked: int = 0
    n_excluded_features: int = 0

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "replicate": int(self.replicate),
                "pathway": r.pathway,
                "es": float(r.es),
                "nes": float(r.nes),
                "pvalue": float(r.pvalue),
                "set_size": int(r.set_size),
            }
            for r in self.results
        ]
        return pd.DataFrame(
            rows, columns=["replicate", "pathway", "es", "nes", "pvalue", "set_size"]
        )


@dataclass(frozen=True)
class RankingTable:
    """Per-feature signed statistics plus exclusions for one condition pair.

    - `stats`: signed statistic indexed by feature key.
    - `excluded`: feature keys dropped for insufficient data.
    """

    stats: pd.Series
    excluded: tuple[str, ...] = ()
    method: str = "logFC"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_ranked(self) -> int:
        return int(self.stats.size)

    def values(self) -> np.ndarray:
        return np.asarray(self.stats.to_numpy(), dtype=float)
