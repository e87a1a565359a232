"""Rank-based set enrichment: signed Kolmogorov-Smirnov and fgsea-style scores.

Both engines are pure functions of (ranking list, pathway membership,
method, size filter, seed) and return one `EnrichmentResult` per tested
pathway.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

import numpy as np
import pandas as pd
from scipy.stats import ks_2samp

from isomsea.core.types import GSEA_ALIASES, EnrichmentResult
from isomsea.errors import ConfigurationError, SetTooSmallError
from isomsea.seeding import rng_from_seed, stable_seed

MULTILEVEL_SAMPLE_SIZE = 101
GSEA_WEIGHT_EXPONENT = 1.0
MULTILEVEL_MOVES = 10


class GSEAMethod(str, Enum):
    SIGNED_KS = "signed-KS"
    FGSEA = "fgsea-style"

    @classmethod
    def parse(cls, value: "str | GSEAMethod") -> "GSEAMethod":
        if isinstance(value, GSEAMethod):
            return value
        key = str(value).strip().lower()
        if key not in GSEA_ALIASES:
            raise ConfigurationError(f"Unknown gsea.method '{value}'.")
        return cls(GSEA_ALIASES[key])


@dataclass(frozen=True)
class EnrichmentRun:
    """Per-replicate engine output."""

    results: tuple[EnrichmentResult, ...]
    excluded_small: tuple[str, ...] = ()
    excluded_large: tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"pathway": r.pathway, "es": r.es, "nes": r.nes, "pvalue": r.pvalue, "set_size": r.set_size}
                for r in self.results
            ],
            columns=["pathway", "es", "nes", "pvalue", "set_size"],
        )


def check_set_size(pathway: str, size: int, min_size: int) -> int:
    if int(size) < int(min_size):
        raise SetTooSmallError(pathway, size, min_size)
    return int(size)


def signed_ks(ranking: pd.Series, members) -> tuple[float, float]:
    """Signed two-sample KS between member and non-member rank positions.

    Positive ES means members sit toward the top (positive statistics).
    """
    in_mask = np.asarray(ranking.index.isin(list(members)), dtype=bool)
    n_in = int(in_mask.sum())
    n_out = int(in_mask.size - n_in)
    if n_in == 0:
        raise SetTooSmallError("<set>", 0, 1)
    if n_out == 0:
        return 0.0, 1.0

    positions = np.arange(in_mask.size, dtype=float)
    res = ks_2samp(positions[in_mask], positions[~in_mask])
    gap = np.cumsum(in_mask) / float(n_in) - np.cumsum(~in_mask) / float(n_out)
    sign = 1.0 if gap[int(np.argmax(np.abs(gap)))] >= 0.0 else -1.0
    return float(sign * res.statistic), float(min(max(res.pvalue, 0.0), 1.0))


def _es_from_positions(weights: np.ndarray, positions: np.ndarray, n: int) -> np.ndarray:
    """Running-sum ES for each row of sorted member positions (rows x k)."""
    pos = np.atleast_2d(positions)
    k = pos.shape[1]
    w = weights[pos]
    zero_rows = w.sum(axis=1) <= 0.0
    if np.any(zero_rows):
        w = w.copy()
        w[zero_rows] = 1.0
    cum = np.cumsum(w, axis=1)
    norm = cum[:, -1:]
    misses = (pos - np.arange(k)[None, :]) / float(n - k)
    after = cum / norm - misses
    before = (cum - w) / norm - misses
    top = after.max(axis=1)
    bottom = before.min(axis=1)
    return np.where(top > -bottom, top, bottom)


def gsea_score(ranking: pd.Series, members) -> float:
    """Weighted running-sum enrichment score (GSEA, exponent 1)."""
    in_mask = np.asarray(ranking.index.isin(list(members)), dtype=bool)
    n = int(in_mask.size)
    if int(in_mask.sum()) in (0, n):
        return 0.0
    weights = np.abs(np.asarray(ranking.to_numpy(), dtype=float)) ** GSEA_WEIGHT_EXPONENT
    return float(_es_from_positions(weights, np.flatnonzero(in_mask), n)[0])


def _random_positions(rng: np.random.Generator, n: int, k: int, rows: int) -> np.ndarray:
    keys = rng.random((rows, n))
    return np.sort(np.argpartition(keys, k - 1, axis=1)[:, :k], axis=1)


def _null_scores(weights: np.ndarray, n: int, k: int, n_perm: int, seed: int) -> np.ndarray:
    rng = rng_from_seed(stable_seed(int(seed), "permute", int(k), int(n_perm)))
    return _es_from_positions(weights, _random_positions(rng, n, k, n_perm), n)


def _multilevel_pvalue(
    weights: np.ndarray,
    n: int,
    k: int,
    es_obs: float,
    eps: float,
    seed: int,
    sample_size: int = MULTILEVEL_SAMPLE_SIZE,
) -> float:
    """Adaptive multilevel splitting estimate of P(ES >= es_obs), bounded by `eps`.

    Each level keeps the sets scoring above the sample median and
    regenerates the sample by member-swap moves that stay above it.
    """
    sign = 1.0 if es_obs >= 0.0 else -1.0
    target = abs(es_obs)
    rng = rng_from_seed(stable_seed(int(seed), "multilevel", int(k)))
    sample = _random_positions(rng, n, k, sample_size)
    scores = sign * _es_from_positions(weights, sample, n)
    p_est = 1.0
    max_levels = int(math.ceil(math.log2(1.0 / eps))) + 1
    for _ in range(max_levels):
        threshold = float(np.median(scores))
        if threshold >= target:
            break
        keep = scores > threshold
        if not np.any(keep):
            break
        p_est *= float(keep.mean())
        if p_est <= eps:
            return float(eps)
        survivors = sample[keep]
        picks = rng.integers(0, survivors.shape[0], size=sample_size)
        sample = survivors[picks].copy()
        scores = sign * _es_from_positions(weights, sample, n)
        for row in range(sample_size):
            for _ in range(min(k, MULTILEVEL_MOVES)):
                member = int(rng.integers(0, k))
                candidate = int(rng.integers(0, n))
                if candidate in sample[row]:
                    continue
                proposal = sample[row].copy()
                proposal[member] = candidate
                proposal.sort()
                score = float(sign * _es_from_positions(weights, proposal, n)[0])
                if score > threshold:
                    sample[row] = proposal
                    scores[row] = score
    p_est *= float(np.mean(scores >= target))
    return float(max(p_est, eps))


def fgsea_style(
    ranking: pd.Series,
    members,
    *,
    n_permutations: int,
    seed: int,
    multilevel: bool = True,
) -> tuple[float, float, float]:
    """ES, NES and permutation p-value for one set.

    The null permutes membership labels (random sets of equal size); the
    p-value never goes below `1 / n_permutations`.
    """
    in_mask = np.asarray(ranking.index.isin(list(members)), dtype=bool)
    n = int(in_mask.size)
    k = int(in_mask.sum())
    if k == 0:
        raise SetTooSmallError("<set>", 0, 1)
    if k == n:
        return 0.0, 0.0, 1.0

    weights = np.abs(np.asarray(ranking.to_numpy(), dtype=float)) ** GSEA_WEIGHT_EXPONENT
    es = float(_es_from_positions(weights, np.flatnonzero(in_mask), n)[0])
    null = _null_scores(weights, n, k, int(n_permutations), seed)

    same_sign = null[null >= 0.0] if es >= 0.0 else null[null < 0.0]
    if same_sign.size == 0:
        return es, float("nan"), 1.0
    n_extreme = int(np.sum(np.abs(same_sign) >= abs(es)))
    floor = 1.0 / float(n_permutations)
    pvalue = (n_extreme + 1.0) / (same_sign.size + 1.0)
    if n_extreme == 0 and multilevel and es != 0.0:
        pvalue = _multilevel_pvalue(weights, n, k, es, floor, seed)
    pvalue = float(min(max(pvalue, floor), 1.0))
    nes = es / float(np.mean(np.abs(same_sign))) if np.any(same_sign != 0.0) else float("nan")
    return es, float(nes), pvalue


def run_enrichment(
    ranking: pd.Series,
    membership: Mapping[str, frozenset[str]],
    method: "str | GSEAMethod",
    *,
    min_size: int = 1,
    max_size: int | None = None,
    n_permutations: int = 1000,
    seed: int = 0,
    multilevel: bool = True,
) -> EnrichmentRun:
    """Score every pathway of one replicate.

    Pathways below `min_size` resolved members are excluded from this
    replicate only; pathways above `max_size` likewise.
    """
    meth = GSEAMethod.parse(method)
    ranked = set(ranking.index.astype(str))
    results: list[EnrichmentResult] = []
    too_small: list[str] = []
    too_large: list[str] = []
    for pathway in sorted(membership):
        members = frozenset(m for m in membership[pathway] if m in ranked)
        try:
            size = check_set_size(pathway, len(members), min_size)
        except SetTooSmallError:
            too_small.append(pathway)
            continue
        if max_size is not None and size > int(max_size):
            too_large.append(pathway)
            continue
        if meth is GSEAMethod.SIGNED_KS:
            es, pvalue = signed_ks(ranking, members)
            nes = es
        else:
            es, nes, pvalue = fgsea_style(
                ranking,
                members,
                n_permutations=n_permutations,
                seed=seed,
                multilevel=multilevel,
            )
        results.append(
            EnrichmentResult(pathway=pathway, es=float(es), pvalue=float(pvalue), set_size=size, nes=float(nes))
        )
    return EnrichmentRun(
        results=tuple(results),
        excluded_small=tuple(too_small),
        excluded_large=tuple(too_large),
        metadata={"method": meth.value, "n_ranked": int(ranking.size)},
    )
