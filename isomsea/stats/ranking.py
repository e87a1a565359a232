"""Signed per-feature ranking statistics contrasting two conditions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.stats import rankdata, ranksums, ttest_ind

from isomsea.core.types import RANKING_ALIASES, RankingTable, Resolution
from isomsea.errors import ConfigurationError, InsufficientDataError

PSEUDOCOUNT = 1e-9
MAX_ABS_STAT = 1e6
MIN_OBS_PER_CONDITION = 2
TIED_MAGNITUDE_SCALE = 1e-12

LOGGER = logging.getLogger("isomsea")


class RankingMethod(str, Enum):
    LOGFC = "logFC"
    WILCOX = "wilcox.test"
    TTEST = "t.test"
    BWS = "BWS"

    @classmethod
    def parse(cls, value: "str | RankingMethod") -> "RankingMethod":
        if isinstance(value, RankingMethod):
            return value
        key = str(value).strip().lower()
        if key not in RANKING_ALIASES:
            raise ConfigurationError(f"Unknown ranking.by '{value}'.")
        return cls(RANKING_ALIASES[key])


def log2_fold_change(x: np.ndarray, y: np.ndarray) -> float:
    """log2(mean_y) - log2(mean_x); positive means higher in condition y."""
    mean_x = max(float(np.mean(x)), 0.0)
    mean_y = max(float(np.mean(y)), 0.0)
    return float(np.log2(mean_y + PSEUDOCOUNT) - np.log2(mean_x + PSEUDOCOUNT))


def bws_statistic(x: np.ndarray, y: np.ndarray) -> float:
    """Baumgartner-Weiss-Schindler B statistic (two-sample, unsigned)."""
    n = int(x.size)
    m = int(y.size)
    total = n + m
    ranks = rankdata(np.concatenate([x, y]))
    rx = np.sort(ranks[:n])
    ry = np.sort(ranks[n:])

    i = np.arange(1, n + 1, dtype=float)
    j = np.arange(1, m + 1, dtype=float)
    px = i / (n + 1.0)
    py = j / (m + 1.0)
    bx = np.mean((rx - (total / n) * i) ** 2 / (px * (1.0 - px) * (m * total / n)))
    by = np.mean((ry - (total / m) * j) ** 2 / (py * (1.0 - py) * (n * total / m)))
    return float(0.5 * (bx + by))


def _unsigned_magnitude(x: np.ndarray, y: np.ndarray, method: RankingMethod) -> float:
    if method is RankingMethod.WILCOX:
        stat = float(ranksums(y, x).statistic)
    elif method is RankingMethod.TTEST:
        stat = float(ttest_ind(y, x).statistic)
    elif method is RankingMethod.BWS:
        stat = bws_statistic(x, y)
    else:
        raise ConfigurationError(f"No magnitude for ranking method {method.value}.")
    if np.isnan(stat):
        return 0.0
    return float(min(abs(stat), MAX_ABS_STAT))


def feature_statistic(
    x: np.ndarray,
    y: np.ndarray,
    method: "str | RankingMethod",
    *,
    feature: str = "feature",
) -> float:
    """Signed statistic for one feature (x = reference, y = test condition).

    Non-finite abundances count as unobserved. Every statistic other than
    log2FC is `|stat| * sign(log2FC)`; a zero magnitude becomes a tiny one
    so that any non-zero fold change keeps its sign.
    """
    meth = RankingMethod.parse(method)
    xa = np.asarray(x, dtype=float).ravel()
    ya = np.asarray(y, dtype=float).ravel()
    xa = xa[np.isfinite(xa)]
    ya = ya[np.isfinite(ya)]
    if xa.size < MIN_OBS_PER_CONDITION or ya.size < MIN_OBS_PER_CONDITION:
        raise InsufficientDataError(feature, xa.size, ya.size)

    lfc = log2_fold_change(xa, ya)
    if meth is RankingMethod.LOGFC:
        return lfc
    if lfc == 0.0:
        return 0.0
    magnitude = _unsigned_magnitude(xa, ya, meth)
    if magnitude == 0.0:
        # keep the fold-change direction when the test statistic is tied at 0
        magnitude = max(abs(lfc) * TIED_MAGNITUDE_SCALE, np.finfo(float).tiny)
    return float(np.sign(lfc)) * magnitude


def compute_ranking_statistics(
    X: np.ndarray,
    labels: np.ndarray,
    keys: Sequence[str],
    condition_x: str,
    condition_y: str,
    method: "str | RankingMethod",
    *,
    logger: logging.Logger | None = None,
) -> RankingTable:
    """Signed statistic for every feature column of `X` (cells x features)."""
    log = logger or LOGGER
    meth = RankingMethod.parse(method)
    mat = np.asarray(X, dtype=float)
    lab = np.asarray(labels).astype(str)
    if mat.shape[0] != lab.size:
        raise ValueError("labels length must match X.shape[0].")
    if mat.shape[1] != len(keys):
        raise ValueError("keys length must match X.shape[1].")

    mask_x = lab == str(condition_x)
    mask_y = lab == str(condition_y)
    values: dict[str, float] = {}
    excluded: list[str] = []
    for j, key in enumerate(keys):
        try:
            values[str(key)] = feature_statistic(
                mat[mask_x, j], mat[mask_y, j], meth, feature=str(key)
            )
        except InsufficientDataError as exc:
            log.debug("Ranking skipped: %s", exc)
            excluded.append(str(key))

    if excluded:
        log.info(
            "Ranking (%s): %d feature(s) excluded for insufficient data", meth.value, len(excluded)
        )
    stats = pd.Series(values, dtype=float, name="statistic")
    return RankingTable(
        stats=rank_order(stats),
        excluded=tuple(excluded),
        method=meth.value,
        metadata={"n_x": int(mask_x.sum()), "n_y": int(mask_y.sum())},
    )


def rank_order(stats: pd.Series) -> pd.Series:
    """Sort descending by value; ties broken by key in lexical order."""
    if stats.empty:
        return stats.astype(float)
    keys = np.asarray(stats.index.astype(str))
    vals = np.asarray(stats.to_numpy(), dtype=float)
    order = np.lexsort((keys, -vals))
    return pd.Series(vals[order], index=pd.Index(keys[order]), name=stats.name, dtype=float)


def collapse_to_metabolites(stats: pd.Series, resolution: Resolution) -> pd.Series:
    """One ranking position per resolved metabolite.

    Features resolving to the same metabolite keep the maximum-magnitude
    signed value (ties: positive first, then the lexically first feature).
    """
    best: dict[str, tuple[tuple[float, bool, str], float]] = {}
    for key, value in stats.items():
        key = str(key)
        if key not in resolution.assignment:
            continue
        mol = resolution.molecule_of(key)
        val = float(value)
        order = (-abs(val), val <= 0.0, key)
        if mol not in best or order < best[mol][0]:
            best[mol] = (order, val)
    collapsed = pd.Series({mol: v for mol, (_, v) in best.items()}, dtype=float, name="statistic")
    return rank_order(collapsed)
