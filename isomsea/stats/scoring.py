"""Multiple testing, p-value combination and ambiguity scoring."""

from __future__ import annotations

import numpy as np
from scipy.stats import combine_pvalues as _scipy_combine_pvalues

P_CLIP_LOW = 1e-300
P_CLIP_HIGH = 1.0 - 1e-12


def _as_1d_float(name: str, values: np.ndarray) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise ValueError(f"{name} must contain at least one value.")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must be finite.")
    return arr


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    arr = np.asarray(pvals, dtype=float)
    flat = arr.ravel()
    q = np.full_like(flat, np.nan)
    finite = np.isfinite(flat)
    if np.any((flat[finite] < 0.0) | (flat[finite] > 1.0)):
        raise ValueError("p-values must be in [0,1] or NaN.")
    if np.any(finite):
        p = flat[finite]
        m = int(p.size)
        order = np.argsort(p, kind="mergesort")
        ranked = p[order]
        ranks = np.arange(1, m + 1, dtype=float)
        adj = ranked * (float(m) / ranks)
        adj = np.minimum.accumulate(adj[::-1])[::-1]
        adj = np.clip(adj, 0.0, 1.0)
        q_valid = np.empty_like(adj)
        q_valid[order] = adj
        q[finite] = q_valid
    return q.reshape(arr.shape)


def combine_pvalues(pvals: np.ndarray, method: str = "median") -> float:
    """Combine one pathway's per-replicate p-values.

    `median` is the order-statistic (rank-based) summary; `stouffer` sums
    inverse-normal scores over sqrt(k). Both are deterministic.
    """
    p = _as_1d_float("pvals", pvals)
    if np.any((p < 0.0) | (p > 1.0)):
        raise ValueError("p-values must be in [0,1].")
    if method == "median":
        return float(np.median(p))
    if method == "stouffer":
        if p.size == 1:
            return float(p[0])
        res = _scipy_combine_pvalues(np.clip(p, P_CLIP_LOW, P_CLIP_HIGH), method="stouffer")
        return float(min(max(res.pvalue, 0.0), 1.0))
    raise ValueError(f"Unknown combine method '{method}'.")


def coefficient_of_variation(values: np.ndarray) -> float:
    """std / |mean|; 0 when all values agree, inf when the mean is 0 but spread is not."""
    arr = _as_1d_float("values", values)
    sd = float(np.std(arr))
    if sd <= 0.0 or np.allclose(arr, arr[0], rtol=0.0, atol=1e-15):
        return 0.0
    mean = abs(float(np.mean(arr)))
    if mean == 0.0:
        return float("inf")
    return sd / mean


def crossing_fraction(pvals: np.ndarray, alpha: float = 0.05) -> float:
    """2 * min(f, 1 - f) for f = fraction of replicates with p <= alpha."""
    p = np.asarray(pvals, dtype=float).ravel()
    if p.size == 0:
        raise ValueError("pvals must contain at least one value.")
    f = float(np.mean(np.nan_to_num(p, nan=1.0) <= float(alpha)))
    return 2.0 * min(f, 1.0 - f)


def ambiguity_score(
    es_values: np.ndarray,
    pvals: np.ndarray,
    method: str = "cv",
    alpha: float = 0.05,
) -> float:
    """Dispersion of one pathway's enrichment across replicates.

    Replicates that excluded the pathway enter with ES 0 and p 1.
    """
    if method == "cv":
        return coefficient_of_variation(es_values)
    if method == "crossing":
        return crossing_fraction(pvals, alpha=alpha)
    raise ValueError(f"Unknown ambiguity method '{method}'.")
