"""Combine per-replicate enrichment results into one row per pathway."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from isomsea.core.types import EnrichmentResult, MSEARequest, ReplicateResult
from isomsea.stats.scoring import ambiguity_score, bh_fdr, combine_pvalues

STATUS_OK = "ok"
STATUS_UNSUPPORTED = "insufficiently supported"

RESULT_COLUMNS: tuple[str, ...] = (
    "pathway",
    "condition_x",
    "condition_y",
    "es_mean",
    "es_median",
    "nes_median",
    "pvalue",
    "qvalue",
    "set_size",
    "n_replicates",
    "support_fraction",
    "fraction_significant",
    "ambiguity_score",
    "status",
)


def _collect(replicates: Sequence[ReplicateResult]) -> dict[str, dict[int, EnrichmentResult]]:
    by_pathway: dict[str, dict[int, EnrichmentResult]] = {}
    for pos, rep in enumerate(replicates):
        for res in rep.results:
            by_pathway.setdefault(res.pathway, {})[pos] = res
    return by_pathway


def _nanmedian(values: np.ndarray) -> float:
    arr = np.asarray(values, dtype=float)
    arr = arr[np.isfinite(arr)]
    return float(np.median(arr)) if arr.size else float("nan")


def aggregate_replicates(
    replicates: Sequence[ReplicateResult],
    request: MSEARequest,
) -> pd.DataFrame:
    """One row per pathway tested in at least one replicate.

    Replicates that excluded a pathway count as ES 0 / p 1 in the ambiguity
    score and the significant fraction, and are otherwise ignored. Pathways
    tested in fewer than `min_support_fraction` of replicates keep their
    combined p-value but get no q-value.
    """
    n_total = len(replicates)
    if n_total != int(request.n_bootstraps):
        raise ValueError(
            f"Aggregation needs all {request.n_bootstraps} replicates, got {n_total}."
        )
    columns = [c for c in RESULT_COLUMNS if request.report_ambiguity_scores or c != "ambiguity_score"]
    by_pathway = _collect(replicates)
    if not by_pathway:
        return pd.DataFrame(columns=columns)

    rows = []
    for pathway in sorted(by_pathway):
        present = by_pathway[pathway]
        es_full = np.zeros(n_total, dtype=float)
        p_full = np.ones(n_total, dtype=float)
        for pos, res in present.items():
            es_full[pos] = float(res.es)
            p_full[pos] = float(res.pvalue)

        order = sorted(present)
        es = np.asarray([present[i].es for i in order], dtype=float)
        pv = np.asarray([present[i].pvalue for i in order], dtype=float)
        nes = np.asarray([present[i].nes for i in order], dtype=float)
        sizes = np.asarray([present[i].set_size for i in order], dtype=float)

        support = len(order) / float(n_total)
        rows.append(
            {
                "pathway": pathway,
                "condition_x": request.condition_x,
                "condition_y": request.condition_y,
                "es_mean": float(np.mean(es)),
                "es_median": float(np.median(es)),
                "nes_median": _nanmedian(nes),
                "pvalue": combine_pvalues(pv, method=request.combine_method),
                "qvalue": float("nan"),
                "set_size": float(np.median(sizes)),
                "n_replicates": int(len(order)),
                "support_fraction": float(support),
                "fraction_significant": float(np.mean(p_full <= float(request.alpha))),
                "ambiguity_score": ambiguity_score(
                    es_full,
                    p_full,
                    method=request.ambiguity_method,
                    alpha=float(request.alpha),
                ),
                "status": (
                    STATUS_OK
                    if support >= float(request.min_support_fraction)
                    else STATUS_UNSUPPORTED
                ),
            }
        )

    table = pd.DataFrame(rows)
    supported = (table["status"] == STATUS_OK).to_numpy()
    if np.any(supported):
        table.loc[supported, "qvalue"] = bh_fdr(table.loc[supported, "pvalue"].to_numpy(dtype=float))

    table["_ok"] = ~supported
    table = table.sort_values(["_ok", "qvalue", "pvalue", "pathway"], kind="mergesort", na_position="last")
    table = table.drop(columns="_ok").reset_index(drop=True)
    return table[columns]


def replicate_frame(replicates: Sequence[ReplicateResult]) -> pd.DataFrame:
    """Long table of every per-replicate result (reproduces the aggregation)."""
    frames = [rep.to_frame() for rep in replicates]
    if not frames:
        return pd.DataFrame(columns=["replicate", "pathway", "es", "nes", "pvalue", "set_size"])
    return pd.concat(frames, ignore_index=True)


def replicate_summary(replicates: Sequence[ReplicateResult]) -> pd.DataFrame:
    """Per-replicate counts; stands in for the full table when it is suppressed."""
    return pd.DataFrame(
        [
            {
                "replicate": rep.replicate,
                "seed": rep.seed,
                "n_ranked": rep.n_ranked,
                "n_tested": len(rep.results),
                "n_excluded_small": len(rep.excluded_small),
                "n_excluded_large": len(rep.excluded_large),
                "n_excluded_features": rep.n_excluded_features,
            }
            for rep in replicates
        ],
        columns=[
            "replicate",
            "seed",
            "n_ranked",
            "n_tested",
            "n_excluded_small",
            "n_excluded_large",
            "n_excluded_features",
        ],
    )
