"""Background universe construction from a feature-by-cell AnnData."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from isomsea.core.types import MSEARequest
from isomsea.core.utils import dense_matrix, normalize_label, require_columns
from isomsea.errors import EmptyUniverseError

ANNOTATION_COLUMNS: tuple[str, ...] = ("feature", "formula", "adduct", "mz", "molecule_id", "fdr")

LOGGER = logging.getLogger("isomsea")


@dataclass(frozen=True)
class Universe:
    """Filtered view of the measured data for one condition pair.

    - `adata`: cells of both conditions x retained features.
    - `labels`: condition label per retained cell.
    - `annotations`: confidence-filtered annotation rows of retained features.
    - `database_table`: confident rows of the whole database (isobar search space).
    """

    adata: object
    labels: np.ndarray
    annotations: pd.DataFrame
    database_table: pd.DataFrame
    condition_x: str
    condition_y: str

    @property
    def feature_keys(self) -> list[str]:
        return [str(k) for k in self.adata.var_names]

    @property
    def n_features(self) -> int:
        return int(self.adata.n_vars)

    def matrix(self) -> np.ndarray:
        return dense_matrix(self.adata.X)


def filter_annotations(annotations: pd.DataFrame, request: MSEARequest) -> pd.DataFrame:
    """Keep rows of the requested database and polarization mode."""
    require_columns(annotations, ANNOTATION_COLUMNS, "Annotation table")
    table = annotations.copy()
    table["feature"] = table["feature"].astype(str)
    table["molecule_id"] = table["molecule_id"].astype(str)
    table["mz"] = pd.to_numeric(table["mz"], errors="coerce")
    table["fdr"] = pd.to_numeric(table["fdr"], errors="coerce")
    table = table[np.isfinite(table["mz"]) & np.isfinite(table["fdr"])]

    if request.database is not None:
        if "database" not in table.columns:
            raise KeyError("Annotation table has no 'database' column to filter on.")
        keep = table["database"].map(normalize_label) == normalize_label(request.database)
        table = table[keep]
    if request.polarization_mode is not None:
        if "polarity" not in table.columns:
            raise KeyError("Annotation table has no 'polarity' column to filter on.")
        keep = table["polarity"].map(normalize_label) == normalize_label(request.polarization_mode)
        table = table[keep]
    return table.reset_index(drop=True)


def build_universe(
    adata,
    annotations: pd.DataFrame,
    request: MSEARequest,
    *,
    logger: logging.Logger | None = None,
) -> Universe:
    """Filter cells and features down to the enrichment background."""
    log = logger or LOGGER
    if request.condition_col not in adata.obs.columns:
        raise KeyError(f"adata.obs['{request.condition_col}'] not found.")

    labels_all = adata.obs[request.condition_col].astype(str).to_numpy()
    cell_mask = np.isin(labels_all, [request.condition_x, request.condition_y])

    db_table = filter_annotations(annotations, request)
    confident = db_table[db_table["fdr"] <= float(request.fdr_threshold)]
    annotated = set(confident["feature"])

    var_names = pd.Index(adata.var_names.astype(str))
    feature_mask = var_names.isin(list(annotated))
    if request.polarization_mode is not None and "polarity" in adata.var.columns:
        var_pol = adata.var["polarity"].map(normalize_label).to_numpy()
        feature_mask &= var_pol == normalize_label(request.polarization_mode)

    if np.any(cell_mask) and np.any(feature_mask):
        X = dense_matrix(adata.X[np.flatnonzero(cell_mask)][:, np.flatnonzero(feature_mask)])
        observed = np.any(np.isfinite(X) & (X != 0.0), axis=0)
        feature_idx = np.flatnonzero(feature_mask)[observed]
    else:
        feature_idx = np.zeros(0, dtype=int)

    log.info(
        "Universe: cells=%d/%d features=%d/%d (annotated=%d, fdr<=%s)",
        int(cell_mask.sum()),
        int(cell_mask.size),
        int(feature_idx.size),
        int(var_names.size),
        len(annotated),
        request.fdr_threshold,
    )
    if feature_idx.size == 0:
        raise EmptyUniverseError(
            "No features passed universe filtering "
            f"(conditions={request.condition_x!r}/{request.condition_y!r}, "
            f"database={request.database!r}, polarization={request.polarization_mode!r}, "
            f"fdr<={request.fdr_threshold})."
        )

    sub = adata[np.flatnonzero(cell_mask), feature_idx].copy()
    keys = set(sub.var_names.astype(str))
    return Universe(
        adata=sub,
        labels=labels_all[cell_mask],
        annotations=confident[confident["feature"].isin(keys)].reset_index(drop=True),
        database_table=confident.reset_index(drop=True),
        condition_x=request.condition_x,
        condition_y=request.condition_y,
    )
