"""Small pure helpers for core computations."""

from __future__ import annotations

import numpy as np
import pandas as pd
import scipy.sparse as sp


def dense_matrix(X) -> np.ndarray:
    if sp.issparse(X):
        return np.asarray(X.toarray(), dtype=float)
    return np.asarray(X, dtype=float)


def normalize_label(label) -> str:
    return str(label).strip().lower()


def require_columns(frame: pd.DataFrame, columns, what: str) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise KeyError(f"{what} is missing required column(s): {', '.join(missing)}")
