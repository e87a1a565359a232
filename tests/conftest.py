from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest

F1 = "C5H9NO4+H"
F2 = "C6H12O6+Na"


def make_adata(X: np.ndarray, conditions: list[str], features: list[str]) -> ad.AnnData:
    obs = pd.DataFrame(
        {"condition": conditions},
        index=[f"cell{i}" for i in range(len(conditions))],
    )
    var = pd.DataFrame(index=features)
    return ad.AnnData(X=np.asarray(X, dtype=float), obs=obs, var=var)


def annotation_rows(rows: list[tuple]) -> pd.DataFrame:
    return pd.DataFrame(
        rows,
        columns=["feature", "formula", "adduct", "mz", "molecule_id", "fdr", "database", "polarity"],
    )


@pytest.fixture
def scenario_adata() -> ad.AnnData:
    # F1 higher in y, F2 lower in y; three cells per condition.
    X = np.array(
        [
            [1.0, 5.0],
            [2.0, 6.0],
            [1.5, 5.5],
            [4.0, 2.0],
            [5.0, 1.0],
            [4.5, 1.5],
        ]
    )
    return make_adata(X, ["x", "x", "x", "y", "y", "y"], [F1, F2])


@pytest.fixture
def scenario_annotations() -> pd.DataFrame:
    return annotation_rows(
        [
            (F1, "C5H9NO4", "+H", 148.0604, "metaboliteA", 0.05, "HMDB", "positive"),
            (F2, "C6H12O6", "+Na", 203.0526, "metaboliteB", 0.05, "HMDB", "positive"),
            (F2, "C6H12O6", "+Na", 203.0526, "metaboliteC", 0.05, "HMDB", "positive"),
        ]
    )


@pytest.fixture
def scenario_pathways() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "molecule_id": ["metaboliteA", "metaboliteB", "metaboliteC"],
            "sub_class": ["pathwayP", "pathwayP", "pathwayQ"],
        }
    )


@pytest.fixture
def unambiguous_inputs():
    """Six features, one candidate each, two pathways of three metabolites."""
    rng = np.random.default_rng(3)
    n_per = 6
    features = [f"F{i}+H" for i in range(6)]
    base = rng.uniform(1.0, 2.0, size=(2 * n_per, 6))
    base[n_per:, :3] *= 4.0
    adata = make_adata(base, ["x"] * n_per + ["y"] * n_per, features)
    annotations = annotation_rows(
        [
            (f, f"C{i + 1}H4", "+H", 100.0 + 10.0 * i, f"m{i}", 0.01, "HMDB", "positive")
            for i, f in enumerate(features)
        ]
    )
    pathways = pd.DataFrame(
        {
            "molecule_id": [f"m{i}" for i in range(6)],
            "sub_class": ["up"] * 3 + ["flat"] * 3,
        }
    )
    return adata, annotations, pathways
