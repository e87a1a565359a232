from __future__ import annotations

import numpy as np
import pytest
from scipy import sparse

from conftest import annotation_rows, make_adata
from isomsea.core.types import MSEARequest
from isomsea.core.universe import build_universe, filter_annotations
from isomsea.errors import EmptyUniverseError

FEATURES = ["Fa+H", "Fb+H", "Fc-H", "Fd+H", "Fe+H"]


def _inputs():
    X = np.array(
        [
            [1.0, 2.0, 3.0, 0.0, 1.0],
            [2.0, 1.0, 3.0, 0.0, 1.0],
            [3.0, 2.0, 1.0, 0.0, 1.0],
            [1.0, 3.0, 2.0, 0.0, 1.0],
            [9.0, 9.0, 9.0, 7.0, 9.0],
        ]
    )
    adata = make_adata(X, ["x", "x", "y", "y", "z"], FEATURES)
    annotations = annotation_rows(
        [
            ("Fa+H", "Ca", "+H", 100.0, "ma", 0.05, "HMDB", "positive"),
            ("Fb+H", "Cb", "+H", 110.0, "mb", 0.50, "HMDB", "positive"),
            ("Fc-H", "Cc", "-H", 120.0, "mc", 0.05, "HMDB", "negative"),
            ("Fd+H", "Cd", "+H", 130.0, "md", 0.05, "HMDB", "positive"),
            ("Fe+H", "Ce", "+H", 140.0, "me", 0.05, "LipidMaps", "positive"),
        ]
    )
    return adata, annotations


def _request(**kwargs) -> MSEARequest:
    return MSEARequest(condition_x="x", condition_y="y", **kwargs).validate()


def test_universe_applies_cell_fdr_and_observation_filters():
    adata, annotations = _inputs()
    uni = build_universe(adata, annotations, _request())
    # Fb fails fdr, Fd is never observed in x or y cells.
    assert uni.feature_keys == ["Fa+H", "Fc-H", "Fe+H"]
    assert uni.labels.tolist() == ["x", "x", "y", "y"]
    assert uni.matrix().shape == (4, 3)
    assert set(uni.annotations["feature"]) == {"Fa+H", "Fc-H", "Fe+H"}
    assert "Fd+H" in set(uni.database_table["feature"])
    assert "Fb+H" not in set(uni.database_table["feature"])


def test_universe_database_and_polarity_filters():
    adata, annotations = _inputs()
    uni = build_universe(adata, annotations, _request(database="hmdb", polarization_mode="positive"))
    assert uni.feature_keys == ["Fa+H"]


def test_universe_accepts_sparse_matrix():
    adata, annotations = _inputs()
    adata.X = sparse.csr_matrix(adata.X)
    uni = build_universe(adata, annotations, _request())
    assert isinstance(uni.matrix(), np.ndarray)
    assert uni.n_features == 3


def test_empty_universe_raises():
    adata, annotations = _inputs()
    with pytest.raises(EmptyUniverseError, match="No features"):
        build_universe(adata, annotations, _request(database="KEGG"))


def test_unknown_conditions_give_empty_universe():
    adata, annotations = _inputs()
    req = MSEARequest(condition_x="a", condition_y="b").validate()
    with pytest.raises(EmptyUniverseError):
        build_universe(adata, annotations, req)


def test_missing_condition_column_raises():
    adata, annotations = _inputs()
    with pytest.raises(KeyError, match="group"):
        build_universe(adata, annotations, _request(condition_col="group"))


def test_filter_annotations_requires_columns_and_drops_bad_numbers():
    _, annotations = _inputs()
    annotations.loc[0, "mz"] = np.nan
    table = filter_annotations(annotations, _request())
    assert "Fa+H" not in set(table["feature"])
    with pytest.raises(KeyError):
        filter_annotations(annotations.drop(columns=["fdr"]), _request())
