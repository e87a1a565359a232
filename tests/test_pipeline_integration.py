from __future__ import annotations

import json
import threading
import warnings

import numpy as np
import pandas as pd
import pytest

from isomsea import MSEARequest, run_msea, run_msea_contrasts
from isomsea.aggregate import STATUS_OK, STATUS_UNSUPPORTED
from isomsea.errors import (
    ConfigurationError,
    EmptyUniverseError,
    ResolutionAmbiguityWarning,
    RunCancelledError,
)
from isomsea.pipeline import run as run_module


def _scenario_request(**kwargs) -> MSEARequest:
    base = {
        "condition_x": "x",
        "condition_y": "y",
        "min_pathway_size": 1,
        "n_bootstraps": 10,
        "min_support_fraction": 0.0,
        "seed": 0,
    }
    return MSEARequest(**{**base, **kwargs})


def test_ambiguous_scenario_end_to_end(scenario_adata, scenario_annotations, scenario_pathways):
    with pytest.warns(ResolutionAmbiguityWarning):
        run = run_msea(
            scenario_adata, scenario_annotations, scenario_pathways, _scenario_request(seed=2)
        )
    table = run.results

    assert set(table["pathway"]) == {"pathwayP", "pathwayQ"}
    assert np.all((table["pvalue"] >= 0.0) & (table["pvalue"] <= 1.0))
    assert np.all(table["qvalue"] >= table["pvalue"] - 1e-12)
    assert (table["status"] == STATUS_OK).all()
    for _, row in table.iterrows():
        if 0.0 < row["support_fraction"] < 1.0:
            assert row["ambiguity_score"] > 0.0

    diag = run.diagnostics
    assert diag.n_ambiguous_features == 1
    assert diag.n_cells_x == 3 and diag.n_cells_y == 3
    assert diag.n_excluded_features == 0
    assert set(diag.replicates["replicate"]) <= set(range(10))


def test_rarely_tested_pathway_is_flagged_and_left_out_of_fdr(
    scenario_adata, scenario_annotations, scenario_pathways
):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        run = run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(seed=2, min_support_fraction=0.5),
        )
    table = run.results.set_index("pathway")
    assert set(table.index) == {"pathwayP", "pathwayQ"}

    p_row = table.loc["pathwayP"]
    assert p_row["status"] == STATUS_OK
    assert p_row["support_fraction"] == 1.0
    assert p_row["qvalue"] >= p_row["pvalue"] - 1e-12

    q_row = table.loc["pathwayQ"]
    assert q_row["status"] == STATUS_UNSUPPORTED
    assert 0.0 < q_row["support_fraction"] < 0.5
    assert np.isnan(q_row["qvalue"])
    assert list(table.index) == ["pathwayP", "pathwayQ"]


def test_ambiguous_pathway_appears_with_more_replicates(
    scenario_adata, scenario_annotations, scenario_pathways
):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        run = run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(n_bootstraps=40),
        )
    table = run.results.set_index("pathway")
    assert set(table.index) == {"pathwayP", "pathwayQ"}
    q_row = table.loc["pathwayQ"]
    assert 0.0 < q_row["support_fraction"] < 1.0
    assert q_row["ambiguity_score"] > 0.0
    assert q_row["es_median"] < 0.0


def test_no_isomers_means_no_ambiguity(scenario_adata, scenario_annotations, scenario_pathways):
    with warnings.catch_warnings():
        warnings.simplefilter("error", ResolutionAmbiguityWarning)
        run = run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(consider_isomers=False, consider_isobars=False),
        )
    table = run.results
    assert list(table["pathway"]) == ["pathwayP"]
    assert (table["ambiguity_score"] == 0.0).all()
    assert run.diagnostics.n_ambiguous_features == 0


def test_results_do_not_depend_on_worker_count(
    scenario_adata, scenario_annotations, scenario_pathways
):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        serial = run_msea(
            scenario_adata, scenario_annotations, scenario_pathways, _scenario_request(seed=13)
        )
        threaded = run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(seed=13, n_jobs=2, backend="threading"),
        )
    pd.testing.assert_frame_equal(serial.results, threaded.results)
    pd.testing.assert_frame_equal(serial.diagnostics.replicates, threaded.diagnostics.replicates)


def test_unambiguous_results_stable_across_bootstrap_counts(unambiguous_inputs):
    adata, annotations, pathways = unambiguous_inputs
    runs = [
        run_msea(
            adata,
            annotations,
            pathways,
            MSEARequest(
                condition_x="x",
                condition_y="y",
                gsea_method="fgsea-style",
                n_permutations=200,
                n_bootstraps=n,
                seed=2,
            ),
        )
        for n in (3, 12)
    ]
    a, b = (r.results.set_index("pathway").sort_index() for r in runs)
    assert list(a.index) == ["flat", "up"]
    np.testing.assert_allclose(a["pvalue"], b["pvalue"])
    np.testing.assert_allclose(a["qvalue"], b["qvalue"])
    assert (a["ambiguity_score"] == 0.0).all()
    assert a.loc["up", "es_median"] > 0.0


def test_cell_resampling_runs_and_is_reproducible(unambiguous_inputs):
    adata, annotations, pathways = unambiguous_inputs
    req = MSEARequest(
        condition_x="x", condition_y="y", n_bootstraps=5, resample_cells=True, seed=4
    )
    first = run_msea(adata, annotations, pathways, req)
    second = run_msea(adata, annotations, pathways, req)
    pd.testing.assert_frame_equal(first.results, second.results)
    assert set(first.results["pathway"]) == {"flat", "up"}


def test_configuration_errors_raise_before_any_work(
    monkeypatch, scenario_adata, scenario_annotations, scenario_pathways
):
    def _fail(*_args, **_kwargs):
        raise AssertionError("universe should not be built")

    monkeypatch.setattr(run_module, "build_universe", _fail)
    with pytest.raises(ConfigurationError, match="n_bootstraps"):
        run_msea(
            scenario_adata, scenario_annotations, scenario_pathways, _scenario_request(n_bootstraps=0)
        )
    with pytest.raises(ConfigurationError, match="background_type"):
        run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(background_type="class"),
        )


def test_empty_universe_raises(scenario_adata, scenario_annotations, scenario_pathways):
    with pytest.raises(EmptyUniverseError):
        run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(polarization_mode="negative"),
        )


def test_cancelled_run_returns_nothing(scenario_adata, scenario_annotations, scenario_pathways):
    event = threading.Event()
    event.set()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        with pytest.raises(RunCancelledError):
            run_msea(
                scenario_adata,
                scenario_annotations,
                scenario_pathways,
                _scenario_request(),
                cancel_event=event,
            )


def test_contrasts_are_concatenated(scenario_adata, scenario_annotations, scenario_pathways):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        combined, runs = run_msea_contrasts(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(),
            [("x", "y"), ("y", "x")],
        )
    assert set(runs) == {("x", "y"), ("y", "x")}
    assert set(combined["condition_x"]) == {"x", "y"}
    assert int(combined.shape[0]) == sum(int(r.results.shape[0]) for r in runs.values())
    with pytest.raises(ValueError, match="at least one"):
        run_msea_contrasts(
            scenario_adata, scenario_annotations, scenario_pathways, _scenario_request(), []
        )


def test_run_writes_results_and_diagnostics(
    tmp_path, scenario_adata, scenario_annotations, scenario_pathways
):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ResolutionAmbiguityWarning)
        run = run_msea(
            scenario_adata,
            scenario_annotations,
            scenario_pathways,
            _scenario_request(keep_replicate_results=False, report_ambiguity_scores=False),
        )
    assert "ambiguity_score" not in run.results.columns
    paths = run.write(tmp_path)
    assert paths["results"] == tmp_path / "y_vs_x" / "results.csv"
    assert paths["replicates"].name == "replicate_summary.csv"
    payload = json.loads(paths["diagnostics"].read_text(encoding="utf-8"))
    assert payload["n_bootstraps"] == 10
    assert payload["request"]["seed"] == 0
    assert payload["replicate_detail"] is False
    summary = pd.read_csv(paths["replicates"])
    assert int(summary.shape[0]) == 10
