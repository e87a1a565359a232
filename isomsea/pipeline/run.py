"""End-to-end enrichment runs for one or several condition pairs."""

from __future__ import annotations

import logging
import threading
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from isomsea.aggregate import aggregate_replicates, replicate_frame, replicate_summary
from isomsea.bootstrap import ReplicateContext, run_bootstrap
from isomsea.core.resolver import AnnotationDatabase, CandidateTable, PathwaySource
from isomsea.core.types import MSEARequest, ReplicateResult
from isomsea.core.universe import build_universe, filter_annotations
from isomsea.errors import ResolutionAmbiguityWarning
from isomsea.pipeline.io import write_frame, write_json
from isomsea.stats.ranking import compute_ranking_statistics

LOGGER = logging.getLogger("isomsea")


@dataclass(frozen=True)
class RunDiagnostics:
    """Everything needed to audit or reproduce one run's aggregation."""

    condition_x: str
    condition_y: str
    seed: int
    n_bootstraps: int
    n_cells_x: int
    n_cells_y: int
    n_universe_features: int
    n_candidate_features: int
    n_ambiguous_features: int
    excluded_features: tuple[str, ...]
    excluded_small_counts: dict[str, int]
    replicates: pd.DataFrame
    replicate_detail: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_excluded_features(self) -> int:
        return len(self.excluded_features)

    def to_json(self) -> dict[str, Any]:
        return {
            "condition_x": self.condition_x,
            "condition_y": self.condition_y,
            "seed": int(self.seed),
            "n_bootstraps": int(self.n_bootstraps),
            "n_cells_x": int(self.n_cells_x),
            "n_cells_y": int(self.n_cells_y),
            "n_universe_features": int(self.n_universe_features),
            "n_candidate_features": int(self.n_candidate_features),
            "n_ambiguous_features": int(self.n_ambiguous_features),
            "n_excluded_features": int(self.n_excluded_features),
            "excluded_features": list(self.excluded_features),
            "excluded_small_counts": dict(self.excluded_small_counts),
            "replicate_detail": bool(self.replicate_detail),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class MSEARun:
    """Final result table plus diagnostics for one condition pair."""

    results: pd.DataFrame
    diagnostics: RunDiagnostics
    request: MSEARequest

    def write(self, outdir: str | Path) -> dict[str, Path]:
        out = Path(outdir)
        tag = f"{self.request.condition_y}_vs_{self.request.condition_x}"
        rep_name = "replicates.csv" if self.diagnostics.replicate_detail else "replicate_summary.csv"
        paths = {
            "results": write_frame(self.results, out / tag / "results.csv"),
            "replicates": write_frame(self.diagnostics.replicates, out / tag / rep_name),
        }
        diag_path = out / tag / "diagnostics.json"
        write_json(diag_path, {**self.diagnostics.to_json(), "request": self.request.to_dict()})
        paths["diagnostics"] = diag_path
        return paths


def _excluded_small_counts(replicates: list[ReplicateResult]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for rep in replicates:
        for pathway in rep.excluded_small:
            counts[pathway] = counts.get(pathway, 0) + 1
    return dict(sorted(counts.items()))


def _as_pathway_source(pathways) -> PathwaySource:
    if isinstance(pathways, PathwaySource):
        return pathways
    return PathwaySource.from_table(pathways)


def run_msea(
    adata,
    annotations: pd.DataFrame,
    pathways,
    request: MSEARequest,
    *,
    database: AnnotationDatabase | None = None,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> MSEARun:
    """Bootstrap-resampled, ambiguity-aware MSEA for one condition pair.

    Configuration problems raise before any computation; an empty universe
    raises `EmptyUniverseError`; cancellation raises `RunCancelledError`.
    None of these produce a partial result.
    """
    log = logger or LOGGER
    req = request.validate()
    term_index = _as_pathway_source(pathways).term_index(req.background_type)

    log.info(
        "MSEA run: %s vs %s ranking=%s method=%s n_bootstraps=%d seed=%d",
        req.condition_y,
        req.condition_x,
        req.ranking_by,
        req.gsea_method,
        req.n_bootstraps,
        req.seed,
    )
    universe = build_universe(adata, annotations, req, logger=log)
    db = database if database is not None else AnnotationDatabase.from_table(universe.database_table)
    candidates = CandidateTable.build(
        db,
        universe.feature_keys,
        consider_isomers=req.consider_isomers,
        consider_isobars=req.consider_isobars,
        tolerance_ppm=req.mass_tolerance_ppm,
        prior=req.prior,
    )
    ambiguous = candidates.ambiguous_features()
    if ambiguous:
        warnings.warn(
            f"{len(ambiguous)} of {len(candidates)} features have more than one candidate identity.",
            ResolutionAmbiguityWarning,
            stacklevel=2,
        )
        log.info("Ambiguous features: %d/%d", len(ambiguous), len(candidates))

    keys = universe.feature_keys
    matrix = universe.matrix()
    ranking = compute_ranking_statistics(
        matrix,
        universe.labels,
        keys,
        req.condition_x,
        req.condition_y,
        req.ranking_by,
        logger=log,
    )
    if ranking.n_ranked == 0:
        log.warning("No feature could be ranked; every pathway will be excluded.")

    context = ReplicateContext(
        request=req,
        candidates=candidates,
        term_index=term_index,
        ranking=ranking,
        matrix=matrix if req.resample_cells else None,
        labels=universe.labels if req.resample_cells else None,
        keys=tuple(keys),
    )
    replicates = run_bootstrap(context, cancel_event=cancel_event, logger=log)
    table = aggregate_replicates(replicates, req)

    diagnostics = RunDiagnostics(
        condition_x=req.condition_x,
        condition_y=req.condition_y,
        seed=req.seed,
        n_bootstraps=req.n_bootstraps,
        n_cells_x=int(ranking.metadata.get("n_x", 0)),
        n_cells_y=int(ranking.metadata.get("n_y", 0)),
        n_universe_features=universe.n_features,
        n_candidate_features=len(candidates),
        n_ambiguous_features=len(ambiguous),
        excluded_features=ranking.excluded,
        excluded_small_counts=_excluded_small_counts(replicates),
        replicates=(
            replicate_frame(replicates)
            if req.keep_replicate_results
            else replicate_summary(replicates)
        ),
        replicate_detail=bool(req.keep_replicate_results),
        metadata={"n_ranked": ranking.n_ranked, "ranking_by": req.ranking_by},
    )
    log.info(
        "MSEA run complete: %d pathway row(s), %d excluded feature(s)",
        int(table.shape[0]),
        diagnostics.n_excluded_features,
    )
    return MSEARun(results=table, diagnostics=diagnostics, request=req)


def run_msea_contrasts(
    adata,
    annotations: pd.DataFrame,
    pathways,
    request: MSEARequest,
    contrasts: Iterable[tuple[str, str]],
    *,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> tuple[pd.DataFrame, dict[tuple[str, str], MSEARun]]:
    """Independent runs for several (condition_x, condition_y) pairs.

    The annotation database and pathway source are built once and shared
    read-only; results are concatenated into one multi-condition table.
    """
    pairs = [(str(x), str(y)) for x, y in contrasts]
    if not pairs:
        raise ValueError("contrasts must contain at least one condition pair.")
    source = _as_pathway_source(pathways)
    requests = [request.with_conditions(x, y).validate() for x, y in pairs]
    source.term_index(requests[0].background_type)

    database: AnnotationDatabase | None = None
    runs: dict[tuple[str, str], MSEARun] = {}
    for pair, req in zip(pairs, requests):
        if database is None:
            table = filter_annotations(annotations, req)
            database = AnnotationDatabase.from_table(table[table["fdr"] <= req.fdr_threshold])
        runs[pair] = run_msea(
            adata,
            annotations,
            source,
            req,
            database=database,
            cancel_event=cancel_event,
            logger=logger,
        )
    frames = [run.results for run in runs.values() if not run.results.empty]
    combined = pd.concat(frames, ignore_index=True) if frames else next(iter(runs.values())).results
    return combined, runs
