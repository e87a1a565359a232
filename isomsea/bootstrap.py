"""Bootstrap replicates: identity redraws, optional cell resampling, enrichment.

Each replicate reads only the shared, read-only `ReplicateContext` and
returns its own `ReplicateResult`. Seeds come from (base seed, replicate
index, stage), so results do not depend on scheduling or worker count.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Mapping, TypeVar

import numpy as np
from joblib import Parallel, delayed

from isomsea.core.resolver import CandidateTable, build_membership, draw_resolution
from isomsea.core.types import MSEARequest, RankingTable, ReplicateResult
from isomsea.errors import RunCancelledError
from isomsea.seeding import permutation_seed, replicate_seed, rng_from_seed
from isomsea.stats.enrichment import run_enrichment
from isomsea.stats.ranking import collapse_to_metabolites, compute_ranking_statistics

T = TypeVar("T")
R = TypeVar("R")

LOGGER = logging.getLogger("isomsea")


@dataclass(frozen=True)
class ReplicateContext:
    """Read-only inputs shared by every replicate of one run."""

    request: MSEARequest
    candidates: CandidateTable
    term_index: Mapping[str, tuple[str, ...]]
    ranking: RankingTable
    matrix: np.ndarray | None = None
    labels: np.ndarray | None = None
    keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReplicateTask:
    index: int
    seed: int
    context: ReplicateContext


def resample_cells(labels: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Row indices drawn with replacement within each condition label."""
    lab = np.asarray(labels).astype(str)
    out = np.empty(lab.size, dtype=int)
    for value in sorted(set(lab.tolist())):
        idx = np.flatnonzero(lab == value)
        out[idx] = rng.choice(idx, size=idx.size, replace=True)
    return out


def make_tasks(context: ReplicateContext) -> list[ReplicateTask]:
    base = int(context.request.seed)
    return [
        ReplicateTask(index=i, seed=replicate_seed(base, i, "resolve"), context=context)
        for i in range(int(context.request.n_bootstraps))
    ]


def run_replicate(task: ReplicateTask) -> ReplicateResult:
    """Resolve identities, rank metabolites and score pathways for one replicate."""
    ctx = task.context
    req = ctx.request

    resolution = draw_resolution(
        ctx.candidates, rng_from_seed(task.seed), replicate=task.index, seed=task.seed
    )

    ranking = ctx.ranking
    if req.resample_cells:
        if ctx.matrix is None or ctx.labels is None:
            raise ValueError("Cell resampling needs the abundance matrix and labels.")
        rows = resample_cells(
            ctx.labels, rng_from_seed(replicate_seed(req.seed, task.index, "cells"))
        )
        ranking = compute_ranking_statistics(
            ctx.matrix[rows],
            ctx.labels[rows],
            ctx.keys,
            req.condition_x,
            req.condition_y,
            req.ranking_by,
            logger=logging.getLogger("isomsea.replicate"),
        )

    ranked = collapse_to_metabolites(ranking.stats, resolution)
    membership = build_membership(resolution, ctx.term_index, molecules=ranked.index)
    enrichment = run_enrichment(
        ranked,
        membership,
        req.gsea_method,
        min_size=req.min_pathway_size,
        max_size=req.max_pathway_size,
        n_permutations=req.n_permutations,
        seed=permutation_seed(req.seed),
    )
    return ReplicateResult(
        replicate=task.index,
        seed=task.seed,
        results=enrichment.results,
        excluded_small=enrichment.excluded_small,
        excluded_large=enrichment.excluded_large,
        n_ranked=int(ranked.size),
        n_excluded_features=len(ranking.excluded),
    )


def _item_seed(item: Any) -> int | None:
    if isinstance(item, dict):
        seed = item.get("seed")
        return int(seed) if seed is not None else None
    seed = getattr(item, "seed", None)
    return int(seed) if seed is not None else None


def _validate_items_have_seed(items: list[T]) -> None:
    missing = [idx for idx, item in enumerate(items) if _item_seed(item) is None]
    if missing:
        head = ",".join(str(i) for i in missing[:5])
        raise ValueError(
            "parallel_map requires every item to carry a deterministic `seed` "
            f"(missing at indices: {head}{'...' if len(missing) > 5 else ''})."
        )


def _check_cancelled(cancel_event: threading.Event | None, done: int, total: int) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelledError(f"Run cancelled after {done}/{total} replicates.")


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    n_jobs: int = 1,
    backend: str = "loky",
    batch_size: int | None = None,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> list[R]:
    """Apply `func` to items with deterministic, order-stable aggregation.

    Notes:
    - Every item must include a deterministic `seed`.
    - Output order is always aligned to input order, independent of scheduling.
    - `cancel_event` is polled between batches; a set event raises
      `RunCancelledError` and completed results are discarded.
    """
    log = logger or LOGGER
    seq = list(items)
    if not seq:
        return []
    _validate_items_have_seed(seq)
    total = len(seq)

    jobs = int(n_jobs)
    if jobs == 1 or total == 1:
        log.info("[parallel_map] serial execution: n_items=%d", total)
        out: list[R] = []
        for done, item in enumerate(seq):
            _check_cancelled(cancel_event, done, total)
            out.append(func(item))
        _check_cancelled(cancel_event, total, total)
        return out

    step = int(batch_size) if batch_size else max(1, 4 * abs(jobs))
    log.info(
        "[parallel_map] n_items=%d n_jobs=%d backend=%s batch=%d", total, jobs, backend, step
    )
    indexed = list(enumerate(seq))
    rows: list[tuple[int, R]] = []
    with Parallel(n_jobs=jobs, backend=backend) as parallel:
        for start in range(0, total, step):
            _check_cancelled(cancel_event, start, total)
            chunk = indexed[start : start + step]
            rows.extend(parallel(delayed(_call_indexed)(func, pair) for pair in chunk))
    _check_cancelled(cancel_event, total, total)
    rows.sort(key=lambda x: x[0])
    return [row for _, row in rows]


def _call_indexed(func: Callable[[T], R], indexed: tuple[int, T]) -> tuple[int, R]:
    idx, item = indexed
    return idx, func(item)


def run_bootstrap(
    context: ReplicateContext,
    *,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> list[ReplicateResult]:
    """Run all N replicates; returns only once every replicate has completed."""
    req = context.request
    tasks = make_tasks(context)
    return parallel_map(
        run_replicate,
        tasks,
        n_jobs=req.n_jobs,
        backend=req.backend,
        cancel_event=cancel_event,
        logger=logger,
    )
