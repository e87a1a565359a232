"""Command-line interface for isomsea runs."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

import scanpy as sc

from isomsea.config import load_request
from isomsea.core.resolver import AnnotationDatabase, CandidateTable
from isomsea.core.universe import build_universe
from isomsea.pipeline.io import read_table, setup_logger, write_frame
from isomsea.pipeline.run import run_msea_contrasts


def _read_adata(h5ad_path: str):
    path = Path(h5ad_path)
    if not path.exists():
        raise FileNotFoundError(f"Input file '{h5ad_path}' not found.")
    return sc.read_h5ad(path)


def _parse_contrast(text: str) -> tuple[str, str]:
    parts = str(text).split(":")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise argparse.ArgumentTypeError(f"Contrast must look like 'x:y', got '{text}'.")
    return parts[0].strip(), parts[1].strip()


def _common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--h5ad", required=True, help="Feature-by-cell .h5ad (obs=cells, var=features)")
    parser.add_argument("--annotations", required=True, help="Annotation table (.csv/.tsv)")
    parser.add_argument("--config", required=True, help="JSON run config")
    parser.add_argument("--outdir", default="isomsea_out", help="Output directory")
    parser.add_argument("--seed", type=int, default=None, help="Override the config seed")
    parser.add_argument("--n-jobs", type=int, default=None, help="Override the worker count")


def run_main(argv: Iterable[str] | None = None) -> int:
    """Run MSEA for one or more condition pairs.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="isomsea enrichment run")
    _common_args(parser)
    parser.add_argument("--pathways", required=True, help="Pathway table (.csv/.tsv)")
    parser.add_argument(
        "--contrast",
        action="append",
        type=_parse_contrast,
        default=None,
        help="Condition pair 'x:y' (repeatable; defaults to the config's condition.x/condition.y)",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "isomsea.log", "isomsea")
    request = load_request(args.config, seed=args.seed, n_jobs=args.n_jobs)
    contrasts = args.contrast or [(request.condition_x, request.condition_y)]

    adata = _read_adata(args.h5ad)
    annotations = read_table(args.annotations)
    pathways = read_table(args.pathways)

    combined, runs = run_msea_contrasts(
        adata, annotations, pathways, request, contrasts, logger=logger
    )
    for run in runs.values():
        run.write(outdir)
    out_csv = write_frame(combined, outdir / "results_all_contrasts.csv")
    logger.info("Wrote %d row(s) to %s", int(combined.shape[0]), out_csv.as_posix())
    return 0


def candidates_main(argv: Iterable[str] | None = None) -> int:
    """Write the candidate-identity table of the filtered universe.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="isomsea candidate identities")
    _common_args(parser)
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "isomsea_candidates.log", "isomsea")
    request = load_request(args.config, seed=args.seed, n_jobs=args.n_jobs)
    universe = build_universe(
        _read_adata(args.h5ad), read_table(args.annotations), request, logger=logger
    )
    table = CandidateTable.build(
        AnnotationDatabase.from_table(universe.database_table),
        universe.feature_keys,
        consider_isomers=request.consider_isomers,
        consider_isobars=request.consider_isobars,
        tolerance_ppm=request.mass_tolerance_ppm,
        prior=request.prior,
    )
    out_csv = write_frame(table.to_frame(), outdir / "candidates.csv")
    logger.info(
        "Candidates: %d feature(s), %d ambiguous -> %s",
        len(table),
        len(table.ambiguous_features()),
        out_csv.as_posix(),
    )
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="isomsea CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run bootstrap MSEA")
    sub.add_parser("candidates", help="Dump candidate identities per feature")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "run":
        return run_main(remainder)
    if args.command == "candidates":
        return candidates_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
