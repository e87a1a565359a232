"""Isomer/isobar candidate enumeration and per-replicate identity resolution.

The annotation database and pathway source are built once per session and
never mutated. Each replicate draws one candidate per feature from its own
random stream and rebuilds pathway membership from scratch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping

import numpy as np
import pandas as pd

from isomsea.core.types import CandidateIdentity, Resolution
from isomsea.core.utils import require_columns
from isomsea.errors import ConfigurationError

MIN_CONFIDENCE_WEIGHT = 1e-3


@dataclass(frozen=True)
class _IonEntry:
    feature: str
    formula: str
    adduct: str
    mz: float
    fdr: float
    molecules: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class AnnotationDatabase:
    """Read-only index of annotated ions keyed by formula-adduct and m/z."""

    entries: Mapping[str, _IonEntry]
    sorted_keys: tuple[str, ...]
    sorted_mz: np.ndarray

    @staticmethod
    def from_table(table: pd.DataFrame) -> "AnnotationDatabase":
        require_columns(
            table, ("feature", "formula", "adduct", "mz", "molecule_id", "fdr"), "Annotation table"
        )
        has_name = "molecule_name" in table.columns
        entries: dict[str, _IonEntry] = {}
        for key, grp in table.groupby("feature", sort=True):
            grp = grp.sort_values(["fdr", "molecule_id"], kind="mergesort")
            molecules: list[tuple[str, str]] = []
            seen: set[str] = set()
            for _, row in grp.iterrows():
                mol = str(row["molecule_id"])
                if mol in seen:
                    continue
                seen.add(mol)
                name = str(row["molecule_name"]) if has_name and pd.notna(row["molecule_name"]) else ""
                molecules.append((mol, name))
            first = grp.iloc[0]
            entries[str(key)] = _IonEntry(
                feature=str(key),
                formula=str(first["formula"]),
                adduct=str(first["adduct"]),
                mz=float(first["mz"]),
                fdr=float(grp["fdr"].min()),
                molecules=tuple(molecules),
            )
        order = sorted(entries, key=lambda k: (entries[k].mz, k))
        return AnnotationDatabase(
            entries=entries,
            sorted_keys=tuple(order),
            sorted_mz=np.asarray([entries[k].mz for k in order], dtype=float),
        )

    def __contains__(self, key: str) -> bool:
        return str(key) in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def ions_within(self, mz: float, tolerance_ppm: float) -> list[str]:
        """Feature keys whose ion m/z lies within `tolerance_ppm` of `mz`."""
        tol = abs(float(mz)) * float(tolerance_ppm) * 1e-6
        lo = int(np.searchsorted(self.sorted_mz, float(mz) - tol, side="left"))
        hi = int(np.searchsorted(self.sorted_mz, float(mz) + tol, side="right"))
        return list(self.sorted_keys[lo:hi])

    def _ion_candidates(self, entry: _IonEntry, relation: str) -> list[CandidateIdentity]:
        return [
            CandidateIdentity(
                molecule_id=mol,
                formula=entry.formula,
                adduct=entry.adduct,
                mz=entry.mz,
                fdr=entry.fdr,
                source_feature=entry.feature,
                relation=relation,
                molecule_name=name,
            )
            for mol, name in entry.molecules
        ]

    def candidates_for(
        self,
        key: str,
        *,
        consider_isomers: bool = True,
        consider_isobars: bool = True,
        tolerance_ppm: float = 3.0,
    ) -> tuple[CandidateIdentity, ...]:
        """Enumerate candidate identities for one feature key.

        Own-formula candidates come first, then isobaric ions ordered by
        (fdr, formula, key); within an ion, by (fdr, molecule_id).
        """
        key = str(key)
        if key not in self.entries:
            raise KeyError(f"Feature '{key}' is not in the annotation database.")
        own = self.entries[key]

        ions = [own]
        for other in self.ions_within(own.mz, tolerance_ppm):
            if other == key:
                continue
            entry = self.entries[other]
            if entry.formula == own.formula:
                continue
            ions.append(entry)
        ions = [own] + sorted(ions[1:], key=lambda e: (e.fdr, e.formula, e.feature))

        if not consider_isobars and len(ions) > 1:
            best = min(ions, key=lambda e: (e.fdr, e is not own, e.formula, e.feature))
            ions = [best]

        out: list[CandidateIdentity] = []
        seen: set[str] = set()
        for entry in ions:
            relation = "self" if entry is own else "isobar"
            group = self._ion_candidates(entry, relation)
            # molecules are stored best-first by (fdr, molecule_id)
            if not consider_isomers and group:
                group = group[:1]
            elif len(group) > 1 and relation == "self":
                group = [replace(c, relation="isomer") for c in group]
            for cand in group:
                if cand.molecule_id in seen:
                    continue
                seen.add(cand.molecule_id)
                out.append(cand)
        return tuple(out)


def _prior_weight(candidate: CandidateIdentity, prior: str) -> float:
    if prior == "uniform":
        return 1.0
    if prior == "confidence":
        return max(1.0 - float(candidate.fdr), MIN_CONFIDENCE_WEIGHT)
    raise ConfigurationError(f"Unknown prior '{prior}'.")


@dataclass(frozen=True)
class CandidateTable:
    """Candidate identities (with prior weights) for every universe feature."""

    candidates: Mapping[str, tuple[CandidateIdentity, ...]]
    features: tuple[str, ...]

    @staticmethod
    def build(
        database: AnnotationDatabase,
        features: Iterable[str],
        *,
        consider_isomers: bool = True,
        consider_isobars: bool = True,
        tolerance_ppm: float = 3.0,
        prior: str = "uniform",
    ) -> "CandidateTable":
        out: dict[str, tuple[CandidateIdentity, ...]] = {}
        for key in sorted(str(f) for f in features):
            cands = database.candidates_for(
                key,
                consider_isomers=consider_isomers,
                consider_isobars=consider_isobars,
                tolerance_ppm=tolerance_ppm,
            )
            if not cands:
                continue
            out[key] = tuple(replace(c, weight=_prior_weight(c, prior)) for c in cands)
        return CandidateTable(candidates=out, features=tuple(sorted(out)))

    def __len__(self) -> int:
        return len(self.features)

    def ambiguous_features(self) -> list[str]:
        return [k for k in self.features if len(self.candidates[k]) > 1]

    def n_candidates(self) -> pd.Series:
        return pd.Series(
            {k: len(self.candidates[k]) for k in self.features}, name="n_candidates", dtype=int
        )

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "feature": key,
                "molecule_id": c.molecule_id,
                "molecule_name": c.molecule_name,
                "formula": c.formula,
                "adduct": c.adduct,
                "relation": c.relation,
                "fdr": c.fdr,
                "weight": c.weight,
            }
            for key in self.features
            for c in self.candidates[key]
        ]
        return pd.DataFrame(rows)


def first_resolution(table: CandidateTable) -> Resolution:
    """Resolution that always takes the first (best-ranked) candidate."""
    return Resolution(
        replicate=-1,
        seed=-1,
        assignment={k: table.candidates[k][0] for k in table.features},
    )


def draw_resolution(
    table: CandidateTable,
    rng: np.random.Generator,
    *,
    replicate: int = 0,
    seed: int = 0,
) -> Resolution:
    """Draw one candidate per feature according to the prior weights.

    Features are visited in key order and unambiguous features consume no
    random draws, so a draw depends only on the generator state.
    """
    assignment: dict[str, CandidateIdentity] = {}
    for key in table.features:
        cands = table.candidates[key]
        if len(cands) == 1:
            assignment[key] = cands[0]
            continue
        w = np.asarray([c.weight for c in cands], dtype=float)
        idx = int(rng.choice(len(cands), p=w / w.sum()))
        assignment[key] = cands[idx]
    return Resolution(replicate=int(replicate), seed=int(seed), assignment=assignment)


@dataclass(frozen=True)
class PathwaySource:
    """Read-only molecule -> grouping lookup (e.g. sub_class, class)."""

    table: pd.DataFrame
    id_col: str = "molecule_id"

    @staticmethod
    def from_table(table: pd.DataFrame, id_col: str = "molecule_id") -> "PathwaySource":
        require_columns(table, (id_col,), "Pathway table")
        frame = table.copy()
        frame[id_col] = frame[id_col].astype(str)
        return PathwaySource(table=frame.reset_index(drop=True), id_col=id_col)

    @property
    def background_types(self) -> list[str]:
        return [c for c in self.table.columns if c != self.id_col]

    def term_index(self, background_type: str) -> dict[str, tuple[str, ...]]:
        """Molecule id -> sorted tuple of terms for one grouping column."""
        if background_type not in self.table.columns or background_type == self.id_col:
            raise ConfigurationError(
                f"background_type '{background_type}' not in pathway table "
                f"(available: {', '.join(self.background_types)})."
            )
        sub = self.table[[self.id_col, background_type]].dropna()
        sub = sub[sub[background_type].astype(str).str.strip() != ""]
        index: dict[str, set[str]] = {}
        for mol, term in zip(sub[self.id_col], sub[background_type].astype(str)):
            index.setdefault(str(mol), set()).add(term.strip())
        return {mol: tuple(sorted(terms)) for mol, terms in index.items()}


def build_membership(
    resolution: Resolution,
    term_index: Mapping[str, tuple[str, ...]],
    *,
    molecules: Iterable[str] | None = None,
) -> dict[str, frozenset[str]]:
    """Pathway -> resolved metabolite IDs mapped to at least one feature.

    `molecules` restricts membership to metabolites present in the ranking.
    """
    allowed = None if molecules is None else set(molecules)
    members: dict[str, set[str]] = {}
    for cand in resolution.assignment.values():
        mol = cand.molecule_id
        if allowed is not None and mol not in allowed:
            continue
        for term in term_index.get(mol, ()):
            members.setdefault(term, set()).add(mol)
    return {term: frozenset(mols) for term, mols in sorted(members.items())}
