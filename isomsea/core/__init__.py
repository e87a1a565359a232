"""Core subpackage: typed containers, universe filtering, identity resolution."""

from isomsea.core.resolver import (
    AnnotationDatabase,
    CandidateTable,
    PathwaySource,
    build_membership,
    draw_resolution,
)
from isomsea.core.types import (
    CandidateIdentity,
    EnrichmentResult,
    MSEARequest,
    RankingTable,
    ReplicateResult,
    Resolution,
)
from isomsea.core.universe import Universe, build_universe

__all__ = [
    "MSEARequest",
    "CandidateIdentity",
    "Resolution",
    "RankingTable",
    "EnrichmentResult",
    "ReplicateResult",
    "Universe",
    "build_universe",
    "AnnotationDatabase",
    "CandidateTable",
    "PathwaySource",
    "draw_resolution",
    "build_membership",
]
