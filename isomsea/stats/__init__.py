"""Statistical utilities for isomsea."""

from isomsea.stats.enrichment import GSEAMethod, fgsea_style, run_enrichment, signed_ks
from isomsea.stats.ranking import (
    RankingMethod,
    collapse_to_metabolites,
    compute_ranking_statistics,
    feature_statistic,
    rank_order,
)
from isomsea.stats.scoring import ambiguity_score, bh_fdr, combine_pvalues

__all__ = [
    "RankingMethod",
    "feature_statistic",
    "compute_ranking_statistics",
    "rank_order",
    "collapse_to_metabolites",
    "GSEAMethod",
    "signed_ks",
    "fgsea_style",
    "run_enrichment",
    "bh_fdr",
    "combine_pvalues",
    "ambiguity_score",
]
