import numpy as np
import pytest

from isomsea.stats.scoring import (
    ambiguity_score,
    bh_fdr,
    coefficient_of_variation,
    combine_pvalues,
    crossing_fraction,
)


def test_bh_fdr_basic():
    pvals = np.array([0.01, 0.02, 0.10, 0.20], dtype=float)
    qvals = bh_fdr(pvals)
    assert qvals.shape == pvals.shape
    assert np.all((qvals >= 0.0) & (qvals <= 1.0))
    assert np.all(qvals >= pvals)
    assert np.allclose(qvals, [0.04, 0.04, 0.4 / 3.0, 0.2])


def test_bh_fdr_keeps_nan_slots():
    qvals = bh_fdr(np.array([0.01, np.nan, 0.03]))
    assert np.isnan(qvals[1])
    assert np.allclose(qvals[[0, 2]], [0.02, 0.03])


def test_bh_fdr_rejects_out_of_range():
    with pytest.raises(ValueError, match=r"\[0,1\]"):
        bh_fdr(np.array([0.5, 1.5]))


def test_combine_pvalues_methods():
    p = np.array([0.01, 0.02, 0.5])
    assert combine_pvalues(p) == pytest.approx(0.02)
    stouffer = combine_pvalues(p, method="stouffer")
    assert 0.0 <= stouffer < 0.02
    assert combine_pvalues(np.array([0.3]), method="stouffer") == pytest.approx(0.3)
    # extreme values are clipped rather than producing infinities
    assert np.isfinite(combine_pvalues(np.array([0.0, 1.0]), method="stouffer"))
    with pytest.raises(ValueError, match="Unknown combine"):
        combine_pvalues(p, method="fisher")


def test_coefficient_of_variation_edges():
    assert coefficient_of_variation(np.array([0.4, 0.4, 0.4])) == 0.0
    assert coefficient_of_variation(np.array([-1.0, 1.0])) == float("inf")
    assert coefficient_of_variation(np.array([1.0, 3.0])) == pytest.approx(0.5)


def test_crossing_fraction():
    assert crossing_fraction(np.array([0.01, 0.01, 0.01, 0.01])) == 0.0
    assert crossing_fraction(np.array([0.01, 0.5, 0.01, 0.5])) == pytest.approx(1.0)
    assert crossing_fraction(np.array([0.01, 0.5, 0.5, 0.5])) == pytest.approx(0.5)


def test_ambiguity_score_dispatch():
    es = np.array([0.5, 0.0, 0.5, 0.5])
    pv = np.array([0.01, 1.0, 0.01, 0.01])
    assert ambiguity_score(es, pv) == pytest.approx(coefficient_of_variation(es))
    assert ambiguity_score(es, pv, method="crossing") == pytest.approx(0.5)
    with pytest.raises(ValueError):
        ambiguity_score(es, pv, method="entropy")
