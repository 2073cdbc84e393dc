"""Unit tests for SUCRA and P-score treatment ranking."""

import numpy as np
import pytest
from scipy import stats

from metasynth.analysis.ranking import TreatmentRanker
from metasynth.config import AnalysisConfig
from metasynth.exceptions import InsufficientDataError, InvalidInputError


@pytest.fixture
def three_treatments() -> tuple[list[str], np.ndarray, np.ndarray]:
    """Reference A plus B and C with correlated effects."""
    effects = np.array([0.0, 0.5, 1.0])
    covariance = np.array(
        [
            [0.0, 0.0, 0.0],
            [0.0, 0.1, 0.05],
            [0.0, 0.05, 0.1],
        ]
    )
    return ["A", "B", "C"], effects, covariance


class TestSimulatedRanking:
    """Tests for Monte Carlo rank probabilities."""

    def test_sucra_agrees_with_p_score(self, three_treatments) -> None:
        ranker = TreatmentRanker(AnalysisConfig(n_simulations=20000, random_seed=11))

        ranking = ranker.rank(*three_treatments)

        for result in ranking.rankings:
            assert result.sucra == pytest.approx(result.p_score, abs=0.03)
        assert ranking.sucra_tolerance == pytest.approx(1.5 / np.sqrt(20000))

    def test_best_treatment_first(self, three_treatments) -> None:
        ranking = TreatmentRanker().rank(*three_treatments)

        assert [r.treatment_id for r in ranking.rankings] == ["C", "B", "A"]
        assert ranking.rankings[0].probability_best > 0.5
        assert ranking.rankings[0].median_rank == 1
        assert ranking.deterministic is False

    def test_rank_distributions_sum_to_one(self, three_treatments) -> None:
        ranking = TreatmentRanker().rank(*three_treatments)

        for result in ranking.rankings:
            assert sum(result.rank_distribution) == pytest.approx(1.0)
            assert 1.0 <= result.mean_rank <= 3.0
            assert 0.0 <= result.sucra <= 1.0
        # Each rank is held by exactly one treatment in every draw
        for rank in range(3):
            assert sum(r.rank_distribution[rank] for r in ranking.rankings) == pytest.approx(1.0)

    def test_same_seed_reproduces_ranking(self, three_treatments) -> None:
        config = AnalysisConfig(n_simulations=2000, random_seed=5)

        first = TreatmentRanker(config).rank(*three_treatments)
        second = TreatmentRanker(config).rank(*three_treatments)

        assert first == second

    def test_lower_is_better(self, three_treatments) -> None:
        ranker = TreatmentRanker(AnalysisConfig(higher_is_better=False))

        ranking = ranker.rank(*three_treatments)

        assert ranking.rankings[0].treatment_id == "A"
        assert ranking.higher_is_better is False

    def test_p_score_is_analytic(self, three_treatments) -> None:
        ranking = TreatmentRanker().rank(*three_treatments)

        # C vs A: 1 / sqrt(0.1); C vs B: 0.5 / sqrt(0.1 + 0.1 - 0.1)
        expected = (stats.norm.cdf(1 / np.sqrt(0.1)) + stats.norm.cdf(0.5 / np.sqrt(0.1))) / 2
        assert ranking.for_treatment("C").p_score == pytest.approx(expected)


class TestTwoTreatmentRanking:
    """Tests for the deterministic two-treatment case."""

    def test_point_estimate_decides(self) -> None:
        ranking = TreatmentRanker().rank(
            ["A", "B"], np.array([0.0, 1.0]), np.array([[0.0, 0.0], [0.0, 0.25]])
        )

        assert ranking.deterministic is True
        assert ranking.n_simulations == 0
        assert ranking.for_treatment("B").sucra == 1.0
        assert ranking.for_treatment("A").sucra == 0.0
        assert ranking.for_treatment("B").p_score == pytest.approx(stats.norm.cdf(2.0))
        assert ranking.warnings

    def test_tie_splits_ranks(self) -> None:
        ranking = TreatmentRanker().rank(
            ["A", "B"], np.array([0.0, 0.0]), np.array([[0.0, 0.0], [0.0, 0.25]])
        )

        assert ranking.for_treatment("A").sucra == pytest.approx(0.5)
        assert ranking.for_treatment("B").sucra == pytest.approx(0.5)
        assert [r.treatment_id for r in ranking.rankings] == ["A", "B"]


class TestRankingErrors:
    """Tests for rejected ranking input."""

    def test_single_treatment(self) -> None:
        with pytest.raises(InsufficientDataError):
            TreatmentRanker().rank(["A"], np.array([0.0]), np.zeros((1, 1)))

    def test_shape_mismatch(self) -> None:
        with pytest.raises(InvalidInputError):
            TreatmentRanker().rank(["A", "B", "C"], np.array([0.0, 1.0]), np.zeros((2, 2)))

    def test_too_few_simulations(self) -> None:
        with pytest.raises(ValueError):
            AnalysisConfig(n_simulations=10)
