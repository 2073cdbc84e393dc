"""Treatment ranking for network meta-analysis.

SUCRA is estimated by Monte Carlo sampling from the multivariate normal
distribution of consistency-model effects; the P-score is its analytic
counterpart computed from pairwise z-statistics.

References:
    - Salanti G, et al. J Clin Epidemiol 2011;64:163-171 (SUCRA)
    - Rücker G, Schwarzer G. BMC Med Res Methodol 2015;15:58 (P-score)
"""

import math
from typing import Optional, Sequence

import numpy as np
from scipy import stats

from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import InsufficientDataError, InvalidInputError
from metasynth.models.network import RankingResult, TreatmentRanking


class TreatmentRanker:
    """Ranks the treatments of one connected component.

    Effects are taken relative to a reference treatment whose effect is 0
    and whose covariance row is all zeros. With ``higher_is_better=False``
    effects are negated before ranking so rank 1 is always best.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG

    @property
    def sucra_tolerance(self) -> float:
        """Three Monte Carlo standard errors of a probability (worst case p = 0.5)."""
        return 3 * 0.5 / math.sqrt(self.config.n_simulations)

    def rank(
        self,
        treatments: Sequence[str],
        effects: np.ndarray,
        covariance: np.ndarray,
        component_index: int = 0,
    ) -> TreatmentRanking:
        """Rank treatments from their effects and covariance.

        Args:
            treatments: Treatment labels, aligned with ``effects``
            effects: Effect of each treatment versus the reference
            covariance: Covariance matrix of ``effects``
            component_index: Index of the component being ranked

        Returns:
            TreatmentRanking with results ordered best SUCRA first
        """
        treatments = list(treatments)
        effects = np.asarray(effects, dtype=float)
        covariance = np.asarray(covariance, dtype=float)
        k = len(treatments)
        if k < 2:
            raise InsufficientDataError("Treatment ranking", 2, k, unit="treatments")
        if effects.shape != (k,) or covariance.shape != (k, k):
            raise InvalidInputError("effects and covariance must match the treatment count")

        sign = 1.0 if self.config.higher_is_better else -1.0
        oriented = sign * effects
        p_scores = self._p_scores(oriented, covariance)

        if k == 2:
            rank_probs = self._deterministic_probabilities(oriented)
            deterministic = True
            warnings = ("Two treatments: ranked from the point estimate",)
        else:
            rank_probs = self._simulated_probabilities(oriented, covariance)
            deterministic = False
            warnings = ()

        results = [
            _summarize(treatment, rank_probs[i], p_scores[i])
            for i, treatment in enumerate(treatments)
        ]
        results.sort(key=lambda r: (-r.sucra, r.mean_rank, r.treatment_id))

        return TreatmentRanking(
            component_index=component_index,
            treatments=tuple(treatments),
            rankings=tuple(results),
            higher_is_better=self.config.higher_is_better,
            n_simulations=0 if deterministic else self.config.n_simulations,
            random_seed=self.config.random_seed,
            sucra_tolerance=0.0 if deterministic else self.sucra_tolerance,
            deterministic=deterministic,
            warnings=warnings,
        )

    def _p_scores(self, oriented: np.ndarray, covariance: np.ndarray) -> np.ndarray:
        """P_i = mean over j≠i of Φ((θ_i - θ_j) / SE(θ_i - θ_j))."""
        k = len(oriented)
        variances = np.diag(covariance)
        scores = np.zeros(k)
        for i in range(k):
            total = 0.0
            for j in range(k):
                if i == j:
                    continue
                var_ij = variances[i] + variances[j] - 2 * covariance[i, j]
                se_ij = math.sqrt(max(var_ij, 0.0))
                diff = oriented[i] - oriented[j]
                if se_ij > 0:
                    total += float(stats.norm.cdf(diff / se_ij))
                else:
                    total += 1.0 if diff > 0 else (0.5 if diff == 0 else 0.0)
            scores[i] = total / (k - 1)
        return scores

    def _deterministic_probabilities(self, oriented: np.ndarray) -> np.ndarray:
        if oriented[0] > oriented[1]:
            return np.array([[1.0, 0.0], [0.0, 1.0]])
        if oriented[0] < oriented[1]:
            return np.array([[0.0, 1.0], [1.0, 0.0]])
        return np.full((2, 2), 0.5)

    def _simulated_probabilities(self, oriented: np.ndarray, covariance: np.ndarray) -> np.ndarray:
        """Rank probability matrix: row = treatment, column = rank (best first)."""
        k = len(oriented)
        n_sim = self.config.n_simulations
        rng = np.random.default_rng(self.config.random_seed)

        # Sample only treatments with non-zero variance (the reference is fixed at 0)
        free = np.flatnonzero(np.diag(covariance) > 0)
        draws = np.tile(oriented, (n_sim, 1))
        if len(free):
            sub_cov = covariance[np.ix_(free, free)]
            sub_cov = (sub_cov + sub_cov.T) / 2
            draws[:, free] = rng.multivariate_normal(oriented[free], sub_cov, size=n_sim)

        # Rank 1 = largest oriented effect
        order = np.argsort(-draws, axis=1, kind="stable")
        ranks = np.empty_like(order)
        rows = np.arange(n_sim)[:, None]
        ranks[rows, order] = np.arange(k)

        probabilities = np.zeros((k, k))
        for treatment in range(k):
            probabilities[treatment] = np.bincount(ranks[:, treatment], minlength=k) / n_sim
        return probabilities


def _summarize(treatment: str, probabilities: np.ndarray, p_score: float) -> RankingResult:
    """SUCRA = Σ_{r<k} P(rank ≤ r) / (k - 1), plus rank summaries."""
    k = len(probabilities)
    cumulative = np.cumsum(probabilities)
    sucra = float(cumulative[:-1].sum() / (k - 1))
    mean_rank = float(np.dot(probabilities, np.arange(1, k + 1)))
    median_rank = int(np.searchsorted(cumulative, 0.5 - 1e-12) + 1)
    return RankingResult(
        treatment_id=treatment,
        sucra=min(max(sucra, 0.0), 1.0),
        p_score=min(max(float(p_score), 0.0), 1.0),
        rank_distribution=tuple(float(p) for p in probabilities),
        mean_rank=mean_rank,
        median_rank=min(median_rank, k),
        probability_best=float(probabilities[0]),
    )
