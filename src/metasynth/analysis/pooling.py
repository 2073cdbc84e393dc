"""Fixed- and random-effects pooling of study estimates.

All calculations use inverse-variance weighting. Random effects use the
DerSimonian-Laird tau²; the Hartung-Knapp adjustment is opt-in.

References:
    - DerSimonian R, Laird N. Controlled Clin Trials 1986;7:177-188
    - Hartung J, Knapp G. Stat Med 2001;20:3875-3889
    - Riley RD, et al. BMJ 2011;342:d549 (prediction intervals)
    - Cochrane Handbook Chapter 10
"""

import math
from collections import Counter
from typing import Mapping, Optional, Sequence

import numpy as np
from scipy import stats

from metasynth.analysis.heterogeneity import (
    HeterogeneityAnalyzer,
    check_estimates,
    effects_and_variances,
)
from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import InsufficientDataError, InvalidInputError
from metasynth.models.analysis import (
    ConfidenceInterval,
    EffectEstimate,
    HeterogeneityStats,
    LeaveOneOutResult,
    PooledResult,
    PoolingModel,
    SubgroupAnalysis,
)


class PoolingEngine:
    """Combines study estimates into one summary estimate.

    Pooling is order-independent: permuting the input changes the result
    only within floating-point tolerance.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        """Initialize pooling engine.

        Args:
            config: Analysis configuration (alpha, Hartung-Knapp switch)
        """
        self.config = config or DEFAULT_CONFIG
        self.alpha = self.config.alpha
        self.confidence_level = self.config.confidence_level
        self.heterogeneity = HeterogeneityAnalyzer(self.config)

    def pool(
        self,
        estimates: Sequence[EffectEstimate],
        model: PoolingModel | str = PoolingModel.RANDOM,
    ) -> PooledResult:
        """Calculate the pooled effect of a set of study estimates.

        Args:
            estimates: Study estimates sharing one measure and scale
            model: Fixed or random effects

        Returns:
            PooledResult; a single study is returned as its own estimate with
            weight 1.0 and ``degenerate=True``

        Raises:
            InsufficientDataError: No estimates
            DegenerateResultError: A study has zero variance
            InvalidInputError: Mixed measures or duplicate study ids
        """
        model = PoolingModel(model)
        estimates = list(estimates)
        if not estimates:
            raise InsufficientDataError("Pooling", 1, 0)
        check_estimates(estimates)
        _check_unique_ids(estimates)

        if len(estimates) == 1:
            return self._single_study(estimates[0], model)

        effects, variances = effects_and_variances(estimates)
        heterogeneity = self.heterogeneity.from_arrays(effects, variances)
        warnings: list[str] = []

        # Weights: w_i = 1/v_i (fixed) or 1/(v_i + τ²) (random)
        tau_squared = heterogeneity.tau_squared if model == PoolingModel.RANDOM else 0.0
        weights = 1 / (variances + tau_squared)
        total_weight = float(weights.sum())

        # θ̂ = Σw_i·θ_i / Σw_i, Var(θ̂) = 1/Σw_i
        pooled = float(np.dot(weights, effects) / total_weight)
        variance = 1 / total_weight

        k = len(estimates)
        use_hk = self.config.hartung_knapp and model == PoolingModel.RANDOM
        if use_hk:
            # Var_HK = Σw*(θ_i - θ̂)² / ((k-1)·Σw*), t(k-1) reference
            q_hk = float(np.dot(weights, (effects - pooled) ** 2)) / (k - 1)
            if q_hk > 0:
                variance = q_hk / total_weight
            else:
                warnings.append(
                    "Hartung-Knapp variance is zero (identical estimates); "
                    "DerSimonian-Laird variance used"
                )
            crit = float(stats.t.ppf(1 - self.alpha / 2, k - 1))
        else:
            crit = float(stats.norm.ppf(1 - self.alpha / 2))

        se = math.sqrt(variance)
        z_value = pooled / se
        if use_hk:
            p_value = float(2 * stats.t.sf(abs(z_value), k - 1))
        else:
            p_value = float(2 * stats.norm.sf(abs(z_value)))

        measure = estimates[0].measure
        log_ci = ConfidenceInterval(pooled - crit * se, pooled + crit * se, self.confidence_level)

        prediction = None
        if model == PoolingModel.RANDOM:
            if k >= 3:
                prediction = self._prediction_interval(pooled, se, tau_squared, k, measure.log_scale)
            else:
                warnings.append("Prediction interval requires at least 3 studies")

        return PooledResult(
            measure=measure,
            model=model,
            point_estimate=pooled,
            standard_error=se,
            confidence_interval=log_ci.exponentiated() if measure.log_scale else log_ci,
            log_confidence_interval=log_ci,
            z_value=z_value,
            p_value=min(p_value, 1.0),
            weights=tuple((e.study_id, float(w)) for e, w in zip(estimates, weights)),
            log_scale=measure.log_scale,
            tau_squared=tau_squared,
            heterogeneity=heterogeneity,
            prediction_interval=prediction,
            hartung_knapp=use_hk,
            warnings=tuple(warnings),
        )

    def _prediction_interval(
        self, pooled: float, se: float, tau_squared: float, k: int, log_scale: bool
    ) -> ConfidenceInterval:
        """θ̂ ± t(k-2) × sqrt(τ² + SE²), on the reporting scale."""
        t_crit = float(stats.t.ppf(1 - self.alpha / 2, k - 2))
        half_width = t_crit * math.sqrt(tau_squared + se**2)
        interval = ConfidenceInterval(
            pooled - half_width, pooled + half_width, self.confidence_level
        )
        return interval.exponentiated() if log_scale else interval

    def _single_study(self, estimate: EffectEstimate, model: PoolingModel) -> PooledResult:
        z_crit = float(stats.norm.ppf(1 - self.alpha / 2))
        se = estimate.standard_error
        log_ci = ConfidenceInterval(
            estimate.point_estimate - z_crit * se,
            estimate.point_estimate + z_crit * se,
            self.confidence_level,
        )
        z_value = estimate.point_estimate / se
        return PooledResult(
            measure=estimate.measure,
            model=model,
            point_estimate=estimate.point_estimate,
            standard_error=se,
            confidence_interval=log_ci.exponentiated() if estimate.log_scale else log_ci,
            log_confidence_interval=log_ci,
            z_value=z_value,
            p_value=float(2 * stats.norm.sf(abs(z_value))),
            weights=((estimate.study_id, 1.0),),
            log_scale=estimate.log_scale,
            heterogeneity=HeterogeneityStats.single_study(),
            degenerate=True,
            warnings=("Single study: estimate returned unpooled",),
        )

    def subgroup_analysis(
        self,
        estimates: Sequence[EffectEstimate],
        assignments: Mapping[str, str],
        model: PoolingModel | str = PoolingModel.RANDOM,
        covariate: str = "subgroup",
    ) -> SubgroupAnalysis:
        """Perform subgroup meta-analysis with a test for subgroup differences.

        Args:
            estimates: Study estimates
            assignments: Study id -> subgroup label
            model: Pooling model used within each subgroup
            covariate: Name of the grouping variable (for reporting)

        Returns:
            Pooled result per subgroup plus Q_between = Σw_g(θ̂_g - θ̂)²
            with df = groups - 1
        """
        estimates = list(estimates)
        if not estimates:
            raise InsufficientDataError("Subgroup analysis", 1, 0)

        groups: dict[str, list[EffectEstimate]] = {}
        for estimate in estimates:
            label = assignments.get(estimate.study_id)
            if label is None:
                raise InvalidInputError(
                    "has no subgroup assignment", study_id=estimate.study_id, field=covariate
                )
            groups.setdefault(str(label), []).append(estimate)

        results = {label: self.pool(members, model) for label, members in sorted(groups.items())}

        # Test for subgroup differences on the subgroup summaries
        summaries = np.array([r.point_estimate for r in results.values()])
        group_weights = np.array([1 / r.variance for r in results.values()])
        overall = float(np.dot(group_weights, summaries) / group_weights.sum())
        q_between = float(np.dot(group_weights, (summaries - overall) ** 2))
        df = len(results) - 1
        p_value = float(stats.chi2.sf(q_between, df)) if df > 0 else 1.0

        return SubgroupAnalysis(
            covariate=covariate,
            subgroups=tuple(results.items()),
            q_between=q_between,
            degrees_of_freedom=df,
            p_value=p_value,
        )

    def leave_one_out(
        self,
        estimates: Sequence[EffectEstimate],
        model: PoolingModel | str = PoolingModel.RANDOM,
    ) -> list[LeaveOneOutResult]:
        """Perform leave-one-out sensitivity analysis.

        Returns:
            One result per study, in input order, each excluding that study
        """
        estimates = list(estimates)
        if len(estimates) < 3:
            raise InsufficientDataError("Leave-one-out analysis", 3, len(estimates))

        results = []
        for i, excluded in enumerate(estimates):
            remaining = [e for j, e in enumerate(estimates) if j != i]
            results.append(LeaveOneOutResult(excluded.study_id, self.pool(remaining, model)))
        return results


def _check_unique_ids(estimates: Sequence[EffectEstimate]) -> None:
    counts = Counter(e.study_id for e in estimates)
    duplicates = sorted(study_id for study_id, count in counts.items() if count > 1)
    if duplicates:
        raise InvalidInputError(
            f"duplicate study ids: {', '.join(duplicates)}",
            study_id=duplicates[0],
            field="study_id",
        )
