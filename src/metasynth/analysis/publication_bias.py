"""Funnel-plot asymmetry tests.

References:
    - Egger M, et al. BMJ 1997;315:629-634
    - Begg CB, Mazumdar M. Biometrics 1994;50:1088-1101
    - Sterne JAC, et al. BMJ 2011;343:d4002 (fewer than 10 studies)
"""

import math
from typing import Optional, Sequence

import numpy as np
from scipy import stats

from metasynth.analysis.heterogeneity import check_estimates, effects_and_variances
from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import InsufficientDataError
from metasynth.models.analysis import (
    BeggTest,
    EffectEstimate,
    EggerTest,
    FunnelPoint,
    PublicationBiasResult,
)

MIN_STUDIES_FOR_TESTS = 3
RECOMMENDED_STUDIES = 10


class PublicationBiasDetector:
    """Regression- and rank-based tests for small-study effects."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def detect(self, estimates: Sequence[EffectEstimate]) -> PublicationBiasResult:
        """Assess funnel-plot asymmetry.

        With fewer than three studies the tests are omitted and the result
        carries ``low_power_warning``; funnel points are always returned.

        Raises:
            InsufficientDataError: No estimates
            DegenerateResultError: A study has zero variance
        """
        estimates = list(estimates)
        if not estimates:
            raise InsufficientDataError("Publication bias assessment", 1, 0)
        check_estimates(estimates)

        effects, variances = effects_and_variances(estimates)
        ses = np.sqrt(variances)
        points = tuple(
            FunnelPoint(e.study_id, e.point_estimate, 1 / se) for e, se in zip(estimates, ses)
        )
        weights = 1 / variances
        pooled = float(np.dot(weights, effects) / weights.sum())

        k = len(estimates)
        if k < MIN_STUDIES_FOR_TESTS:
            return PublicationBiasResult(
                funnel_points=points,
                pooled_effect=pooled,
                low_power_warning=True,
                warnings=(
                    f"Fewer than {MIN_STUDIES_FOR_TESTS} studies: asymmetry tests omitted",
                ),
            )

        warnings: list[str] = []
        if k < RECOMMENDED_STUDIES:
            warnings.append(
                f"Only {k} studies: asymmetry tests have low power "
                f"(at least {RECOMMENDED_STUDIES} recommended)"
            )

        egger = self.egger_test(effects, ses)
        if egger is None:
            warnings.append("Egger's test omitted: regression is undefined for these studies")
        begg = self.begg_test(effects, variances)
        if begg is None:
            warnings.append("Begg's test omitted: rank correlation is undefined for these studies")

        threshold = self.config.egger_threshold
        is_asymmetric = egger is not None and egger.p_value < threshold
        if egger is not None and begg is not None and (begg.p_value < threshold) != is_asymmetric:
            warnings.append("Egger's and Begg's tests disagree; interpret asymmetry with caution")

        return PublicationBiasResult(
            funnel_points=points,
            pooled_effect=pooled,
            egger=egger,
            begg=begg,
            is_asymmetric=is_asymmetric,
            warnings=tuple(warnings),
        )

    def egger_test(self, effects: np.ndarray, ses: np.ndarray) -> Optional[EggerTest]:
        """Regress standardized effect (θ/SE) on precision (1/SE).

        The intercept measures asymmetry; it is tested with t(k-2).
        Returns None when precision is constant or the fit is exact.
        """
        precisions = 1 / ses
        if np.ptp(precisions) == 0:
            return None
        standardized = effects / ses

        fit = stats.linregress(precisions, standardized)
        if not fit.intercept_stderr > 0:
            return None

        df = len(effects) - 2
        t_stat = fit.intercept / fit.intercept_stderr
        p_value = float(2 * stats.t.sf(abs(t_stat), df))
        return EggerTest(
            intercept=float(fit.intercept),
            intercept_se=float(fit.intercept_stderr),
            slope=float(fit.slope),
            t_statistic=float(t_stat),
            degrees_of_freedom=df,
            p_value=p_value,
        )

    def begg_test(self, effects: np.ndarray, variances: np.ndarray) -> Optional[BeggTest]:
        """Kendall's tau between standardized deviates and variances.

        Deviates are (θ_i - θ̂) / sqrt(v_i - v̂) with θ̂ the fixed-effect
        estimate and v̂ = 1/Σw its variance.
        """
        weights = 1 / variances
        pooled = np.dot(weights, effects) / weights.sum()
        pooled_variance = 1 / weights.sum()
        deviates = (effects - pooled) / np.sqrt(variances - pooled_variance)

        tau, p_value = stats.kendalltau(deviates, variances)
        if math.isnan(tau) or math.isnan(p_value):
            return None
        return BeggTest(kendall_tau=float(tau), p_value=float(p_value))
