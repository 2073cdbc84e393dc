"""Between-study heterogeneity.

References:
    - Cochran WG. Biometrics 1954;10:101-129 (Q statistic)
    - DerSimonian R, Laird N. Controlled Clin Trials 1986;7:177-188 (tau²)
    - Higgins JPT, Thompson SG. Stat Med 2002;21:1539-1558 (I², H)
"""

import math
from typing import Optional, Sequence

import numpy as np
from scipy import stats

from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import (
    DegenerateResultError,
    InsufficientDataError,
    InvalidInputError,
)
from metasynth.models.analysis import EffectEstimate, HeterogeneityStats
from metasynth.traceability import DEFAULT_PRECISION


def check_estimates(estimates: Sequence[EffectEstimate]) -> None:
    """Reject mixed measures and zero-variance estimates before weighting."""
    if not estimates:
        return
    measure = estimates[0].measure
    for estimate in estimates:
        if estimate.measure != measure or estimate.log_scale != estimates[0].log_scale:
            raise InvalidInputError(
                f"all estimates must share one measure and scale "
                f"(got {measure.value} and {estimate.measure.value})",
                study_id=estimate.study_id,
                field="measure",
            )
        if estimate.is_degenerate:
            raise DegenerateResultError(
                f"Study {estimate.study_id}: zero variance, cannot be inverse-variance weighted",
                study_id=estimate.study_id,
            )


def effects_and_variances(estimates: Sequence[EffectEstimate]) -> tuple[np.ndarray, np.ndarray]:
    effects = np.array([e.point_estimate for e in estimates], dtype=float)
    variances = np.array([e.variance for e in estimates], dtype=float)
    return effects, variances


class HeterogeneityAnalyzer:
    """Quantifies variability between study estimates beyond chance."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.precision = DEFAULT_PRECISION

    def analyze(self, estimates: Sequence[EffectEstimate]) -> HeterogeneityStats:
        """Calculate heterogeneity statistics (Q, I², tau², H).

        Args:
            estimates: At least two estimates on a common measure and scale

        Returns:
            HeterogeneityStats with all statistics

        Raises:
            InsufficientDataError: Fewer than two estimates
            DegenerateResultError: An estimate has zero variance
        """
        estimates = list(estimates)
        if len(estimates) < 2:
            raise InsufficientDataError("Heterogeneity assessment", 2, len(estimates))
        check_estimates(estimates)

        effects, variances = effects_and_variances(estimates)
        return self.from_arrays(effects, variances)

    def from_arrays(self, effects: np.ndarray, variances: np.ndarray) -> HeterogeneityStats:
        """Heterogeneity of raw effect/variance arrays (already validated)."""
        k = len(effects)

        # Fixed-effect weights and pooled estimate for Q
        weights = 1 / variances
        total_weight = weights.sum()
        pooled = float(np.dot(weights, effects) / total_weight)

        # Q = Σw_i(θ_i - θ̂)²
        q = float(np.dot(weights, (effects - pooled) ** 2))
        df = k - 1

        p_value = float(stats.chi2.sf(q, df))

        # I² = max(0, (Q - df) / Q) × 100
        i_squared = max(0.0, (q - df) / q) * 100 if q > 0 else 0.0

        # DerSimonian-Laird: τ² = max(0, (Q - df) / C), C = Σw - Σw²/Σw
        c = float(total_weight - np.sum(weights**2) / total_weight)
        tau_squared = max(0.0, (q - df) / c) if c > 0 else 0.0

        return HeterogeneityStats(
            q=q,
            degrees_of_freedom=df,
            p_value=min(max(p_value, 0.0), 1.0),
            tau_squared=tau_squared,
            i_squared=min(i_squared, 100.0),
            h=math.sqrt(q / df),
            study_count=k,
            interpretation=self.precision.interpret_i_squared(i_squared),
        )

    def tau_squared(self, estimates: Sequence[EffectEstimate]) -> float:
        """DerSimonian-Laird tau² (0.0 for a single study)."""
        estimates = list(estimates)
        if len(estimates) < 2:
            return 0.0
        return self.analyze(estimates).tau_squared
