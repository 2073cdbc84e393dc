"""Data models for pairwise meta-analysis results.

Every result is a frozen dataclass created once per analysis request and
never mutated afterwards. Mappings are stored as tuples of pairs and
exposed as fresh dicts so results stay hashable and picklable.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from metasynth.models.study import EffectMeasure


class PoolingModel(str, Enum):
    """Meta-analysis weighting model."""

    FIXED = "fixed"
    RANDOM = "random"


@dataclass(frozen=True)
class ConfidenceInterval:
    """Confidence interval."""

    lower: float
    upper: float
    level: float = 0.95  # Confidence level (e.g., 0.95 for 95% CI)

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def exponentiated(self) -> "ConfidenceInterval":
        """Map a log-scale interval back to the ratio scale."""
        return ConfidenceInterval(math.exp(self.lower), math.exp(self.upper), self.level)

    def to_dict(self) -> dict[str, float]:
        return {"lower": self.lower, "upper": self.upper, "level": self.level}


@dataclass(frozen=True)
class EffectEstimate:
    """Standardized effect of one study on the analysis scale.

    ``point_estimate`` and ``variance`` are on the log scale for OR/RR
    (``log_scale`` is True) and on the natural scale otherwise.
    """

    study_id: str
    point_estimate: float
    variance: float
    measure: EffectMeasure
    log_scale: bool
    continuity_corrected: bool = False
    sample_size: Optional[int] = None
    warnings: tuple[str, ...] = ()

    @property
    def standard_error(self) -> float:
        return math.sqrt(self.variance)

    @property
    def is_degenerate(self) -> bool:
        """Zero-variance estimates cannot be inverse-variance weighted."""
        return self.variance <= 0

    @property
    def display_estimate(self) -> float:
        """Estimate on the reporting scale (exponentiated for OR/RR)."""
        return math.exp(self.point_estimate) if self.log_scale else self.point_estimate

    def interval(self, z_crit: float, level: float = 0.95) -> ConfidenceInterval:
        """Per-study interval on the reporting scale."""
        half_width = z_crit * self.standard_error
        ci = ConfidenceInterval(
            self.point_estimate - half_width, self.point_estimate + half_width, level
        )
        return ci.exponentiated() if self.log_scale else ci

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "study_id": self.study_id,
            "point_estimate": self.point_estimate,
            "variance": self.variance,
            "standard_error": self.standard_error,
            "measure": self.measure.value,
            "log_scale": self.log_scale,
            "display_estimate": self.display_estimate,
            "continuity_corrected": self.continuity_corrected,
            "sample_size": self.sample_size,
            "is_degenerate": self.is_degenerate,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class HeterogeneityStats:
    """Heterogeneity statistics for a set of effect estimates.

    ``h`` is None (undefined, not zero) when there are no degrees of
    freedom; ``h_defined`` flags that case.
    """

    q: float  # Cochran's Q
    degrees_of_freedom: int
    p_value: float  # Upper-tail chi-square p-value for Q
    tau_squared: float  # DerSimonian-Laird between-study variance
    i_squared: float  # Percentage (0-100)
    h: Optional[float]
    study_count: int
    interpretation: str = "low"

    @property
    def tau(self) -> float:
        return math.sqrt(self.tau_squared)

    @property
    def h_defined(self) -> bool:
        return self.h is not None

    @property
    def recommended_model(self) -> PoolingModel:
        """Random effects when heterogeneity is substantial (I² > 50%)."""
        return PoolingModel.RANDOM if self.i_squared > 50.0 else PoolingModel.FIXED

    @classmethod
    def single_study(cls) -> "HeterogeneityStats":
        """Statistics for one study: nothing can be estimated."""
        return cls(
            q=0.0,
            degrees_of_freedom=0,
            p_value=1.0,
            tau_squared=0.0,
            i_squared=0.0,
            h=None,
            study_count=1,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "q": self.q,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
            "tau_squared": self.tau_squared,
            "tau": self.tau,
            "i_squared": self.i_squared,
            "h": self.h,
            "h_defined": self.h_defined,
            "study_count": self.study_count,
            "interpretation": self.interpretation,
            "recommended_model": self.recommended_model.value,
        }


@dataclass(frozen=True)
class PooledResult:
    """Result of pooling a set of effect estimates.

    ``point_estimate``, ``standard_error`` and ``log_confidence_interval``
    are on the analysis scale. ``confidence_interval`` is on the reporting
    scale: exponentiated bounds for OR/RR, identical to the analysis-scale
    interval otherwise. ``weights`` are the absolute inverse-variance (or
    DerSimonian-Laird adjusted) weights per study.
    """

    measure: EffectMeasure
    model: PoolingModel
    point_estimate: float
    standard_error: float
    confidence_interval: ConfidenceInterval
    log_confidence_interval: ConfidenceInterval
    z_value: float
    p_value: float
    weights: tuple[tuple[str, float], ...]
    log_scale: bool
    tau_squared: float = 0.0
    heterogeneity: Optional[HeterogeneityStats] = None
    prediction_interval: Optional[ConfidenceInterval] = None
    hartung_knapp: bool = False
    degenerate: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def variance(self) -> float:
        return self.standard_error**2

    @property
    def study_count(self) -> int:
        return len(self.weights)

    @property
    def weight_per_study(self) -> dict[str, float]:
        return dict(self.weights)

    @property
    def relative_weights(self) -> dict[str, float]:
        """Weights normalised to percentages (sum to 100)."""
        total = sum(weight for _, weight in self.weights)
        return {study_id: weight / total * 100 for study_id, weight in self.weights}

    @property
    def summary_estimate(self) -> float:
        """Pooled estimate on the reporting scale."""
        return math.exp(self.point_estimate) if self.log_scale else self.point_estimate

    def is_significant(self, alpha: float = 0.05) -> bool:
        return self.p_value < alpha

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "measure": self.measure.value,
            "model": self.model.value,
            "point_estimate": self.point_estimate,
            "summary_estimate": self.summary_estimate,
            "standard_error": self.standard_error,
            "variance": self.variance,
            "confidence_interval": self.confidence_interval.to_dict(),
            "log_confidence_interval": self.log_confidence_interval.to_dict(),
            "z_value": self.z_value,
            "p_value": self.p_value,
            "weight_per_study": self.weight_per_study,
            "relative_weights": self.relative_weights,
            "log_scale": self.log_scale,
            "tau_squared": self.tau_squared,
            "heterogeneity": self.heterogeneity.to_dict() if self.heterogeneity else None,
            "prediction_interval": (
                self.prediction_interval.to_dict() if self.prediction_interval else None
            ),
            "hartung_knapp": self.hartung_knapp,
            "degenerate": self.degenerate,
            "study_count": self.study_count,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class EggerTest:
    """Egger's regression test for funnel-plot asymmetry."""

    intercept: float
    intercept_se: float
    slope: float
    t_statistic: float
    degrees_of_freedom: int
    p_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "intercept": self.intercept,
            "intercept_se": self.intercept_se,
            "slope": self.slope,
            "t_statistic": self.t_statistic,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
        }


@dataclass(frozen=True)
class BeggTest:
    """Begg and Mazumdar's rank correlation test."""

    kendall_tau: float
    p_value: float

    def to_dict(self) -> dict[str, Any]:
        return {"kendall_tau": self.kendall_tau, "p_value": self.p_value}


@dataclass(frozen=True)
class FunnelPoint:
    """One study on the funnel plot: effect against precision (1/SE)."""

    study_id: str
    effect: float
    precision: float

    @property
    def standard_error(self) -> float:
        return 1 / self.precision

    def to_dict(self) -> dict[str, Any]:
        return {
            "study_id": self.study_id,
            "effect": self.effect,
            "precision": self.precision,
            "standard_error": self.standard_error,
        }


@dataclass(frozen=True)
class PublicationBiasResult:
    """Funnel-plot asymmetry assessment.

    With fewer than three studies both tests are omitted and
    ``low_power_warning`` is set; funnel points are always returned.
    """

    funnel_points: tuple[FunnelPoint, ...]
    pooled_effect: float
    egger: Optional[EggerTest] = None
    begg: Optional[BeggTest] = None
    is_asymmetric: bool = False
    low_power_warning: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def egger_intercept(self) -> Optional[float]:
        return self.egger.intercept if self.egger else None

    @property
    def egger_p_value(self) -> Optional[float]:
        return self.egger.p_value if self.egger else None

    @property
    def begg_p_value(self) -> Optional[float]:
        return self.begg.p_value if self.begg else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "egger_intercept": self.egger_intercept,
            "egger_p_value": self.egger_p_value,
            "begg_p_value": self.begg_p_value,
            "is_asymmetric": self.is_asymmetric,
            "low_power_warning": self.low_power_warning,
            "egger": self.egger.to_dict() if self.egger else None,
            "begg": self.begg.to_dict() if self.begg else None,
            "pooled_effect": self.pooled_effect,
            "funnel_points": [point.to_dict() for point in self.funnel_points],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SubgroupAnalysis:
    """Pooled results per subgroup plus the test for subgroup differences."""

    covariate: str
    subgroups: tuple[tuple[str, PooledResult], ...]
    q_between: float
    degrees_of_freedom: int
    p_value: float

    @property
    def results(self) -> dict[str, PooledResult]:
        return dict(self.subgroups)

    def to_dict(self) -> dict[str, Any]:
        return {
            "covariate": self.covariate,
            "subgroups": {name: result.to_dict() for name, result in self.subgroups},
            "q_between": self.q_between,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
        }


@dataclass(frozen=True)
class LeaveOneOutResult:
    """Pooled result with one study excluded."""

    excluded_study_id: str
    result: PooledResult

    def to_dict(self) -> dict[str, Any]:
        return {"excluded_study_id": self.excluded_study_id, "result": self.result.to_dict()}
