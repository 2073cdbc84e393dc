"""Study-level effect size calculation.

Converts 2x2 counts or continuous summary statistics into a standardized
effect estimate with its variance. Ratio measures (OR, RR) are returned on
the log scale.

References:
    - Cochrane Handbook Chapter 6 (Choosing effect measures)
    - Hedges LV. J Educ Stat 1981;6:107-128 (small-sample correction)
    - Sweeting MJ, et al. Stat Med 2004;23:1351-1375 (continuity correction)
"""

import math
from typing import Iterable, Optional

from scipy import stats

from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import DegenerateResultError, InvalidInputError
from metasynth.models.analysis import EffectEstimate
from metasynth.models.study import ArmData, EffectMeasure, OutcomeType, StudyRecord

# Per-study warning thresholds
SMALL_SAMPLE_THRESHOLD = 30
SD_RATIO_BOUNDS = (0.5, 2.0)


class EffectSizeCalculator:
    """Computes one :class:`EffectEstimate` per study.

    Binary data: OR, RR and RD from the 2x2 table. When any cell is zero the
    configured continuity correction is added to all four cells before
    computing OR or RR; RD is never corrected.

    Continuous data: MD, and SMD as Hedges' g.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def calculate(self, study: StudyRecord, measure: EffectMeasure | str) -> EffectEstimate:
        """Effect of the first arm (treatment) relative to the second (control).

        Pre-computed effects (with a standard error or confidence interval)
        are passed through after validation.

        Raises:
            InvalidInputError: Missing fields, negative or inconsistent counts
            DegenerateResultError: SMD with zero pooled standard deviation
        """
        measure = EffectMeasure.parse(measure)
        if not study.arms and study.effect is not None:
            return self.from_precomputed(study, measure)
        return self.calculate_arms(
            study.study_id, study.treatment_arm, study.control_arm, measure
        )

    def calculate_all(
        self, studies: Iterable[StudyRecord], measure: EffectMeasure | str
    ) -> list[EffectEstimate]:
        """Calculate effects for every study, preserving input order."""
        measure = EffectMeasure.parse(measure)
        return [self.calculate(study, measure) for study in studies]

    def calculate_arms(
        self,
        study_id: str,
        treatment: ArmData,
        control: ArmData,
        measure: EffectMeasure | str,
    ) -> EffectEstimate:
        """Effect of ``treatment`` versus ``control`` for any two arms of a study."""
        measure = EffectMeasure.parse(measure)
        if measure.outcome_type == OutcomeType.BINARY:
            return self._binary_effect(study_id, treatment, control, measure)
        return self._continuous_effect(study_id, treatment, control, measure)

    def from_precomputed(self, study: StudyRecord, measure: EffectMeasure | str) -> EffectEstimate:
        """Wrap a caller-supplied effect (analysis scale) and its standard error.

        Without a ``standard_error`` the SE is derived from ``ci_lower``/``ci_upper``,
        read as a ``1 - alpha`` interval on the reporting scale (ratio scale for
        OR/RR): ``SE = (upper - lower) / (2 z)`` after log-transforming ratio bounds.
        """
        measure = EffectMeasure.parse(measure)
        if study.effect is None:
            raise InvalidInputError("effect is required", study_id=study.study_id, field="effect")
        if not math.isfinite(study.effect):
            raise InvalidInputError(
                "effect must be finite", study_id=study.study_id, field="effect", value=study.effect
            )
        if study.standard_error is not None:
            standard_error = study.standard_error
        else:
            standard_error = self._standard_error_from_ci(study, measure)
        if not standard_error > 0 or not math.isfinite(standard_error):
            raise InvalidInputError(
                "standard_error must be positive",
                study_id=study.study_id,
                field="standard_error",
                value=standard_error,
            )
        return EffectEstimate(
            study_id=study.study_id,
            point_estimate=study.effect,
            variance=standard_error**2,
            measure=measure,
            log_scale=measure.log_scale,
            sample_size=study.sample_size or None,
        )

    def _standard_error_from_ci(self, study: StudyRecord, measure: EffectMeasure) -> float:
        lower, upper = study.ci_lower, study.ci_upper
        if lower is None or upper is None:
            raise InvalidInputError(
                "standard_error or ci_lower/ci_upper is required",
                study_id=study.study_id,
                field="standard_error",
            )
        if not lower < upper:
            raise InvalidInputError(
                f"ci_lower ({lower}) must be below ci_upper ({upper})",
                study_id=study.study_id,
                field="ci_lower",
                value=lower,
            )
        if measure.log_scale:
            if lower <= 0:
                raise InvalidInputError(
                    f"{measure.value} confidence bounds must be positive ratios",
                    study_id=study.study_id,
                    field="ci_lower",
                    value=lower,
                )
            lower, upper = math.log(lower), math.log(upper)
        z_crit = stats.norm.ppf(1 - self.config.alpha / 2)
        return float((upper - lower) / (2 * z_crit))

    # === Binary outcomes ===

    def _binary_effect(
        self, study_id: str, treatment: ArmData, control: ArmData, measure: EffectMeasure
    ) -> EffectEstimate:
        a, n1 = self._validate_binary_arm(study_id, treatment, "treatment")
        c, n2 = self._validate_binary_arm(study_id, control, "control")
        b, d = n1 - a, n2 - c
        warnings = _sample_size_warnings(n1 + n2)

        corrected = False
        if measure == EffectMeasure.RISK_DIFFERENCE:
            # RD: p1 - p2, Var = p1(1-p1)/n1 + p2(1-p2)/n2
            p1, p2 = a / n1, c / n2
            point = p1 - p2
            variance = p1 * (1 - p1) / n1 + p2 * (1 - p2) / n2
        else:
            cells = [float(a), float(b), float(c), float(d)]
            if any(cell == 0 for cell in cells):
                cc = self.config.continuity_correction
                cells = [cell + cc for cell in cells]
                corrected = True
                warnings.append(f"Continuity correction ({cc}) applied for zero cell")
            a_, b_, c_, d_ = cells

            if measure == EffectMeasure.ODDS_RATIO:
                # log(OR) = log(ad / bc), Var = 1/a + 1/b + 1/c + 1/d
                point = math.log((a_ * d_) / (b_ * c_))
                variance = 1 / a_ + 1 / b_ + 1 / c_ + 1 / d_
            else:
                # log(RR) = log((a/n1) / (c/n2)), Var = 1/a - 1/n1 + 1/c - 1/n2
                n1_, n2_ = a_ + b_, c_ + d_
                point = math.log((a_ / n1_) / (c_ / n2_))
                variance = 1 / a_ - 1 / n1_ + 1 / c_ - 1 / n2_

        if variance <= 0:
            warnings.append("Zero variance: study cannot be inverse-variance weighted")

        return EffectEstimate(
            study_id=study_id,
            point_estimate=point,
            variance=max(variance, 0.0),
            measure=measure,
            log_scale=measure.log_scale,
            continuity_corrected=corrected,
            sample_size=n1 + n2,
            warnings=tuple(warnings),
        )

    def _validate_binary_arm(self, study_id: str, arm: ArmData, role: str) -> tuple[int, int]:
        if arm.events is None or arm.total is None:
            raise InvalidInputError(
                f"{role} arm requires events and total", study_id=study_id, field=f"{role}.events"
            )
        if not _is_whole(arm.events):
            raise InvalidInputError(
                f"{role} events must be an integer",
                study_id=study_id,
                field=f"{role}.events",
                value=arm.events,
            )
        if not _is_whole(arm.total) or arm.total <= 0:
            raise InvalidInputError(
                f"{role} total must be a positive integer",
                study_id=study_id,
                field=f"{role}.total",
                value=arm.total,
            )
        if arm.events < 0:
            raise InvalidInputError(
                f"{role} events cannot be negative",
                study_id=study_id,
                field=f"{role}.events",
                value=arm.events,
            )
        if arm.events > arm.total:
            raise InvalidInputError(
                f"{role} events ({arm.events}) cannot exceed total ({arm.total})",
                study_id=study_id,
                field=f"{role}.events",
                value=arm.events,
            )
        return int(arm.events), int(arm.total)

    # === Continuous outcomes ===

    def _continuous_effect(
        self, study_id: str, treatment: ArmData, control: ArmData, measure: EffectMeasure
    ) -> EffectEstimate:
        m1, sd1, n1 = self._validate_continuous_arm(study_id, treatment, "treatment")
        m2, sd2, n2 = self._validate_continuous_arm(study_id, control, "control")
        warnings = _sample_size_warnings(n1 + n2)

        if sd1 > 0 and sd2 > 0:
            ratio = sd1 / sd2
            if not SD_RATIO_BOUNDS[0] <= ratio <= SD_RATIO_BOUNDS[1]:
                warnings.append(
                    f"Unequal variances (SD ratio {ratio:.2f}); interpret pooled SD with caution"
                )

        if measure == EffectMeasure.MEAN_DIFFERENCE:
            point = m1 - m2
            variance = sd1**2 / n1 + sd2**2 / n2
            if variance <= 0:
                warnings.append("Zero variance: study cannot be inverse-variance weighted")
        else:
            point, variance = self._hedges_g(study_id, m1, sd1, n1, m2, sd2, n2)

        return EffectEstimate(
            study_id=study_id,
            point_estimate=point,
            variance=variance,
            measure=measure,
            log_scale=False,
            sample_size=n1 + n2,
            warnings=tuple(warnings),
        )

    def _hedges_g(
        self, study_id: str, m1: float, sd1: float, n1: int, m2: float, sd2: float, n2: int
    ) -> tuple[float, float]:
        """Standardized mean difference corrected for small-sample bias.

        Formula:
            SD_pooled = sqrt(((n1-1)SD1² + (n2-1)SD2²) / (n1+n2-2))
            g = J × (m1 - m2) / SD_pooled,  J = 1 - 3 / (4(n1+n2-2) - 1)
            Var(g) = (n1+n2)/(n1·n2) + g² / (2(n1+n2))
        """
        df = n1 + n2 - 2
        if df <= 0:
            raise DegenerateResultError(
                f"Study {study_id}: SMD requires more than two participants in total",
                study_id=study_id,
            )
        pooled_sd = math.sqrt(((n1 - 1) * sd1**2 + (n2 - 1) * sd2**2) / df)
        if pooled_sd == 0:
            raise DegenerateResultError(
                f"Study {study_id}: SMD is undefined when the pooled SD is zero", study_id=study_id
            )
        cohens_d = (m1 - m2) / pooled_sd
        correction = 1 - 3 / (4 * df - 1)
        g = cohens_d * correction
        variance = (n1 + n2) / (n1 * n2) + g**2 / (2 * (n1 + n2))
        return g, variance

    def _validate_continuous_arm(
        self, study_id: str, arm: ArmData, role: str
    ) -> tuple[float, float, int]:
        if arm.mean is None or arm.sd is None or arm.n is None:
            raise InvalidInputError(
                f"{role} arm requires mean, sd and n", study_id=study_id, field=f"{role}.mean"
            )
        if not math.isfinite(arm.mean):
            raise InvalidInputError(
                f"{role} mean must be finite", study_id=study_id, field=f"{role}.mean", value=arm.mean
            )
        if arm.sd < 0 or not math.isfinite(arm.sd):
            raise InvalidInputError(
                f"{role} SD must be a non-negative number",
                study_id=study_id,
                field=f"{role}.sd",
                value=arm.sd,
            )
        if not _is_whole(arm.n) or arm.n <= 0:
            raise InvalidInputError(
                f"{role} sample size must be a positive integer",
                study_id=study_id,
                field=f"{role}.n",
                value=arm.n,
            )
        return arm.mean, arm.sd, int(arm.n)


def _sample_size_warnings(total: int) -> list[str]:
    if total < SMALL_SAMPLE_THRESHOLD:
        return [f"Small sample size (n={total}); estimate may be imprecise"]
    return []


def _is_whole(value: float) -> bool:
    try:
        return float(value).is_integer()
    except (TypeError, ValueError):
        return False
