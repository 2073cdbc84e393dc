"""Unit tests for study-level effect size calculation."""

import math

import pytest
from scipy import stats

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.config import AnalysisConfig
from metasynth.exceptions import DegenerateResultError, InvalidInputError
from metasynth.models.study import ArmData, EffectMeasure, StudyRecord


@pytest.fixture
def calculator() -> EffectSizeCalculator:
    return EffectSizeCalculator()


@pytest.fixture
def binary_study() -> StudyRecord:
    """a=10, b=90, c=5, d=95."""
    return StudyRecord.binary("s1", 10, 100, 5, 100)


class TestBinaryMeasures:
    """Tests for OR, RR and RD."""

    def test_odds_ratio(self, calculator: EffectSizeCalculator, binary_study: StudyRecord) -> None:
        estimate = calculator.calculate(binary_study, EffectMeasure.ODDS_RATIO)

        assert estimate.point_estimate == pytest.approx(math.log(950 / 450))
        assert estimate.variance == pytest.approx(1 / 10 + 1 / 90 + 1 / 5 + 1 / 95)
        assert estimate.log_scale is True
        assert estimate.continuity_corrected is False
        assert estimate.display_estimate == pytest.approx(950 / 450)
        assert estimate.sample_size == 200

    def test_risk_ratio(self, calculator: EffectSizeCalculator, binary_study: StudyRecord) -> None:
        estimate = calculator.calculate(binary_study, "RR")

        assert estimate.point_estimate == pytest.approx(math.log(2.0))
        assert estimate.variance == pytest.approx(1 / 10 - 1 / 100 + 1 / 5 - 1 / 100)
        assert estimate.log_scale is True

    def test_risk_difference(
        self, calculator: EffectSizeCalculator, binary_study: StudyRecord
    ) -> None:
        estimate = calculator.calculate(binary_study, "RD")

        assert estimate.point_estimate == pytest.approx(0.05)
        assert estimate.variance == pytest.approx(0.1 * 0.9 / 100 + 0.05 * 0.95 / 100)
        assert estimate.log_scale is False

    def test_zero_cell_applies_correction_to_all_cells(
        self, calculator: EffectSizeCalculator
    ) -> None:
        study = StudyRecord.binary("z1", 0, 50, 5, 50)

        estimate = calculator.calculate(study, "OR")

        a, b, c, d = 0.5, 50.5, 5.5, 45.5
        assert estimate.continuity_corrected is True
        assert estimate.point_estimate == pytest.approx(math.log((a * d) / (b * c)))
        assert estimate.variance == pytest.approx(1 / a + 1 / b + 1 / c + 1 / d)
        assert any("Continuity correction" in w for w in estimate.warnings)

    def test_zero_cell_risk_ratio_uses_corrected_totals(
        self, calculator: EffectSizeCalculator
    ) -> None:
        study = StudyRecord.binary("z1", 0, 50, 5, 50)

        estimate = calculator.calculate(study, "RR")

        assert estimate.point_estimate == pytest.approx(math.log((0.5 / 51) / (5.5 / 51)))
        assert estimate.variance == pytest.approx(1 / 0.5 - 1 / 51 + 1 / 5.5 - 1 / 51)

    def test_corrected_or_equals_uncorrected_without_zero_cells(
        self, binary_study: StudyRecord
    ) -> None:
        default = EffectSizeCalculator().calculate(binary_study, "OR")
        other = EffectSizeCalculator(AnalysisConfig(continuity_correction=0.25)).calculate(
            binary_study, "OR"
        )

        assert default.point_estimate == other.point_estimate
        assert default.point_estimate == pytest.approx(math.log((10 * 95) / (90 * 5)))

    def test_configured_correction_value(self) -> None:
        study = StudyRecord.binary("z1", 0, 50, 5, 50)
        calculator = EffectSizeCalculator(AnalysisConfig(continuity_correction=1.0))

        estimate = calculator.calculate(study, "OR")

        assert estimate.point_estimate == pytest.approx(math.log((1 * 46) / (51 * 6)))

    def test_risk_difference_is_never_corrected(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.binary("z1", 0, 50, 5, 50)

        estimate = calculator.calculate(study, "RD")

        assert estimate.continuity_corrected is False
        assert estimate.point_estimate == pytest.approx(-0.1)

    def test_risk_difference_without_events_is_flagged(
        self, calculator: EffectSizeCalculator
    ) -> None:
        study = StudyRecord.binary("z0", 0, 50, 0, 50)

        estimate = calculator.calculate(study, "RD")

        assert estimate.variance == 0
        assert estimate.is_degenerate is True
        assert any("Zero variance" in w for w in estimate.warnings)

    def test_small_sample_warning(self, calculator: EffectSizeCalculator) -> None:
        estimate = calculator.calculate(StudyRecord.binary("tiny", 2, 10, 1, 10), "OR")
        assert any("Small sample" in w for w in estimate.warnings)

    def test_negative_events_rejected(self, calculator: EffectSizeCalculator) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(StudyRecord.binary("bad", -1, 100, 5, 100), "OR")

        assert exc_info.value.study_id == "bad"
        assert exc_info.value.field == "treatment.events"

    def test_events_above_total_rejected(self, calculator: EffectSizeCalculator) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(StudyRecord.binary("bad", 10, 100, 120, 100), "RR")
        assert exc_info.value.field == "control.events"

    def test_zero_total_rejected(self, calculator: EffectSizeCalculator) -> None:
        with pytest.raises(InvalidInputError):
            calculator.calculate(StudyRecord.binary("bad", 0, 0, 5, 100), "RD")

    def test_fractional_events_rejected(self, calculator: EffectSizeCalculator) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(StudyRecord.binary("s1", 10.5, 100, 5, 100), "OR")

        assert exc_info.value.study_id == "s1"
        assert exc_info.value.field == "treatment.events"

    def test_fractional_total_rejected(self, calculator: EffectSizeCalculator) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(StudyRecord.binary("s1", 10, 100, 5, 99.5), "RD")
        assert exc_info.value.field == "control.total"

    def test_whole_float_counts_accepted(self, calculator: EffectSizeCalculator) -> None:
        estimate = calculator.calculate(StudyRecord.binary("s1", 10.0, 100.0, 5.0, 100.0), "OR")
        assert estimate.point_estimate == pytest.approx(math.log(10 * 95 / (90 * 5)))

    def test_continuous_data_for_binary_measure_rejected(
        self, calculator: EffectSizeCalculator
    ) -> None:
        study = StudyRecord.continuous("c1", 5, 1, 20, 4, 1, 20)
        with pytest.raises(InvalidInputError):
            calculator.calculate(study, "OR")


class TestContinuousMeasures:
    """Tests for MD and SMD (Hedges' g)."""

    def test_mean_difference(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, 2.0, 20, 8.0, 2.0, 20)

        estimate = calculator.calculate(study, "MD")

        assert estimate.point_estimate == pytest.approx(2.0)
        assert estimate.variance == pytest.approx(4 / 20 + 4 / 20)
        assert estimate.log_scale is False

    def test_hedges_g(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, 2.0, 20, 8.0, 2.0, 20)

        estimate = calculator.calculate(study, "SMD")

        correction = 1 - 3 / (4 * 38 - 1)
        assert estimate.point_estimate == pytest.approx(correction)
        assert estimate.variance == pytest.approx(40 / 400 + correction**2 / 80)

    def test_hedges_g_is_smaller_than_cohens_d(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 12.0, 3.0, 8, 9.0, 3.0, 8)

        estimate = calculator.calculate(study, "SMD")

        assert 0 < estimate.point_estimate < 1.0

    def test_zero_pooled_sd_is_undefined(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("flat", 10.0, 0.0, 20, 8.0, 0.0, 20)

        with pytest.raises(DegenerateResultError) as exc_info:
            calculator.calculate(study, "SMD")
        assert exc_info.value.study_id == "flat"

    def test_zero_sd_mean_difference_is_flagged(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("flat", 10.0, 0.0, 20, 8.0, 0.0, 20)

        estimate = calculator.calculate(study, "MD")

        assert estimate.is_degenerate is True

    def test_unequal_variance_warning(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, 1.0, 30, 8.0, 3.0, 30)

        estimate = calculator.calculate(study, "MD")

        assert any("Unequal variances" in w for w in estimate.warnings)

    def test_negative_sd_rejected(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, -1.0, 30, 8.0, 3.0, 30)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "MD")
        assert exc_info.value.field == "treatment.sd"

    def test_zero_group_size_rejected(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, 1.0, 0, 8.0, 3.0, 30)
        with pytest.raises(InvalidInputError):
            calculator.calculate(study, "SMD")

    def test_fractional_group_size_rejected(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord.continuous("c1", 10.0, 1.0, 30, 8.0, 3.0, 30.5)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "MD")
        assert exc_info.value.field == "control.n"


class TestPrecomputedEffects:
    """Tests for caller-supplied effect/standard error pairs."""

    def test_precomputed_effect_passes_through(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=0.3, standard_error=0.1)

        estimate = calculator.calculate(study, "OR")

        assert estimate.point_estimate == 0.3
        assert estimate.variance == pytest.approx(0.01)
        assert estimate.log_scale is True

    def test_non_positive_standard_error_rejected(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=0.3, standard_error=0.0)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "MD")
        assert exc_info.value.field == "standard_error"

    def test_calculate_arms_for_any_pair(self, calculator: EffectSizeCalculator) -> None:
        estimate = calculator.calculate_arms(
            "m1", ArmData("B", events=8, total=50), ArmData("C", events=12, total=50), "RD"
        )
        assert estimate.point_estimate == pytest.approx(8 / 50 - 12 / 50)

    def test_interval_on_reporting_scale(
        self, calculator: EffectSizeCalculator, binary_study: StudyRecord
    ) -> None:
        estimate = calculator.calculate(binary_study, "OR")

        ci = estimate.interval(1.959964)

        assert ci.lower == pytest.approx(
            math.exp(estimate.point_estimate - 1.959964 * estimate.standard_error)
        )
        assert ci.contains(estimate.display_estimate)


class TestConfidenceIntervalInput:
    """Tests for deriving the standard error from a reported interval."""

    def test_mean_difference_interval(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=1.0, ci_lower=0.2, ci_upper=1.8)

        estimate = calculator.calculate(study, "MD")

        assert estimate.point_estimate == 1.0
        assert estimate.standard_error == pytest.approx(1.6 / (2 * stats.norm.ppf(0.975)))

    def test_ratio_bounds_are_log_transformed(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=math.log(1.5), ci_lower=1.2, ci_upper=1.875)

        estimate = calculator.calculate(study, "OR")

        expected = (math.log(1.875) - math.log(1.2)) / (2 * stats.norm.ppf(0.975))
        assert estimate.standard_error == pytest.approx(expected)
        assert estimate.log_scale is True

    def test_interval_level_follows_alpha(self) -> None:
        study = StudyRecord(study_id="p1", effect=1.0, ci_lower=0.0, ci_upper=2.0)

        estimate = EffectSizeCalculator(AnalysisConfig(alpha=0.10)).calculate(study, "MD")

        assert estimate.standard_error == pytest.approx(1 / stats.norm.ppf(0.95))

    def test_standard_error_takes_precedence(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(
            study_id="p1", effect=1.0, standard_error=0.5, ci_lower=0.9, ci_upper=1.1
        )
        assert calculator.calculate(study, "MD").standard_error == pytest.approx(0.5)

    @pytest.mark.parametrize(("lower", "upper"), [(1.5, 0.5), (1.0, 1.0)])
    def test_bounds_must_be_ordered(
        self, calculator: EffectSizeCalculator, lower: float, upper: float
    ) -> None:
        study = StudyRecord(study_id="p1", effect=1.0, ci_lower=lower, ci_upper=upper)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "MD")
        assert exc_info.value.field == "ci_lower"

    def test_ratio_bounds_must_be_positive(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=0.1, ci_lower=-0.2, ci_upper=0.4)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "RR")
        assert exc_info.value.field == "ci_lower"

    def test_missing_uncertainty(self, calculator: EffectSizeCalculator) -> None:
        study = StudyRecord(study_id="p1", effect=1.0, ci_lower=0.5)
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(study, "MD")
        assert exc_info.value.field == "standard_error"
