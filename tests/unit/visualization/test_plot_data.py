"""Unit tests for plot data generation.

Plot data is produced programmatically from analysis results; nothing is
rendered here.
"""

import numpy as np
import pytest

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.analysis.pooling import PoolingEngine
from metasynth.analysis.publication_bias import PublicationBiasDetector
from metasynth.analysis.ranking import TreatmentRanker
from metasynth.exceptions import InsufficientDataError, InvalidInputError
from metasynth.models.analysis import EffectEstimate, PoolingModel
from metasynth.models.risk_of_bias import RiskLevel
from metasynth.models.study import EffectMeasure, StudyRecord
from metasynth.models.visualization import PRISMAFlow
from metasynth.visualization.plot_data import PlotDataGenerator


def _estimate(study_id: str, effect: float, variance: float) -> EffectEstimate:
    return EffectEstimate(
        study_id=study_id,
        point_estimate=effect,
        variance=variance,
        measure=EffectMeasure.MEAN_DIFFERENCE,
        log_scale=False,
    )


@pytest.fixture
def generator() -> PlotDataGenerator:
    return PlotDataGenerator()


@pytest.fixture
def spread() -> list[EffectEstimate]:
    return [_estimate("a", 0.0, 0.1), _estimate("b", 2.0, 0.1), _estimate("c", 4.0, 0.1)]


class TestForestPlot:
    """Tests for forest plot rows and axis."""

    def test_rows_in_input_order_with_summary_last(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        pooled = PoolingEngine().pool(spread, PoolingModel.FIXED)

        data = generator.forest(spread, pooled)

        assert [row.study_id for row in data.study_rows] == ["a", "b", "c"]
        assert [row.y_position for row in data.rows] == [0, 1, 2, 3]
        assert data.summary_row.is_summary is True
        assert data.summary_row.label == "Overall (fixed)"
        assert data.summary_row.estimate == pytest.approx(2.0)
        assert data.study_rows[0].weight_percent == pytest.approx(100 / 3)
        assert data.study_rows[0].weight_label == "33.3%"
        assert data.summary_row.weight_label == "100.0%"
        assert data.study_rows[1].display_label.startswith("2.00 [")

    def test_caller_order_and_labels(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        pooled = PoolingEngine().pool(spread)

        data = generator.forest(
            spread, pooled, order=["c", "a", "b"], labels={"a": "Smith 2019"}, title="Pain"
        )

        assert [row.study_id for row in data.study_rows] == ["c", "a", "b"]
        assert data.study_rows[1].label == "Smith 2019"
        assert data.study_rows[0].label == "c"
        assert data.title == "Pain"
        assert data.model == "random"

    def test_axis_covers_intervals_and_null(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        pooled = PoolingEngine().pool(spread, PoolingModel.FIXED)

        data = generator.forest(spread, pooled)
        axis = data.axis

        lowest = min(row.lower for row in data.rows)
        highest = max(row.upper for row in data.rows)
        assert axis.log_scale is False
        assert axis.null_value == 0.0
        assert axis.min < lowest
        assert axis.max > highest
        assert axis.min <= axis.null_value <= axis.max
        assert list(axis.ticks) == sorted(axis.ticks)

    def test_ratio_axis_is_logarithmic(self, generator: PlotDataGenerator) -> None:
        estimates = EffectSizeCalculator().calculate_all(
            [
                StudyRecord.binary("s1", 10, 100, 20, 100),
                StudyRecord.binary("s2", 15, 120, 25, 118),
                StudyRecord.binary("s3", 30, 200, 28, 190),
            ],
            "OR",
        )
        pooled = PoolingEngine().pool(estimates)

        data = generator.forest(estimates, pooled)

        assert data.axis.log_scale is True
        assert data.axis.null_value == 1.0
        assert data.axis.min < 1.0 < data.axis.max
        assert len(data.axis.ticks) >= 3
        assert all(row.lower > 0 for row in data.rows)

    def test_heterogeneity_label(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        data = generator.forest(spread, PoolingEngine().pool(spread))

        assert data.heterogeneity_label.startswith("Heterogeneity: I² = 97.5%")
        assert "df = 2" in data.heterogeneity_label

    def test_single_study(self, generator: PlotDataGenerator) -> None:
        estimates = [_estimate("only", 1.0, 0.25)]

        data = generator.forest(estimates, PoolingEngine().pool(estimates))

        assert data.heterogeneity_label is None
        assert any("Single study" in w for w in data.warnings)
        assert any("Very few studies" in w for w in data.warnings)

    def test_order_must_be_permutation(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        pooled = PoolingEngine().pool(spread)
        with pytest.raises(InvalidInputError) as exc_info:
            generator.forest(spread, pooled, order=["a", "b"])
        assert exc_info.value.field == "order"

    def test_estimates_must_match_pooled(
        self, generator: PlotDataGenerator, spread: list[EffectEstimate]
    ) -> None:
        pooled = PoolingEngine().pool(spread[:2])
        with pytest.raises(InvalidInputError):
            generator.forest(spread, pooled)

    def test_to_dict(self, generator: PlotDataGenerator, spread: list[EffectEstimate]) -> None:
        data = generator.forest(spread, PoolingEngine().pool(spread)).to_dict()

        assert data["plot_type"] == "forest"
        assert len(data["rows"]) == 4
        assert data["rows"][0]["weight_label"] == "33.3%"
        assert data["favours"] == {"left": "Favours treatment", "right": "Favours control"}


class TestFunnelPlot:
    """Tests for funnel plot points."""

    def test_pseudo_limits(self, generator: PlotDataGenerator) -> None:
        estimates = [_estimate(f"s{i}", 0.1 * i, (0.1 * (i + 1)) ** 2) for i in range(5)]
        result = PublicationBiasDetector().detect(estimates)

        data = generator.funnel(result, "MD")

        assert [p.study_id for p in data.points] == [f"s{i}" for i in range(5)]
        first = data.points[0]
        assert first.standard_error == pytest.approx(0.1)
        assert first.pseudo_lower == pytest.approx(result.pooled_effect - 1.959964 * 0.1, abs=1e-5)
        assert first.pseudo_upper == pytest.approx(result.pooled_effect + 1.959964 * 0.1, abs=1e-5)
        assert data.egger_p_value == result.egger_p_value
        assert data.to_dict()["plot_type"] == "funnel"


class TestTrafficLight:
    """Tests for the risk-of-bias grid."""

    @pytest.fixture
    def judgments(self) -> dict[str, dict[str, str]]:
        return {
            "s1": {"D1": "low", "D2": "high", "overall": "high"},
            "s2": {"overall": "Some concerns", "D1": "low"},
        }

    def test_domains_and_missing_cells(
        self, generator: PlotDataGenerator, judgments: dict[str, dict[str, str]]
    ) -> None:
        grid = generator.traffic_light(judgments)

        assert grid.studies == ("s1", "s2")
        assert grid.domains == ("D1", "D2", "overall")
        assert grid.domain_labels == ("Randomization", "Deviations", "Overall")
        assert grid.cell("s2", "D2").level == RiskLevel.UNCLEAR
        assert grid.cell("s2", "overall").level == RiskLevel.SOME_CONCERNS
        assert len(grid.cells) == 6

    def test_percentages_and_counts(
        self, generator: PlotDataGenerator, judgments: dict[str, dict[str, str]]
    ) -> None:
        grid = generator.traffic_light(judgments)

        assert grid.percentages_for("D1")["low"] == pytest.approx(100.0)
        assert grid.percentages_for("D2") == pytest.approx(
            {"low": 0.0, "some_concerns": 0.0, "high": 50.0, "unclear": 50.0}
        )
        assert dict(grid.level_counts) == {
            "low": 2,
            "some_concerns": 1,
            "high": 2,
            "unclear": 1,
        }
        assert "Significant methodological concerns" in grid.interpretation

    def test_explicit_domains(
        self, generator: PlotDataGenerator, judgments: dict[str, dict[str, str]]
    ) -> None:
        grid = generator.traffic_light(judgments, domains=["overall"])

        assert grid.domains == ("overall",)
        assert len(grid.cells) == 2

    def test_unknown_level(self, generator: PlotDataGenerator) -> None:
        with pytest.raises(InvalidInputError):
            generator.traffic_light({"s1": {"D1": "terrible"}})

    def test_no_judgments(self, generator: PlotDataGenerator) -> None:
        with pytest.raises(InsufficientDataError):
            generator.traffic_light({})

    def test_cell_symbols(
        self, generator: PlotDataGenerator, judgments: dict[str, dict[str, str]]
    ) -> None:
        data = generator.traffic_light(judgments).to_dict()

        assert data["plot_type"] == "traffic_light"
        assert data["cells"][0]["symbol"] == "+"
        assert data["cells"][1]["color"] == RiskLevel.HIGH.color


class TestPRISMAFlow:
    """Tests for PRISMA flow validation."""

    @pytest.fixture
    def sample_flow(self) -> PRISMAFlow:
        """Create a sample PRISMA flow for testing."""
        return PRISMAFlow(
            records_identified_total=150,
            records_identified_databases=(("pubmed", 80), ("embase", 50), ("cochrane", 20)),
            records_removed_duplicates=30,
            records_screened=120,
            records_excluded=95,
            exclusion_reasons=(
                ("Wrong study design", 45),
                ("Wrong population", 30),
                ("Wrong intervention", 20),
            ),
            reports_sought=25,
            reports_not_retrieved=3,
            reports_assessed=22,
            reports_excluded=2,
            reports_exclusion_reasons=(("Insufficient data", 1), ("Wrong outcomes", 1)),
            studies_included=20,
            studies_in_synthesis=18,
        )

    def test_consistent_flow(self, generator: PlotDataGenerator, sample_flow: PRISMAFlow) -> None:
        data = generator.prisma(sample_flow)

        assert data.is_valid is True
        assert data.warnings == ()
        assert sample_flow.records_after_deduplication == 120
        assert sample_flow.exclusion_rate == pytest.approx(95 / 120 * 100)
        assert sample_flow.retrieval_rate == pytest.approx(88.0)

    def test_inconsistent_counts_reported(self, generator: PlotDataGenerator) -> None:
        flow = PRISMAFlow(
            records_identified_total=100,
            records_removed_duplicates=10,
            records_screened=95,
            records_excluded=50,
            exclusion_reasons=(("Wrong population", 40),),
        )

        data = generator.prisma(flow)

        assert data.is_valid is False
        assert any("Records screened (95)" in e for e in data.errors)
        assert any("exclusion reasons sum (40)" in e for e in data.errors)
        assert "No studies included" in data.warnings

    def test_empty_search(self, generator: PlotDataGenerator) -> None:
        data = generator.prisma(PRISMAFlow(records_identified_total=0))
        assert data.errors[0] == "No records identified"

    def test_unscreened_records_warn(self, generator: PlotDataGenerator) -> None:
        flow = PRISMAFlow(
            records_identified_total=100,
            records_screened=80,
            records_excluded=70,
            reports_sought=10,
            reports_assessed=10,
            studies_included=10,
        )

        data = generator.prisma(flow)

        assert data.is_valid is True
        assert "Not all records after duplicate removal were screened" in data.warnings

    def test_to_dict(self, generator: PlotDataGenerator, sample_flow: PRISMAFlow) -> None:
        data = generator.prisma(sample_flow).to_dict()

        assert data["plot_type"] == "prisma"
        assert data["identification"]["records_identified_databases"]["pubmed"] == 80
        assert data["validation"]["is_valid"] is True


class TestRankingChart:
    """Tests for ranking bars."""

    def test_bars_best_first(self, generator: PlotDataGenerator) -> None:
        ranking = TreatmentRanker().rank(
            ["A", "B"], np.array([0.0, 1.0]), np.array([[0.0, 0.0], [0.0, 0.25]])
        )

        chart = generator.ranking_chart(ranking)

        assert [bar.treatment for bar in chart.bars] == ["B", "A"]
        assert chart.rank_labels == ("Rank 1", "Rank 2")
        assert chart.bars[0].rank_probabilities == (1.0, 0.0)
        assert chart.to_dict()["plot_type"] == "ranking"
