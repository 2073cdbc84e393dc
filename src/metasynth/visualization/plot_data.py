"""Plot-ready data for meta-analysis figures.

Pure mappings from analysis results to renderer-agnostic records. No
statistics are computed here beyond ordering, scaling and formatting.

References:
    - Lewis S, Clarke M. BMJ 2001;322:1479-1480 (forest plots)
    - McGuinness LA, Higgins JPT. Res Synth Methods 2021;12:55-61 (robvis)
    - Page MJ, et al. BMJ 2021;372:n71 (PRISMA 2020)
"""

import math
from typing import Mapping, Optional, Sequence

from scipy import stats

from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import InsufficientDataError, InvalidInputError
from metasynth.models.analysis import EffectEstimate, PooledResult, PublicationBiasResult
from metasynth.models.network import TreatmentRanking
from metasynth.models.risk_of_bias import RiskLevel, domain_label
from metasynth.models.study import EffectMeasure
from metasynth.models.visualization import (
    ForestAxis,
    ForestPlotData,
    ForestRow,
    FunnelPlotData,
    FunnelPlotPoint,
    PRISMAFlow,
    PRISMAFlowData,
    RankingBar,
    RankingChartData,
    TrafficLightCell,
    TrafficLightGrid,
)
from metasynth.traceability import DEFAULT_PRECISION

# Common reference values for ratio-scale axes
LOG_TICKS = (0.01, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0, 10.0, 100.0)
AXIS_PADDING = 0.1
MIN_LOG_AXIS = 0.01


class PlotDataGenerator:
    """Generates plot data for forest, funnel, traffic-light, PRISMA and ranking charts."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.precision = DEFAULT_PRECISION

    # =========================================================================
    # Forest plot
    # =========================================================================

    def forest(
        self,
        estimates: Sequence[EffectEstimate],
        pooled: PooledResult,
        order: Optional[Sequence[str]] = None,
        labels: Optional[Mapping[str, str]] = None,
        title: str = "Forest Plot",
        favours_left: str = "Favours treatment",
        favours_right: str = "Favours control",
    ) -> ForestPlotData:
        """Forest plot rows: studies in ``order`` (default input order), pooled row last.

        Raises:
            InvalidInputError: Estimates do not match the studies in ``pooled``,
                or ``order`` is not a permutation of the study ids
        """
        estimates = list(estimates)
        if not estimates:
            raise InsufficientDataError("Forest plot", 1, 0)
        by_id = {e.study_id: e for e in estimates}
        weights = pooled.relative_weights
        if set(by_id) != set(weights) or len(by_id) != len(estimates):
            raise InvalidInputError(
                "estimates must match the studies contributing to the pooled result",
                field="estimates",
            )
        if any(e.measure != pooled.measure for e in estimates):
            raise InvalidInputError(
                "estimates and pooled result use different measures", field="measure"
            )

        order = list(order) if order is not None else [e.study_id for e in estimates]
        if sorted(order) != sorted(by_id):
            raise InvalidInputError(
                "order must list every study id exactly once", field="order", value=order
            )

        labels = labels or {}
        z_crit = float(stats.norm.ppf(1 - self.config.alpha / 2))
        rows = []
        for y, study_id in enumerate(order):
            estimate = by_id[study_id]
            ci = estimate.interval(z_crit, self.config.confidence_level)
            value = estimate.display_estimate
            rows.append(
                ForestRow(
                    label=labels.get(study_id, study_id),
                    study_id=study_id,
                    estimate=value,
                    lower=ci.lower,
                    upper=ci.upper,
                    y_position=y,
                    display_label=self.precision.format_estimate_with_ci(value, ci.lower, ci.upper),
                    weight_percent=weights[study_id],
                    weight_label=self.precision.format_weight(weights[study_id]),
                )
            )

        ci = pooled.confidence_interval
        rows.append(
            ForestRow(
                label=f"Overall ({pooled.model.value})",
                estimate=pooled.summary_estimate,
                lower=ci.lower,
                upper=ci.upper,
                y_position=len(order),
                display_label=self.precision.format_estimate_with_ci(
                    pooled.summary_estimate, ci.lower, ci.upper
                ),
                weight_percent=100.0,
                weight_label=self.precision.format_weight(100.0),
                is_summary=True,
            )
        )

        warnings = []
        if len(estimates) < 3:
            warnings.append("Very few studies (<3) - forest plot may not be informative")
        if pooled.degenerate:
            warnings.append("Single study: summary row repeats the study estimate")

        return ForestPlotData(
            title=title,
            measure=pooled.measure.value,
            model=pooled.model.value,
            rows=tuple(rows),
            axis=self.forest_axis(rows, pooled.measure),
            favours_left=favours_left,
            favours_right=favours_right,
            heterogeneity_label=self._heterogeneity_label(pooled),
            warnings=tuple(warnings),
        )

    def forest_axis(self, rows: Sequence[ForestRow], measure: EffectMeasure) -> ForestAxis:
        """X-axis range padded by 10% (in log space for ratios), always showing the null line."""
        null_value = measure.null_value
        values = [null_value]
        for row in rows:
            values.extend(v for v in (row.estimate, row.lower, row.upper) if math.isfinite(v))

        if measure.log_scale:
            low = max(MIN_LOG_AXIS, min(values))
            high = max(max(values), low)
            log_low, log_high = math.log(low), math.log(high)
            padding = (log_high - log_low) * AXIS_PADDING or math.log(2)
            low, high = math.exp(log_low - padding), math.exp(log_high + padding)
            ticks = _log_ticks(low, high)
        else:
            low, high = min(values), max(values)
            padding = (high - low) * AXIS_PADDING or 1.0
            low, high = low - padding, high + padding
            ticks = _linear_ticks(low, high)

        return ForestAxis(
            min=low, max=high, null_value=null_value, log_scale=measure.log_scale, ticks=ticks
        )

    def _heterogeneity_label(self, pooled: PooledResult) -> Optional[str]:
        het = pooled.heterogeneity
        if het is None or het.degrees_of_freedom == 0:
            return None
        return (
            f"Heterogeneity: I² = {self.precision.format_i_squared(het.i_squared)}, "
            f"τ² = {het.tau_squared:.{self.precision.tau_squared_decimals}f}, "
            f"Q = {het.q:.{self.precision.q_statistic_decimals}f} "
            f"(df = {het.degrees_of_freedom}, p = {self.precision.format_p_value(het.p_value)})"
        )

    # =========================================================================
    # Funnel plot
    # =========================================================================

    def funnel(self, result: PublicationBiasResult, measure: EffectMeasure | str) -> FunnelPlotData:
        """Funnel points in input order with pseudo confidence limits around the pooled effect."""
        measure = EffectMeasure.parse(measure)
        z_crit = float(stats.norm.ppf(1 - self.config.alpha / 2))
        points = tuple(
            FunnelPlotPoint(
                study_id=point.study_id,
                effect=point.effect,
                standard_error=point.standard_error,
                precision=point.precision,
                pseudo_lower=result.pooled_effect - z_crit * point.standard_error,
                pseudo_upper=result.pooled_effect + z_crit * point.standard_error,
            )
            for point in result.funnel_points
        )
        return FunnelPlotData(
            measure=measure.value,
            log_scale=measure.log_scale,
            pooled_effect=result.pooled_effect,
            points=points,
            egger_p_value=result.egger_p_value,
            is_asymmetric=result.is_asymmetric,
            warnings=result.warnings,
        )

    # =========================================================================
    # Risk of bias traffic light
    # =========================================================================

    def traffic_light(
        self,
        judgments: Mapping[str, Mapping[str, RiskLevel | str]],
        domains: Optional[Sequence[str]] = None,
    ) -> TrafficLightGrid:
        """Study x domain grid from externally supplied judgments.

        Missing study/domain combinations are shown as unclear. Domains
        default to every domain seen, in first-seen order, with "overall" last.
        """
        if not judgments:
            raise InsufficientDataError("Traffic light plot", 1, 0)

        parsed = {
            study_id: {domain: RiskLevel.parse(level) for domain, level in levels.items()}
            for study_id, levels in judgments.items()
        }
        if domains is None:
            seen: list[str] = []
            for levels in parsed.values():
                seen.extend(d for d in levels if d not in seen)
            domains = [d for d in seen if d != "overall"] + (["overall"] if "overall" in seen else [])
        domains = list(domains)
        if not domains:
            raise InvalidInputError("at least one domain is required", field="domains")

        studies = list(parsed)
        cells = tuple(
            TrafficLightCell(study_id, domain, parsed[study_id].get(domain, RiskLevel.UNCLEAR))
            for study_id in studies
            for domain in domains
        )

        percentages = []
        for domain in domains:
            levels = [parsed[s].get(domain, RiskLevel.UNCLEAR) for s in studies]
            percentages.append(
                (
                    domain,
                    tuple(
                        (level.value, levels.count(level) / len(studies) * 100)
                        for level in RiskLevel
                    ),
                )
            )
        counts = tuple(
            (level.value, sum(1 for cell in cells if cell.level == level)) for level in RiskLevel
        )

        return TrafficLightGrid(
            studies=tuple(studies),
            domains=tuple(domains),
            domain_labels=tuple(domain_label(d) for d in domains),
            cells=cells,
            domain_percentages=tuple(percentages),
            level_counts=counts,
            interpretation=_traffic_light_interpretation(len(studies), percentages),
        )

    # =========================================================================
    # PRISMA flow
    # =========================================================================

    def prisma(self, flow: PRISMAFlow) -> PRISMAFlowData:
        """PRISMA counts with consistency validation; inconsistencies are reported, not fixed."""
        errors = flow.validate()
        if flow.records_identified_total == 0:
            errors.insert(0, "No records identified")

        warnings = []
        if flow.records_screened < flow.records_after_deduplication:
            warnings.append("Not all records after duplicate removal were screened")
        if flow.studies_included == 0:
            warnings.append("No studies included")

        return PRISMAFlowData(flow=flow, errors=tuple(errors), warnings=tuple(warnings))

    # =========================================================================
    # Network ranking chart
    # =========================================================================

    def ranking_chart(self, ranking: TreatmentRanking) -> RankingChartData:
        """SUCRA / P-score bars, best first, with stacked rank probabilities."""
        bars = tuple(
            RankingBar(
                treatment=r.treatment_id,
                sucra=r.sucra,
                p_score=r.p_score,
                rank_probabilities=r.rank_distribution,
                mean_rank=r.mean_rank,
            )
            for r in ranking.rankings
        )
        return RankingChartData(
            component_index=ranking.component_index,
            bars=bars,
            rank_labels=tuple(f"Rank {i}" for i in range(1, len(bars) + 1)),
            sucra_tolerance=ranking.sucra_tolerance,
            warnings=ranking.warnings,
        )


def _log_ticks(low: float, high: float) -> tuple[float, ...]:
    ticks = [value for value in LOG_TICKS if low <= value <= high]
    if len(ticks) < 3:
        ticks = sorted(set(ticks) | {low, math.sqrt(low * high), high})
    return tuple(ticks)


def _linear_ticks(low: float, high: float) -> tuple[float, ...]:
    """Roughly five ticks at a 1, 2 or 5 × 10ⁿ step."""
    rough = (high - low) / 5
    magnitude = 10 ** math.floor(math.log10(rough))
    normalized = rough / magnitude
    if normalized < 1.5:
        step = magnitude
    elif normalized < 3:
        step = 2 * magnitude
    elif normalized < 7:
        step = 5 * magnitude
    else:
        step = 10 * magnitude

    ticks = []
    tick = math.ceil(low / step) * step
    while tick <= high + step * 1e-9:
        ticks.append(round(tick, 12))
        tick += step
    return tuple(ticks)


def _traffic_light_interpretation(study_count: int, percentages: Sequence) -> str:
    parts = [f"Assessed {study_count} studies across {len(percentages)} domains."]
    low_domains = [d for d, levels in percentages if dict(levels)["low"] >= 75]
    high_domains = [d for d, levels in percentages if dict(levels)["high"] >= 50]
    if low_domains:
        parts.append(f"Domains with low risk in at least 75% of studies: {', '.join(low_domains)}.")
    if high_domains:
        parts.append(f"Domains with high risk in at least 50% of studies: {', '.join(high_domains)}.")
    if not high_domains and len(low_domains) >= len(percentages) / 2:
        parts.append("Overall quality appears good across most domains.")
    elif len(high_domains) >= len(percentages) / 2:
        parts.append("Significant methodological concerns identified across multiple domains.")
    return " ".join(parts)
