"""Data models for plot-ready visualization data.

Models for forest and funnel plots, risk-of-bias traffic lights, PRISMA
flow diagrams and network ranking charts. They describe what to draw, never
how: no model here knows about a rendering library.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from metasynth.models.risk_of_bias import RiskLevel


# =============================================================================
# Forest plot
# =============================================================================


@dataclass(frozen=True)
class ForestRow:
    """One row of a forest plot (a study, or the pooled diamond).

    Estimates and bounds are on the reporting scale.
    """

    label: str
    estimate: float
    lower: float
    upper: float
    y_position: int
    display_label: str  # e.g. "2.11 [0.71, 6.28]"
    weight_percent: Optional[float] = None
    weight_label: str = ""  # e.g. "33.3%"
    study_id: Optional[str] = None
    is_summary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "study_id": self.study_id,
            "estimate": self.estimate,
            "lower": self.lower,
            "upper": self.upper,
            "y_position": self.y_position,
            "display_label": self.display_label,
            "weight_percent": self.weight_percent,
            "weight_label": self.weight_label,
            "is_summary": self.is_summary,
        }


@dataclass(frozen=True)
class ForestAxis:
    """X-axis configuration for a forest plot."""

    min: float
    max: float
    null_value: float  # 1 for OR/RR, 0 otherwise
    log_scale: bool
    ticks: tuple[float, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "null_value": self.null_value,
            "log_scale": self.log_scale,
            "ticks": list(self.ticks),
        }


@dataclass(frozen=True)
class ForestPlotData:
    """Forest plot: study rows in caller order, pooled summary row last."""

    title: str
    measure: str
    model: str
    rows: tuple[ForestRow, ...]
    axis: ForestAxis
    favours_left: str
    favours_right: str
    heterogeneity_label: Optional[str] = None
    warnings: tuple[str, ...] = ()

    @property
    def study_rows(self) -> tuple[ForestRow, ...]:
        return tuple(row for row in self.rows if not row.is_summary)

    @property
    def summary_row(self) -> ForestRow:
        return self.rows[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_type": "forest",
            "title": self.title,
            "measure": self.measure,
            "model": self.model,
            "rows": [row.to_dict() for row in self.rows],
            "x_axis": self.axis.to_dict(),
            "favours": {"left": self.favours_left, "right": self.favours_right},
            "heterogeneity_label": self.heterogeneity_label,
            "warnings": list(self.warnings),
        }


# =============================================================================
# Funnel plot
# =============================================================================


@dataclass(frozen=True)
class FunnelPlotPoint:
    """A study on the funnel plot with its pseudo 95% limits around the pooled effect."""

    study_id: str
    effect: float
    standard_error: float
    precision: float
    pseudo_lower: float
    pseudo_upper: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "study_id": self.study_id,
            "effect": self.effect,
            "standard_error": self.standard_error,
            "precision": self.precision,
            "pseudo_lower": self.pseudo_lower,
            "pseudo_upper": self.pseudo_upper,
        }


@dataclass(frozen=True)
class FunnelPlotData:
    """Funnel plot on the analysis scale, points in input order."""

    measure: str
    log_scale: bool
    pooled_effect: float
    points: tuple[FunnelPlotPoint, ...]
    egger_p_value: Optional[float] = None
    is_asymmetric: bool = False
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_type": "funnel",
            "measure": self.measure,
            "log_scale": self.log_scale,
            "pooled_effect": self.pooled_effect,
            "points": [point.to_dict() for point in self.points],
            "egger_p_value": self.egger_p_value,
            "is_asymmetric": self.is_asymmetric,
            "warnings": list(self.warnings),
        }


# =============================================================================
# Risk of bias traffic light
# =============================================================================


@dataclass(frozen=True)
class TrafficLightCell:
    study_id: str
    domain: str
    level: RiskLevel

    def to_dict(self) -> dict[str, Any]:
        return {
            "study_id": self.study_id,
            "domain": self.domain,
            "level": self.level.value,
            "symbol": self.level.symbol,
            "color": self.level.color,
        }


@dataclass(frozen=True)
class TrafficLightGrid:
    """Study x domain grid of risk-of-bias judgments.

    ``domain_percentages`` maps each domain to the share of studies at each
    risk level (percentages, summing to 100 per domain).
    """

    studies: tuple[str, ...]
    domains: tuple[str, ...]
    domain_labels: tuple[str, ...]
    cells: tuple[TrafficLightCell, ...]
    domain_percentages: tuple[tuple[str, tuple[tuple[str, float], ...]], ...]
    level_counts: tuple[tuple[str, int], ...]
    interpretation: str = ""

    def cell(self, study_id: str, domain: str) -> TrafficLightCell:
        for cell in self.cells:
            if cell.study_id == study_id and cell.domain == domain:
                return cell
        raise KeyError((study_id, domain))

    def percentages_for(self, domain: str) -> dict[str, float]:
        return dict(dict(self.domain_percentages)[domain])

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_type": "traffic_light",
            "studies": list(self.studies),
            "domains": list(self.domains),
            "domain_labels": list(self.domain_labels),
            "cells": [cell.to_dict() for cell in self.cells],
            "domain_percentages": {
                domain: dict(levels) for domain, levels in self.domain_percentages
            },
            "level_counts": dict(self.level_counts),
            "interpretation": self.interpretation,
        }


# =============================================================================
# PRISMA flow
# =============================================================================


@dataclass(frozen=True)
class PRISMAFlow:
    """PRISMA 2020 flow diagram counts.

    Tracks the flow of records through the systematic review process.
    Numbers are validated for consistency, never corrected.
    """

    # Identification
    records_identified_total: int
    records_identified_databases: tuple[tuple[str, int], ...] = ()
    records_identified_registers: int = 0
    records_removed_duplicates: int = 0

    # Screening
    records_screened: int = 0
    records_excluded: int = 0
    exclusion_reasons: tuple[tuple[str, int], ...] = ()

    # Eligibility
    reports_sought: int = 0
    reports_not_retrieved: int = 0
    reports_assessed: int = 0
    reports_excluded: int = 0
    reports_exclusion_reasons: tuple[tuple[str, int], ...] = ()

    # Inclusion
    studies_included: int = 0
    studies_in_synthesis: int = 0

    @property
    def records_after_deduplication(self) -> int:
        """Records remaining after duplicate removal.

        Formula: records_identified_total - records_removed_duplicates
        Source: PRISMA 2020 Statement (Page et al., BMJ 2021;372:n71)
        """
        return self.records_identified_total - self.records_removed_duplicates

    @property
    def exclusion_rate(self) -> float:
        """Percentage of screened records excluded (0.0-100.0)."""
        if self.records_screened == 0:
            return 0.0
        return (self.records_excluded / self.records_screened) * 100

    @property
    def retrieval_rate(self) -> float:
        """Percentage of sought reports successfully retrieved (0.0-100.0)."""
        if self.reports_sought == 0:
            return 0.0
        retrieved = self.reports_sought - self.reports_not_retrieved
        return (retrieved / self.reports_sought) * 100

    @property
    def eligibility_exclusion_rate(self) -> float:
        """Percentage of assessed full texts excluded (0.0-100.0)."""
        if self.reports_assessed == 0:
            return 0.0
        return (self.reports_excluded / self.reports_assessed) * 100

    def validate(self) -> list[str]:
        """Validate internal consistency of PRISMA flow numbers.

        Returns:
            List of validation error messages (empty if all checks pass)
        """
        from metasynth.traceability import validate_prisma_flow

        errors = validate_prisma_flow(
            records_identified=self.records_identified_total,
            duplicates_removed=self.records_removed_duplicates,
            records_screened=self.records_screened,
            records_excluded=self.records_excluded,
            reports_sought=self.reports_sought,
            reports_not_retrieved=self.reports_not_retrieved,
            reports_assessed=self.reports_assessed,
            reports_excluded=self.reports_excluded,
            studies_included=self.studies_included,
        )
        return errors + self.validate_reason_totals()

    def validate_reason_totals(self) -> list[str]:
        """Check that per-source and per-reason breakdowns add up.

        Returns:
            List of validation error messages (empty if all checks pass)
        """
        errors = []
        if self.records_identified_databases:
            db_sum = sum(count for _, count in self.records_identified_databases)
            if db_sum > self.records_identified_total:
                errors.append(
                    f"Database counts sum ({db_sum}) exceeds "
                    f"records_identified_total ({self.records_identified_total})"
                )
        if self.exclusion_reasons:
            reason_sum = sum(count for _, count in self.exclusion_reasons)
            if reason_sum != self.records_excluded:
                errors.append(
                    f"Screening exclusion reasons sum ({reason_sum}) does not match "
                    f"records_excluded ({self.records_excluded})"
                )
        if self.reports_exclusion_reasons:
            reason_sum = sum(count for _, count in self.reports_exclusion_reasons)
            if reason_sum != self.reports_excluded:
                errors.append(
                    f"Full-text exclusion reasons sum ({reason_sum}) does not match "
                    f"reports_excluded ({self.reports_excluded})"
                )
        if self.studies_in_synthesis > self.studies_included:
            errors.append(
                f"Studies in synthesis ({self.studies_in_synthesis}) exceeds "
                f"studies included ({self.studies_included})"
            )
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "identification": {
                "records_identified_total": self.records_identified_total,
                "records_identified_databases": dict(self.records_identified_databases),
                "records_identified_registers": self.records_identified_registers,
                "duplicates_removed": self.records_removed_duplicates,
                "records_after_deduplication": self.records_after_deduplication,
            },
            "screening": {
                "records_screened": self.records_screened,
                "records_excluded": self.records_excluded,
                "exclusion_reasons": dict(self.exclusion_reasons),
                "exclusion_rate": self.exclusion_rate,
            },
            "eligibility": {
                "reports_sought": self.reports_sought,
                "reports_not_retrieved": self.reports_not_retrieved,
                "reports_assessed": self.reports_assessed,
                "reports_excluded": self.reports_excluded,
                "exclusion_reasons": dict(self.reports_exclusion_reasons),
                "retrieval_rate": self.retrieval_rate,
                "exclusion_rate": self.eligibility_exclusion_rate,
            },
            "included": {
                "studies_included": self.studies_included,
                "studies_in_synthesis": self.studies_in_synthesis,
            },
        }


@dataclass(frozen=True)
class PRISMAFlowData:
    """PRISMA counts plus validation outcome, ready for a flow diagram."""

    flow: PRISMAFlow
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_type": "prisma",
            **self.flow.to_dict(),
            "validation": {
                "is_valid": self.is_valid,
                "errors": list(self.errors),
                "warnings": list(self.warnings),
            },
        }


# =============================================================================
# Network ranking chart
# =============================================================================


@dataclass(frozen=True)
class RankingBar:
    """One treatment's bar plus stacked rank probabilities."""

    treatment: str
    sucra: float
    p_score: float
    rank_probabilities: tuple[float, ...]
    mean_rank: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "treatment": self.treatment,
            "sucra": self.sucra,
            "p_score": self.p_score,
            "rank_probabilities": list(self.rank_probabilities),
            "mean_rank": self.mean_rank,
        }


@dataclass(frozen=True)
class RankingChartData:
    """SUCRA / P-score bars for one connected component, best first."""

    component_index: int
    bars: tuple[RankingBar, ...]
    rank_labels: tuple[str, ...]  # "Rank 1", "Rank 2", ...
    sucra_tolerance: float
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plot_type": "ranking",
            "component_index": self.component_index,
            "bars": [bar.to_dict() for bar in self.bars],
            "rank_labels": list(self.rank_labels),
            "sucra_tolerance": self.sucra_tolerance,
            "warnings": list(self.warnings),
        }
