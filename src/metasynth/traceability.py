"""Number formatting, interpretation thresholds and count validation.

Centralizes how statistics are rounded for display labels so plot data
and CLI output agree, and checks PRISMA flow numbers for internal
consistency.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PrecisionConfig:
    """Configuration for number formatting precision.

    References:
        - Cochrane Handbook 10.12.1 recommends 2 decimal places for SMD
        - APA 7th edition recommends p-values to 3 decimals (< 0.001)
    """

    p_value_decimals: int = 4
    p_value_min_threshold: float = 0.0001

    effect_size_decimals: int = 2

    ci_decimals: int = 2

    i_squared_decimals: int = 1
    tau_squared_decimals: int = 4
    q_statistic_decimals: int = 2

    weight_decimals: int = 1

    # Heterogeneity interpretation thresholds
    # Reference: Higgins JPT, Thompson SG. BMJ 2002;327:557-560
    I_SQUARED_LOW: float = 25.0
    I_SQUARED_MODERATE: float = 50.0
    I_SQUARED_HIGH: float = 75.0

    def format_p_value(self, value: float) -> str:
        """Format a p-value (e.g. "0.0234" or "< 0.0001")."""
        if value < self.p_value_min_threshold:
            return f"< {self.p_value_min_threshold}"
        return f"{value:.{self.p_value_decimals}f}"

    def format_effect(self, value: float) -> str:
        """Format an effect size on the reporting scale."""
        return f"{value:.{self.effect_size_decimals}f}"

    def format_ci(self, lower: float, upper: float) -> str:
        """Format a confidence interval (e.g. "[1.23, 4.56]")."""
        return f"[{lower:.{self.ci_decimals}f}, {upper:.{self.ci_decimals}f}]"

    def format_estimate_with_ci(self, value: float, lower: float, upper: float) -> str:
        """Format an estimate followed by its interval (e.g. "1.50 [1.10, 2.05]")."""
        return f"{self.format_effect(value)} {self.format_ci(lower, upper)}"

    def format_i_squared(self, value: float) -> str:
        """Format I² (0-100) with a percent sign."""
        return f"{value:.{self.i_squared_decimals}f}%"

    def format_weight(self, value: float) -> str:
        """Format a weight already expressed as a percentage (e.g. "33.3%")."""
        return f"{value:.{self.weight_decimals}f}%"

    def interpret_i_squared(self, value: float) -> str:
        """Interpret I² according to Cochrane guidelines.

        Reference:
            Higgins JPT, Thompson SG, Deeks JJ, Altman DG. BMJ 2003;327:557-560
        """
        if value < self.I_SQUARED_LOW:
            return "low"
        elif value < self.I_SQUARED_MODERATE:
            return "moderate"
        elif value < self.I_SQUARED_HIGH:
            return "substantial"
        else:
            return "considerable"


DEFAULT_PRECISION = PrecisionConfig()


def validate_prisma_flow(
    records_identified: int,
    duplicates_removed: int,
    records_screened: int,
    records_excluded: int,
    reports_sought: int,
    reports_not_retrieved: int,
    reports_assessed: int,
    reports_excluded: int,
    studies_included: int,
) -> list[str]:
    """Validate PRISMA flow numbers for internal consistency.

    Returns:
        List of validation errors (empty if all checks pass)
    """
    errors = []

    records_after_dedup = records_identified - duplicates_removed
    if records_screened > records_after_dedup:
        errors.append(
            f"Records screened ({records_screened}) exceeds records after "
            f"deduplication ({records_after_dedup})"
        )

    if records_excluded > records_screened:
        errors.append(
            f"Records excluded ({records_excluded}) exceeds records screened ({records_screened})"
        )

    expected_reports_sought = records_screened - records_excluded
    if reports_sought > expected_reports_sought:
        errors.append(
            f"Reports sought ({reports_sought}) exceeds records passing "
            f"screening ({expected_reports_sought})"
        )

    expected_assessed = reports_sought - reports_not_retrieved
    if reports_assessed > expected_assessed:
        errors.append(
            f"Reports assessed ({reports_assessed}) exceeds retrieved reports ({expected_assessed})"
        )

    if reports_excluded > reports_assessed:
        errors.append(
            f"Reports excluded ({reports_excluded}) exceeds reports assessed ({reports_assessed})"
        )

    expected_included = reports_assessed - reports_excluded
    if studies_included > expected_included:
        errors.append(
            f"Studies included ({studies_included}) exceeds reports "
            f"passing full-text review ({expected_included})"
        )

    all_values = [
        ("records_identified", records_identified),
        ("duplicates_removed", duplicates_removed),
        ("records_screened", records_screened),
        ("records_excluded", records_excluded),
        ("reports_sought", reports_sought),
        ("reports_not_retrieved", reports_not_retrieved),
        ("reports_assessed", reports_assessed),
        ("reports_excluded", reports_excluded),
        ("studies_included", studies_included),
    ]
    for name, value in all_values:
        if value < 0:
            errors.append(f"{name} cannot be negative (got {value})")

    return errors
