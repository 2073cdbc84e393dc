"""Risk of bias judgments consumed by the traffic-light plot.

Judgments are produced by an external quality-assessment step and passed in
as read-only input; nothing here assesses bias.

Reference:
- Sterne JAC, et al. BMJ 2019;366:l4898 (RoB 2)
"""

from enum import Enum

from metasynth.exceptions import InvalidInputError


class RiskLevel(str, Enum):
    """Risk of bias judgment levels."""

    LOW = "low"
    SOME_CONCERNS = "some_concerns"  # RoB 2 terminology
    HIGH = "high"
    UNCLEAR = "unclear"  # For incomplete information

    @property
    def symbol(self) -> str:
        """Return traffic light symbol for visualization."""
        symbols = {
            RiskLevel.LOW: "+",
            RiskLevel.SOME_CONCERNS: "?",
            RiskLevel.HIGH: "-",
            RiskLevel.UNCLEAR: "·",
        }
        return symbols[self]

    @property
    def color(self) -> str:
        """Return color for traffic light visualization."""
        colors = {
            RiskLevel.LOW: "#00a65a",  # Green
            RiskLevel.SOME_CONCERNS: "#f39c12",  # Yellow/Orange
            RiskLevel.HIGH: "#dd4b39",  # Red
            RiskLevel.UNCLEAR: "#d2d6de",  # Gray
        }
        return colors[self]

    @classmethod
    def parse(cls, value: "RiskLevel | str") -> "RiskLevel":
        """Accept enum members, values, or loose spellings ("Some concerns")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(text)
        except ValueError:
            valid = [level.value for level in cls]
            raise InvalidInputError(
                f"Unknown risk level '{value}'. Valid: {valid}", field="risk_level"
            ) from None


class RoB2Domain(str, Enum):
    """RoB 2 domains for randomized controlled trials.

    Reference: Sterne JAC, et al. BMJ 2019;366:l4898
    """

    D1_RANDOMIZATION = "D1"  # Bias arising from the randomization process
    D2_DEVIATIONS = "D2"  # Bias due to deviations from intended interventions
    D3_MISSING_DATA = "D3"  # Bias due to missing outcome data
    D4_MEASUREMENT = "D4"  # Bias in measurement of the outcome
    D5_SELECTION = "D5"  # Bias in selection of the reported result
    OVERALL = "overall"


ROB2_DOMAIN_SHORT_NAMES = {
    RoB2Domain.D1_RANDOMIZATION: "Randomization",
    RoB2Domain.D2_DEVIATIONS: "Deviations",
    RoB2Domain.D3_MISSING_DATA: "Missing data",
    RoB2Domain.D4_MEASUREMENT: "Measurement",
    RoB2Domain.D5_SELECTION: "Selection",
    RoB2Domain.OVERALL: "Overall",
}


def domain_label(domain: str) -> str:
    """Short display name for a domain key ("D1" -> "Randomization").

    Keys that are not RoB 2 domains are returned unchanged.
    """
    try:
        return ROB2_DOMAIN_SHORT_NAMES[RoB2Domain(domain)]
    except ValueError:
        return domain
