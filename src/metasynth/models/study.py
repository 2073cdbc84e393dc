"""Data models for study-level input.

A :class:`StudyRecord` is one study's contribution to a comparison: two
arms for a pairwise analysis, two or more labelled arms for a network.
Records are immutable once ingested.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from metasynth.exceptions import InvalidInputError


class OutcomeType(str, Enum):
    """Kind of per-arm data."""

    BINARY = "binary"
    CONTINUOUS = "continuous"


class EffectMeasure(str, Enum):
    """Type of effect measure."""

    ODDS_RATIO = "OR"
    RISK_RATIO = "RR"
    RISK_DIFFERENCE = "RD"
    MEAN_DIFFERENCE = "MD"
    STANDARDIZED_MEAN_DIFFERENCE = "SMD"

    @property
    def log_scale(self) -> bool:
        """Ratio measures are estimated and combined on the log scale."""
        return self in (EffectMeasure.ODDS_RATIO, EffectMeasure.RISK_RATIO)

    @property
    def outcome_type(self) -> OutcomeType:
        """Outcome type the measure is computed from."""
        if self in (
            EffectMeasure.ODDS_RATIO,
            EffectMeasure.RISK_RATIO,
            EffectMeasure.RISK_DIFFERENCE,
        ):
            return OutcomeType.BINARY
        return OutcomeType.CONTINUOUS

    @property
    def null_value(self) -> float:
        """Value of no effect on the reporting scale."""
        return 1.0 if self.log_scale else 0.0

    @classmethod
    def parse(cls, value: "EffectMeasure | str") -> "EffectMeasure":
        """Accept either the short code ("OR") or the long name ("odds_ratio")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.upper() == member.value or text.lower() == member.name.lower():
                return member
        valid = [m.value for m in cls]
        raise InvalidInputError(f"Unknown effect measure '{value}'. Valid: {valid}", field="measure")


@dataclass(frozen=True)
class ArmData:
    """Outcome data for one arm of a study."""

    treatment: Optional[str] = None

    # Binary outcome
    events: Optional[int] = None
    total: Optional[int] = None

    # Continuous outcome
    mean: Optional[float] = None
    sd: Optional[float] = None
    n: Optional[int] = None

    @property
    def outcome_type(self) -> Optional[OutcomeType]:
        if self.events is not None or self.total is not None:
            return OutcomeType.BINARY
        if self.mean is not None or self.sd is not None or self.n is not None:
            return OutcomeType.CONTINUOUS
        return None

    @property
    def sample_size(self) -> int:
        """Participants randomized to the arm (0 when unknown)."""
        if self.total is not None:
            return int(self.total)
        if self.n is not None:
            return int(self.n)
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization, omitting unset fields."""
        data = {
            "treatment": self.treatment,
            "events": self.events,
            "total": self.total,
            "mean": self.mean,
            "sd": self.sd,
            "n": self.n,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class StudyRecord:
    """One study's contribution to one comparison.

    The first arm is the treatment (intervention) arm and the second the
    control arm for pairwise analyses. Network analyses use every labelled
    arm. A pre-computed ``effect`` with its ``standard_error`` (or a
    ``ci_lower``/``ci_upper`` interval) may be supplied instead of arm data.
    """

    study_id: str
    arms: tuple[ArmData, ...] = ()
    study_name: str = ""
    year: Optional[int] = None

    # Pre-computed effect on the analysis scale (log for OR/RR)
    effect: Optional[float] = None
    standard_error: Optional[float] = None
    # Reporting-scale CI, used to derive the SE when none is given
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None

    covariates: tuple[tuple[str, Any], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.study_id:
            raise InvalidInputError("study_id is required", field="study_id")
        # Accept lists/dicts from callers but store immutable tuples
        object.__setattr__(self, "arms", tuple(self.arms))
        if isinstance(self.covariates, Mapping):
            object.__setattr__(self, "covariates", tuple(sorted(self.covariates.items())))
        else:
            object.__setattr__(self, "covariates", tuple(self.covariates))

    # === Constructors ===

    @classmethod
    def binary(
        cls,
        study_id: str,
        events_treatment: int,
        total_treatment: int,
        events_control: int,
        total_control: int,
        treatment: Optional[str] = None,
        control: Optional[str] = None,
        **kwargs: Any,
    ) -> "StudyRecord":
        """Create a two-arm study with binary (2x2) data."""
        return cls(
            study_id=study_id,
            arms=(
                ArmData(treatment=treatment, events=events_treatment, total=total_treatment),
                ArmData(treatment=control, events=events_control, total=total_control),
            ),
            **kwargs,
        )

    @classmethod
    def continuous(
        cls,
        study_id: str,
        mean_t: float,
        sd_t: float,
        n_t: int,
        mean_c: float,
        sd_c: float,
        n_c: int,
        treatment: Optional[str] = None,
        control: Optional[str] = None,
        **kwargs: Any,
    ) -> "StudyRecord":
        """Create a two-arm study with continuous summary statistics."""
        return cls(
            study_id=study_id,
            arms=(
                ArmData(treatment=treatment, mean=mean_t, sd=sd_t, n=n_t),
                ArmData(treatment=control, mean=mean_c, sd=sd_c, n=n_c),
            ),
            **kwargs,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StudyRecord":
        """Build a record from the JSON input contract.

        Accepts ``arms`` (list of per-arm dicts), the flat binary keys
        ``events_treatment/total_treatment/events_control/total_control``,
        the flat continuous keys ``mean_t/sd_t/n_t/mean_c/sd_c/n_c``, or a
        pre-computed ``effect`` with ``standard_error`` or ``ci_lower``/``ci_upper``.
        """
        if not isinstance(data, Mapping):
            raise InvalidInputError("study must be an object", value=type(data).__name__)
        raw_id = data.get("study_id")
        if raw_id is None:
            raw_id = data.get("id")
        study_id = "" if raw_id is None else str(raw_id)
        if not study_id:
            raise InvalidInputError("study_id is required", field="study_id")

        covariates = data.get("covariates")
        if covariates is None:
            covariates = {}
        elif not isinstance(covariates, Mapping):
            raise InvalidInputError(
                "covariates must be an object", study_id=study_id, field="covariates"
            )
        common: dict[str, Any] = {
            "study_name": str(data.get("study_name", "")),
            "year": _optional_int(data.get("year"), study_id, "year"),
            "covariates": dict(covariates),
        }

        arms_data = data.get("arms")
        if arms_data is not None:
            if not isinstance(arms_data, list) or not all(
                isinstance(arm, Mapping) for arm in arms_data
            ):
                raise InvalidInputError(
                    "arms must be a list of objects", study_id=study_id, field="arms"
                )
        if arms_data:
            arms = tuple(_arm_from_dict(arm, study_id) for arm in arms_data)
            return cls(study_id=study_id, arms=arms, **common)

        if "events_treatment" in data or "events_control" in data:
            return cls.binary(
                study_id,
                events_treatment=_required_int(data, "events_treatment", study_id),
                total_treatment=_required_int(data, "total_treatment", study_id),
                events_control=_required_int(data, "events_control", study_id),
                total_control=_required_int(data, "total_control", study_id),
                treatment=data.get("treatment"),
                control=data.get("control"),
                **common,
            )

        if "mean_t" in data or "mean_c" in data:
            return cls.continuous(
                study_id,
                mean_t=_required_float(data, "mean_t", study_id),
                sd_t=_required_float(data, "sd_t", study_id),
                n_t=_required_int(data, "n_t", study_id),
                mean_c=_required_float(data, "mean_c", study_id),
                sd_c=_required_float(data, "sd_c", study_id),
                n_c=_required_int(data, "n_c", study_id),
                treatment=data.get("treatment"),
                control=data.get("control"),
                **common,
            )

        if "effect" in data:
            ci_lower = _optional_float(data.get("ci_lower"), study_id, "ci_lower")
            ci_upper = _optional_float(data.get("ci_upper"), study_id, "ci_upper")
            if data.get("standard_error") is None and (ci_lower is None or ci_upper is None):
                raise InvalidInputError(
                    "standard_error or ci_lower/ci_upper is required",
                    study_id=study_id,
                    field="standard_error",
                )
            return cls(
                study_id=study_id,
                effect=_required_float(data, "effect", study_id),
                standard_error=_optional_float(
                    data.get("standard_error"), study_id, "standard_error"
                ),
                ci_lower=ci_lower,
                ci_upper=ci_upper,
                **common,
            )

        raise InvalidInputError(
            "no arm data, 2x2 counts, continuous summaries or pre-computed effect found",
            study_id=study_id,
        )

    # === Accessors ===

    @property
    def has_precomputed_effect(self) -> bool:
        if self.effect is None:
            return False
        return self.standard_error is not None or (
            self.ci_lower is not None and self.ci_upper is not None
        )

    @property
    def treatment_arm(self) -> ArmData:
        if len(self.arms) < 2:
            raise InvalidInputError(
                "at least two arms are required", study_id=self.study_id, field="arms"
            )
        return self.arms[0]

    @property
    def control_arm(self) -> ArmData:
        if len(self.arms) < 2:
            raise InvalidInputError(
                "at least two arms are required", study_id=self.study_id, field="arms"
            )
        return self.arms[1]

    @property
    def treatments(self) -> tuple[str, ...]:
        """Treatment labels of all labelled arms, in arm order."""
        return tuple(arm.treatment for arm in self.arms if arm.treatment is not None)

    @property
    def is_multi_arm(self) -> bool:
        return len(self.arms) > 2

    @property
    def sample_size(self) -> int:
        return sum(arm.sample_size for arm in self.arms)

    def covariate(self, name: str, default: Any = None) -> Any:
        """Look up a study-level covariate."""
        return dict(self.covariates).get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "study_id": self.study_id,
            "study_name": self.study_name,
            "arms": [arm.to_dict() for arm in self.arms],
        }
        if self.year is not None:
            data["year"] = self.year
        if self.effect is not None:
            data["effect"] = self.effect
            for key in ("standard_error", "ci_lower", "ci_upper"):
                if getattr(self, key) is not None:
                    data[key] = getattr(self, key)
        if self.covariates:
            data["covariates"] = dict(self.covariates)
        return data


# =============================================================================
# Parsing helpers
# =============================================================================


def _coerce_float(value: Any, study_id: str, field_name: str) -> float:
    if isinstance(value, bool):
        raise InvalidInputError("must be numeric", study_id=study_id, field=field_name, value=value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(
            "must be numeric", study_id=study_id, field=field_name, value=value
        ) from None
    if not math.isfinite(number):
        raise InvalidInputError("must be finite", study_id=study_id, field=field_name, value=value)
    return number


def _coerce_int(value: Any, study_id: str, field_name: str) -> int:
    number = _coerce_float(value, study_id, field_name)
    if not number.is_integer():
        raise InvalidInputError("must be an integer", study_id=study_id, field=field_name, value=value)
    return int(number)


def _required_float(data: Mapping[str, Any], key: str, study_id: str) -> float:
    if data.get(key) is None:
        raise InvalidInputError("is required", study_id=study_id, field=key)
    return _coerce_float(data[key], study_id, key)


def _required_int(data: Mapping[str, Any], key: str, study_id: str) -> int:
    if data.get(key) is None:
        raise InvalidInputError("is required", study_id=study_id, field=key)
    return _coerce_int(data[key], study_id, key)


def _optional_int(value: Any, study_id: str, field_name: str) -> Optional[int]:
    return None if value is None else _coerce_int(value, study_id, field_name)


def _optional_float(value: Any, study_id: str, field_name: str) -> Optional[float]:
    return None if value is None else _coerce_float(value, study_id, field_name)


def _arm_from_dict(arm: Mapping[str, Any], study_id: str) -> ArmData:
    treatment = arm.get("treatment")
    if "events" in arm or "total" in arm:
        return ArmData(
            treatment=None if treatment is None else str(treatment),
            events=_required_int(arm, "events", study_id),
            total=_required_int(arm, "total", study_id),
        )
    return ArmData(
        treatment=None if treatment is None else str(treatment),
        mean=_required_float(arm, "mean", study_id),
        sd=_required_float(arm, "sd", study_id),
        n=_required_int(arm, "n", study_id),
    )
