"""Pydantic request schemas for the named operations.

Study records stay plain dicts here: :meth:`StudyRecord.from_dict` owns the
per-study validation so errors name the offending study and field.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from metasynth.models.analysis import PoolingModel
from metasynth.models.visualization import PRISMAFlow


class OperationRequest(BaseModel):
    """Options shared by every operation; unset options keep the caller's config."""

    model_config = ConfigDict(extra="forbid")

    alpha: Optional[float] = Field(None, gt=0, lt=1, description="Two-sided significance level")

    def config_overrides(self) -> dict[str, Any]:
        """Analysis config fields this request overrides."""
        return {"alpha": self.alpha}


class StudySetRequest(OperationRequest):
    measure: str = Field(description="Effect measure: OR, RR, RD, MD or SMD")
    studies: list[dict[str, Any]] = Field(min_length=1)
    continuity_correction: Optional[float] = Field(None, gt=0)

    def config_overrides(self) -> dict[str, Any]:
        return {
            **super().config_overrides(),
            "continuity_correction": self.continuity_correction,
        }


class CalculateEffectSizeRequest(StudySetRequest):
    """Per-study effect sizes."""


class PoolEffectsRequest(StudySetRequest):
    """Pooled effect, optionally with subgroup and leave-one-out analyses."""

    model: PoolingModel = PoolingModel.RANDOM
    hartung_knapp: Optional[bool] = None
    subgroup_by: Optional[str] = Field(None, description="Covariate key to group studies by")
    leave_one_out: bool = False

    def config_overrides(self) -> dict[str, Any]:
        return {**super().config_overrides(), "hartung_knapp": self.hartung_knapp}


class AssessHeterogeneityRequest(StudySetRequest):
    """Heterogeneity statistics (at least two studies)."""


class DetectPublicationBiasRequest(StudySetRequest):
    """Funnel asymmetry tests."""

    egger_threshold: Optional[float] = Field(None, gt=0, lt=1)

    def config_overrides(self) -> dict[str, Any]:
        return {**super().config_overrides(), "egger_threshold": self.egger_threshold}


class RunNetworkAnalysisRequest(StudySetRequest):
    """Network meta-analysis over studies with labelled arms."""

    model: PoolingModel = PoolingModel.RANDOM
    hartung_knapp: Optional[bool] = None
    reference: Optional[str] = None
    higher_is_better: Optional[bool] = None
    n_simulations: Optional[int] = Field(None, ge=100)
    random_seed: Optional[int] = None

    def config_overrides(self) -> dict[str, Any]:
        return {
            **super().config_overrides(),
            "hartung_knapp": self.hartung_knapp,
            "higher_is_better": self.higher_is_better,
            "n_simulations": self.n_simulations,
            "random_seed": self.random_seed,
        }


class PRISMAInput(BaseModel):
    """PRISMA 2020 flow counts."""

    model_config = ConfigDict(extra="forbid")

    records_identified_total: int = Field(ge=0)
    records_identified_databases: dict[str, int] = Field(default_factory=dict)
    records_identified_registers: int = Field(0, ge=0)
    records_removed_duplicates: int = Field(0, ge=0)
    records_screened: int = Field(0, ge=0)
    records_excluded: int = Field(0, ge=0)
    exclusion_reasons: dict[str, int] = Field(default_factory=dict)
    reports_sought: int = Field(0, ge=0)
    reports_not_retrieved: int = Field(0, ge=0)
    reports_assessed: int = Field(0, ge=0)
    reports_excluded: int = Field(0, ge=0)
    reports_exclusion_reasons: dict[str, int] = Field(default_factory=dict)
    studies_included: int = Field(0, ge=0)
    studies_in_synthesis: int = Field(0, ge=0)

    def to_flow(self) -> PRISMAFlow:
        data = self.model_dump()
        for key in ("records_identified_databases", "exclusion_reasons", "reports_exclusion_reasons"):
            data[key] = tuple(data[key].items())
        return PRISMAFlow(**data)


PlotType = Literal["forest", "funnel", "traffic_light", "prisma", "ranking"]


class GeneratePlotDataRequest(OperationRequest):
    """Plot-ready data for one visualization kind."""

    plot_type: PlotType

    # forest / funnel / ranking
    measure: Optional[str] = None
    studies: Optional[list[dict[str, Any]]] = None
    model: PoolingModel = PoolingModel.RANDOM
    order: Optional[list[str]] = None
    labels: dict[str, str] = Field(default_factory=dict)
    title: str = "Forest Plot"

    # ranking
    reference: Optional[str] = None
    higher_is_better: Optional[bool] = None
    n_simulations: Optional[int] = Field(None, ge=100)
    random_seed: Optional[int] = None

    # traffic_light: study id -> domain -> risk level
    judgments: Optional[dict[str, dict[str, str]]] = None
    domains: Optional[list[str]] = None

    # prisma
    prisma: Optional[PRISMAInput] = None

    @model_validator(mode="after")
    def check_plot_inputs(self) -> "GeneratePlotDataRequest":
        if self.plot_type in ("forest", "funnel", "ranking"):
            if not self.measure or not self.studies:
                raise ValueError(f"{self.plot_type} plot requires 'measure' and 'studies'")
        elif self.plot_type == "traffic_light" and not self.judgments:
            raise ValueError("traffic_light plot requires 'judgments'")
        elif self.plot_type == "prisma" and self.prisma is None:
            raise ValueError("prisma plot requires 'prisma' counts")
        return self

    def config_overrides(self) -> dict[str, Any]:
        return {
            **super().config_overrides(),
            "higher_is_better": self.higher_is_better,
            "n_simulations": self.n_simulations,
            "random_seed": self.random_seed,
        }
