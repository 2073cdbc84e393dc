"""Operation registry: operation name -> handler plus input schema.

The dispatch layer is the only place (besides the CLI) that logs. Engine
errors are logged and re-raised unchanged so callers can relay
``error.to_dict()`` verbatim.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterator, Mapping, Optional

from pydantic import BaseModel, ValidationError
from scipy import stats

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.analysis.heterogeneity import HeterogeneityAnalyzer
from metasynth.analysis.network import NetworkMetaAnalysisEngine
from metasynth.analysis.pooling import PoolingEngine
from metasynth.analysis.publication_bias import PublicationBiasDetector
from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import InvalidInputError, MetaSynthError, UnknownOperationError
from metasynth.logging import get_logger, log_failure, log_warning
from metasynth.models.analysis import EffectEstimate
from metasynth.models.study import EffectMeasure, StudyRecord
from metasynth.tools.schemas import (
    AssessHeterogeneityRequest,
    CalculateEffectSizeRequest,
    DetectPublicationBiasRequest,
    GeneratePlotDataRequest,
    PoolEffectsRequest,
    RunNetworkAnalysisRequest,
)
from metasynth.visualization.plot_data import PlotDataGenerator

logger = get_logger("registry")

Handler = Callable[[Any, AnalysisConfig], dict[str, Any]]


@dataclass(frozen=True)
class Operation:
    """A named engine entry point."""

    name: str
    description: str
    input_schema: type[BaseModel]
    handler: Handler


class OperationRegistry:
    """Maps operation identifiers to handlers."""

    def __init__(self) -> None:
        self._operations: dict[str, Operation] = {}

    def register(self, operation: Operation) -> None:
        if operation.name in self._operations:
            raise ValueError(f"Operation '{operation.name}' is already registered")
        self._operations[operation.name] = operation

    def get(self, name: str) -> Operation:
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperationError(name, list(self._operations)) from None

    def names(self) -> list[str]:
        return sorted(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._operations)

    def dispatch(
        self,
        name: str,
        payload: Mapping[str, Any],
        config: Optional[AnalysisConfig] = None,
    ) -> dict[str, Any]:
        """Validate ``payload``, run the handler and return a JSON-serialisable dict.

        Raises:
            UnknownOperationError: ``name`` is not registered
            InvalidInputError: Payload fails schema validation
            MetaSynthError: Any engine error, unchanged
        """
        try:
            operation = self.get(name)
            request = self._validate(operation, payload)
            effective = self._effective_config(config or DEFAULT_CONFIG, request)
        except MetaSynthError as e:
            log_failure(logger, f"Operation {name}", e, e.context, level=logging.WARNING)
            raise

        logger.debug(f"[registry] Running {name}")
        try:
            result = operation.handler(request, effective)
        except MetaSynthError as e:
            log_failure(logger, f"Operation {name}", e, e.context, level=logging.WARNING)
            raise

        for message in result.get("warnings", []):
            log_warning(logger, f"Operation {name}", message)
        logger.debug(f"[registry] {name} completed")
        return result

    def _validate(self, operation: Operation, payload: Mapping[str, Any]) -> BaseModel:
        try:
            return operation.input_schema.model_validate(dict(payload))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or None
            raise InvalidInputError(
                f"Invalid {operation.name} request: {first['msg']}", field=location
            ) from e

    def _effective_config(self, config: AnalysisConfig, request: BaseModel) -> AnalysisConfig:
        try:
            return config.with_overrides(**request.config_overrides())
        except ValueError as e:
            raise InvalidInputError(str(e), field="config") from e


# =============================================================================
# Handlers
# =============================================================================


def _load_studies(raw: list[dict[str, Any]]) -> list[StudyRecord]:
    return [StudyRecord.from_dict(study) for study in raw]


def _estimates(
    raw: list[dict[str, Any]], measure: EffectMeasure | str, config: AnalysisConfig
) -> list[EffectEstimate]:
    return EffectSizeCalculator(config).calculate_all(_load_studies(raw), measure)


def _calculate_effect_size(
    request: CalculateEffectSizeRequest, config: AnalysisConfig
) -> dict[str, Any]:
    measure = EffectMeasure.parse(request.measure)
    estimates = _estimates(request.studies, measure, config)
    z_crit = _z_crit(config)
    return {
        "measure": measure.value,
        "estimates": [
            {
                **estimate.to_dict(),
                "confidence_interval": estimate.interval(z_crit, config.confidence_level).to_dict(),
            }
            for estimate in estimates
        ],
    }


def _pool_effects(request: PoolEffectsRequest, config: AnalysisConfig) -> dict[str, Any]:
    studies = _load_studies(request.studies)
    estimates = EffectSizeCalculator(config).calculate_all(studies, request.measure)
    engine = PoolingEngine(config)
    result: dict[str, Any] = {
        "pooled": engine.pool(estimates, request.model).to_dict(),
        "estimates": [estimate.to_dict() for estimate in estimates],
    }
    if request.subgroup_by:
        assignments = {}
        for study in studies:
            value = study.covariate(request.subgroup_by)
            if value is not None:
                assignments[study.study_id] = str(value)
        subgroups = engine.subgroup_analysis(
            estimates, assignments, request.model, covariate=request.subgroup_by
        )
        result["subgroups"] = subgroups.to_dict()
    if request.leave_one_out:
        result["leave_one_out"] = [
            loo.to_dict() for loo in engine.leave_one_out(estimates, request.model)
        ]
    return result


def _assess_heterogeneity(
    request: AssessHeterogeneityRequest, config: AnalysisConfig
) -> dict[str, Any]:
    estimates = _estimates(request.studies, request.measure, config)
    return HeterogeneityAnalyzer(config).analyze(estimates).to_dict()


def _detect_publication_bias(
    request: DetectPublicationBiasRequest, config: AnalysisConfig
) -> dict[str, Any]:
    estimates = _estimates(request.studies, request.measure, config)
    return PublicationBiasDetector(config).detect(estimates).to_dict()


def _run_network_analysis(
    request: RunNetworkAnalysisRequest, config: AnalysisConfig
) -> dict[str, Any]:
    engine = NetworkMetaAnalysisEngine(config)
    result = engine.analyze(
        _load_studies(request.studies), request.measure, request.model, request.reference
    )
    return result.to_dict()


def _generate_plot_data(request: GeneratePlotDataRequest, config: AnalysisConfig) -> dict[str, Any]:
    generator = PlotDataGenerator(config)

    if request.plot_type == "traffic_light":
        return generator.traffic_light(request.judgments, request.domains).to_dict()
    if request.plot_type == "prisma":
        return generator.prisma(request.prisma.to_flow()).to_dict()

    if request.plot_type == "ranking":
        network = NetworkMetaAnalysisEngine(config).analyze(
            _load_studies(request.studies), request.measure, request.model, request.reference
        )
        return {
            "plot_type": "ranking",
            "charts": [generator.ranking_chart(ranking).to_dict() for ranking in network.rankings],
        }

    estimates = _estimates(request.studies, request.measure, config)
    if request.plot_type == "funnel":
        bias = PublicationBiasDetector(config).detect(estimates)
        return generator.funnel(bias, request.measure).to_dict()

    pooled = PoolingEngine(config).pool(estimates, request.model)
    return generator.forest(
        estimates, pooled, order=request.order, labels=request.labels, title=request.title
    ).to_dict()


def _z_crit(config: AnalysisConfig) -> float:
    return float(stats.norm.ppf(1 - config.alpha / 2))


def build_default_registry() -> OperationRegistry:
    """Registry with one operation per engine component."""
    registry = OperationRegistry()
    for name, description, schema, handler in (
        (
            "calculate_effect_size",
            "Per-study effect sizes (OR, RR, RD, MD, SMD) with variances",
            CalculateEffectSizeRequest,
            _calculate_effect_size,
        ),
        (
            "pool_effects",
            "Fixed- or random-effects pooled estimate, subgroups and leave-one-out",
            PoolEffectsRequest,
            _pool_effects,
        ),
        (
            "assess_heterogeneity",
            "Cochran's Q, I², tau² and H",
            AssessHeterogeneityRequest,
            _assess_heterogeneity,
        ),
        (
            "detect_publication_bias",
            "Egger's and Begg's funnel asymmetry tests",
            DetectPublicationBiasRequest,
            _detect_publication_bias,
        ),
        (
            "run_network_analysis",
            "Network geometry, loop consistency, consistency model and treatment ranking",
            RunNetworkAnalysisRequest,
            _run_network_analysis,
        ),
        (
            "generate_plot_data",
            "Forest, funnel, traffic-light, PRISMA or ranking plot data",
            GeneratePlotDataRequest,
            _generate_plot_data,
        ),
    ):
        registry.register(Operation(name, description, schema, handler))
    return registry


@lru_cache
def get_registry() -> OperationRegistry:
    """Get the cached default registry."""
    return build_default_registry()


def dispatch(
    name: str, payload: Mapping[str, Any], config: Optional[AnalysisConfig] = None
) -> dict[str, Any]:
    """Run a named operation on the default registry."""
    return get_registry().dispatch(name, payload, config)
