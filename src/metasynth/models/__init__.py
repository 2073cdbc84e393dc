"""Models package."""

from metasynth.models.analysis import (
    ConfidenceInterval,
    EffectEstimate,
    HeterogeneityStats,
    PooledResult,
    PoolingModel,
    PublicationBiasResult,
)
from metasynth.models.network import (
    ConsistencyResult,
    NetworkAnalysisResult,
    NetworkGraph,
    RankingResult,
)
from metasynth.models.risk_of_bias import RiskLevel
from metasynth.models.study import ArmData, EffectMeasure, OutcomeType, StudyRecord

__all__ = [
    "ArmData",
    "ConfidenceInterval",
    "ConsistencyResult",
    "EffectEstimate",
    "EffectMeasure",
    "HeterogeneityStats",
    "NetworkAnalysisResult",
    "NetworkGraph",
    "OutcomeType",
    "PooledResult",
    "PoolingModel",
    "PublicationBiasResult",
    "RankingResult",
    "RiskLevel",
    "StudyRecord",
]
