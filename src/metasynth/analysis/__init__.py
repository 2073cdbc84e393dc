"""Statistical analysis module for meta-analysis."""

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.analysis.heterogeneity import HeterogeneityAnalyzer
from metasynth.analysis.network import NetworkMetaAnalysisEngine
from metasynth.analysis.pooling import PoolingEngine
from metasynth.analysis.publication_bias import PublicationBiasDetector
from metasynth.analysis.ranking import TreatmentRanker

__all__ = [
    "EffectSizeCalculator",
    "HeterogeneityAnalyzer",
    "NetworkMetaAnalysisEngine",
    "PoolingEngine",
    "PublicationBiasDetector",
    "TreatmentRanker",
]
