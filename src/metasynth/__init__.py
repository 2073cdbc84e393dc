"""Metasynth - meta-analysis statistics engine for systematic reviews."""

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.analysis.heterogeneity import HeterogeneityAnalyzer
from metasynth.analysis.network import NetworkMetaAnalysisEngine
from metasynth.analysis.pooling import PoolingEngine
from metasynth.analysis.publication_bias import PublicationBiasDetector
from metasynth.config import AnalysisConfig
from metasynth.models.study import EffectMeasure, StudyRecord
from metasynth.visualization.plot_data import PlotDataGenerator

__version__ = "0.1.0"
__all__ = [
    "AnalysisConfig",
    "EffectMeasure",
    "EffectSizeCalculator",
    "HeterogeneityAnalyzer",
    "NetworkMetaAnalysisEngine",
    "PlotDataGenerator",
    "PoolingEngine",
    "PublicationBiasDetector",
    "StudyRecord",
]
