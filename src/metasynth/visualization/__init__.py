"""Plot-ready data for meta-analysis figures."""

from metasynth.visualization.plot_data import PlotDataGenerator

__all__ = ["PlotDataGenerator"]
