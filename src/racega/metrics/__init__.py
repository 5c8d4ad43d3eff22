"""Training metrics tracking."""

from .tracker import EpisodeMetrics, LapRecord, MetricsTracker

__all__ = ["EpisodeMetrics", "LapRecord", "MetricsTracker"]
