"""
Analysis layer.

This package contains anchor resolution, segment building, block grouping,
verification, pattern mining and hourly summaries.
"""

from .anchors import AnchorIndex, AnchorResolver
from .blocks import BlockGrouper
from .patterns import PatternIndex, anomalies_for_day, build_index, predictions_for_day
from .segments import SegmentBuilder
from .summarizer import HourlySummarizer
from .verification import VerificationEngine

__all__ = [
    "AnchorIndex",
    "AnchorResolver",
    "BlockGrouper",
    "HourlySummarizer",
    "PatternIndex",
    "SegmentBuilder",
    "VerificationEngine",
    "anomalies_for_day",
    "build_index",
    "predictions_for_day",
]
