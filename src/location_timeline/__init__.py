"""Location Timeline - activity segmentation and location blocks from phone samples."""

__version__ = "0.3.0"

from . import analysis, constants, data, exceptions, metrics, models, services
from .analysis import (
    AnchorIndex,
    AnchorResolver,
    BlockGrouper,
    HourlySummarizer,
    PatternIndex,
    SegmentBuilder,
    VerificationEngine,
)
from .data import SampleDataLoader, SampleIngestor, SampleStore, TimelineRepository
from .metrics import ConfidenceScorer, MovementClassifier
from .models import (
    ActivitySegment,
    Anchor,
    AnomalyReport,
    BlockKind,
    LocationBlock,
    MovementClass,
    PatternPrediction,
    PlannedEvent,
    RawSample,
    SampleSource,
    VerificationResult,
    VerificationStatus,
)
from .pipeline import Pipeline
from .services import TimelineService


def get_version() -> str:
    """Get the current version of location_timeline."""
    return __version__


def get_package_info() -> dict[str, str]:
    """Get package information including name and version."""
    return {
        "name": "location-timeline",
        "version": __version__,
        "description": "Activity segmentation and location blocks from phone samples",
    }


__all__ = [
    # Version & Info
    "get_version",
    "get_package_info",
    # Models
    "ActivitySegment",
    "Anchor",
    "AnomalyReport",
    "BlockKind",
    "LocationBlock",
    "MovementClass",
    "PatternPrediction",
    "PlannedEvent",
    "RawSample",
    "SampleSource",
    "VerificationResult",
    "VerificationStatus",
    # Calculators
    "ConfidenceScorer",
    "MovementClassifier",
    # Data Layer
    "SampleDataLoader",
    "SampleIngestor",
    "SampleStore",
    "TimelineRepository",
    # Analysis Layer
    "AnchorIndex",
    "AnchorResolver",
    "BlockGrouper",
    "HourlySummarizer",
    "PatternIndex",
    "SegmentBuilder",
    "VerificationEngine",
    # Services
    "TimelineService",
    # Pipeline
    "Pipeline",
    # Modules
    "analysis",
    "constants",
    "data",
    "exceptions",
    "metrics",
    "models",
    "services",
]
