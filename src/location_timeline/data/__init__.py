"""
Data access layer.

This package contains modules for ingesting, buffering, storing and loading
raw samples, for reverse geocoding, and for splitting samples into windows.
"""

from .ingestion import SampleIngestor, parse_timestamp
from .loader import SampleDataLoader
from .place_lookup import NominatimPlaceLookup, PlaceLookup
from .repository import TimelineRepository
from .store import SampleStore
from .windows import ClassifiedWindow, SampleWindow, WindowSplitter, local_day_bounds

__all__ = [
    "ClassifiedWindow",
    "NominatimPlaceLookup",
    "PlaceLookup",
    "SampleDataLoader",
    "SampleIngestor",
    "SampleStore",
    "SampleWindow",
    "TimelineRepository",
    "WindowSplitter",
    "local_day_bounds",
    "parse_timestamp",
]
