"""
Service layer for coordinating business logic.

This package contains the calendar and upload collaborators, per-user
state and the high-level timeline service.
"""

from .calendar import CalendarSource, FileCalendarSource, StaticCalendarSource
from .state import UserState, UserStateRegistry
from .timeline_service import TimelineService
from .uploader import HttpSampleSink, RepositorySampleSink, SampleSink, SampleUploader

__all__ = [
    "CalendarSource",
    "FileCalendarSource",
    "HttpSampleSink",
    "RepositorySampleSink",
    "SampleSink",
    "SampleUploader",
    "StaticCalendarSource",
    "TimelineService",
    "UserState",
    "UserStateRegistry",
]
