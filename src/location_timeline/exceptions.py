"""
Custom exceptions for the Location Timeline package.

This module defines all custom exceptions used throughout the application,
providing clear error hierarchies and specific error types for different scenarios.
"""


class LocationTimelineError(Exception):
    """Base exception for all Location Timeline errors."""


class ConfigurationError(LocationTimelineError):
    """Raised when there is an issue with configuration settings."""


class ValidationError(LocationTimelineError):
    """Raised when data validation fails."""


class InvalidSampleError(ValidationError):
    """Raised when a raw sample is physically impossible or malformed."""


class DataLoadError(LocationTimelineError):
    """Raised when there is an error loading data files."""


class StorageError(LocationTimelineError):
    """Raised when the local sample store or timeline database fails."""


class ProcessingError(LocationTimelineError):
    """Raised when there is an error processing timeline data."""


class ExternalServiceError(LocationTimelineError):
    """Raised when an external collaborator fails or times out."""


class PlaceLookupError(ExternalServiceError):
    """Raised when the place lookup service cannot resolve a location."""


class CalendarFetchError(ExternalServiceError):
    """Raised when planned events cannot be fetched."""


class UploadError(ExternalServiceError):
    """Raised when pending samples cannot be delivered to the sink."""


class ReprocessInProgressError(LocationTimelineError):
    """Raised when a day is already being reprocessed for the same user."""

    def __init__(self, user_id: str, day: object):
        self.user_id = user_id
        self.day = day
        super().__init__(f"Reprocessing already in progress for {user_id} on {day}")


class InvariantViolationError(LocationTimelineError):
    """Raised when derived data would break a structural invariant."""
