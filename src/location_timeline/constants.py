"""
Constants used throughout the Location Timeline package.

This module centralizes all magic numbers and commonly used values to improve
maintainability and clarity. Tunable thresholds live in the settings models;
the values here are their defaults and the fixed physical constants.
"""

from typing import Final


# === Time Constants ===
class TimeConstants:
    """Time-related constants."""

    SECONDS_PER_MINUTE: Final[int] = 60
    SECONDS_PER_HOUR: Final[int] = 3600
    SECONDS_PER_DAY: Final[int] = 86400
    MINUTES_PER_DAY: Final[int] = 1440
    HOURS_PER_DAY: Final[int] = 24
    DAYS_PER_WEEK: Final[int] = 7


# === Geodesy ===
class GeoConstants:
    """Geographic constants."""

    EARTH_RADIUS_M: Final[float] = 6_371_000.0
    MIN_LATITUDE: Final[float] = -90.0
    MAX_LATITUDE: Final[float] = 90.0
    MIN_LONGITUDE: Final[float] = -180.0
    MAX_LONGITUDE: Final[float] = 180.0
    FULL_CIRCLE_DEG: Final[float] = 360.0

    # Geohash precisions
    CENTROID_GEOHASH_PRECISION: Final[int] = 7  # ~150m cell
    INDEX_GEOHASH_PRECISION: Final[int] = 5  # ~4.9km cell, used for candidate lookup
    DEDUPE_COORD_DECIMALS: Final[int] = 5  # ~1.1m


# === Movement Classification Defaults ===
class MovementDefaults:
    """Default thresholds for the movement classifier."""

    MAX_ACCURACY_M: Final[float] = 50.0
    MIN_SAMPLES: Final[int] = 3
    SPEED_FLOOR_MPS: Final[float] = 1.0
    DISTANCE_FLOOR_M: Final[float] = 200.0
    STILL_SPEED_MPS: Final[float] = 0.3  # "definitely still" override
    DRIFT_HOP_M: Final[float] = 10.0  # hops below this count as GPS drift
    REPORTED_SPEED_SHARE: Final[float] = 0.5  # share of fixes needing a speed


# === Window Splitting Defaults ===
class WindowDefaults:
    """Default parameters for splitting a sample stream into windows."""

    STAY_RADIUS_M: Final[float] = 100.0
    MAX_SAMPLE_GAP_S: Final[int] = 15 * 60
    MIN_DWELL_S: Final[int] = 5 * 60


# === Anchor Resolution Defaults ===
class AnchorDefaults:
    """Default parameters for anchor matching and retention."""

    MATCH_RADIUS_M: Final[float] = 150.0
    MIN_RADIUS_M: Final[float] = 50.0
    MAX_RADIUS_M: Final[float] = 300.0
    HISTORY_DAYS: Final[int] = 14

    # Place category inference
    HOME_NIGHT_START_HOUR: Final[int] = 22
    HOME_NIGHT_END_HOUR: Final[int] = 6
    HOME_MIN_HOURS: Final[float] = 2.0
    WORK_START_HOUR: Final[int] = 9
    WORK_END_HOUR: Final[int] = 17
    WORK_MIN_HOURS: Final[float] = 3.0


# === Confidence Scoring ===
class ConfidenceWeights:
    """Weights for segment confidence scoring."""

    DENSITY_WEIGHT: Final[float] = 0.4
    CERTAINTY_WEIGHT: Final[float] = 0.4
    BASE_SCORE: Final[float] = 0.2
    EXPECTED_SAMPLES_PER_HOUR: Final[float] = 12.0  # one fix every 5 minutes

    SCREEN_STATIONARY_BOOST: Final[float] = 0.1
    SLEEP_STATIONARY_BOOST: Final[float] = 0.15
    SLEEP_TRAVELING_PENALTY: Final[float] = -0.2
    WORKOUT_TRAVELING_BOOST: Final[float] = 0.1
    STEPS_STATIONARY_PENALTY: Final[float] = -0.1
    HIGH_STEPS_PER_HOUR: Final[float] = 3000.0


# === Block Grouping Defaults ===
class BlockDefaults:
    """Default parameters for block merging and gap filling."""

    MERGE_GAP_S: Final[int] = 5 * 60
    DAYTIME_CARRY_CAP_S: Final[int] = 3 * 3600
    OVERNIGHT_CARRY_CAP_S: Final[int] = 12 * 3600
    MAX_CARRY_DISTANCE_M: Final[float] = 1000.0
    REST_WINDOW_START_HOUR: Final[int] = 22
    REST_WINDOW_END_HOUR: Final[int] = 7
    SLEEP_OVERLAP_RATIO: Final[float] = 0.6
    CARRY_CONFIDENCE_DECAY: Final[float] = 0.5


# === Verification ===
class VerificationDefaults:
    """Default parameters for planned-vs-actual verification."""

    MIN_MATCH_RATIO: Final[float] = 0.5

    CATEGORY_EXPECTATIONS: Final[dict[str, list[str]]] = {
        "work": ["office", "coworking"],
        "health": ["gym", "fitness", "park", "recreation"],
        "meal": ["restaurant", "cafe", "bar", "home"],
        "routine": ["home"],
        "faith": ["church", "temple", "mosque"],
        "sleep": ["home"],
    }


# === Pattern Mining ===
class PatternDefaults:
    """Default parameters for the pattern index."""

    SLOT_MINUTES: Final[int] = 30
    MIN_CONFIDENCE: Final[float] = 0.6
    HISTORY_DAYS: Final[int] = 14


# === Sample Store ===
class StoreDefaults:
    """Default parameters for the pending-sample store."""

    MAX_PENDING: Final[int] = 10_000
    PEEK_BATCH: Final[int] = 500


# === Categories ===
class PlaceCategories:
    """Well-known place and block categories."""

    HOME: Final[str] = "home"
    OFFICE: Final[str] = "office"
    TRAVEL: Final[str] = "travel"
    SLEEP: Final[str] = "sleep"
    UNKNOWN: Final[str] = "unknown"


# === File Extensions ===
class FileExtensions:
    """Common file extensions."""

    CSV: Final[str] = ".csv"
    JSON: Final[str] = ".json"
    YAML: Final[str] = ".yaml"
    YML: Final[str] = ".yml"
