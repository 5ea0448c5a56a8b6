"""
Metric calculators.

This package contains geodesy helpers, the movement classifier and the
segment confidence scorer.
"""

from .base import BaseWindowCalculator, samples_to_frame
from .confidence import ConfidenceScorer
from .geo import centroid, encode_geohash, haversine_array, haversine_m
from .movement import MovementClassifier

__all__ = [
    "BaseWindowCalculator",
    "ConfidenceScorer",
    "MovementClassifier",
    "centroid",
    "encode_geohash",
    "haversine_array",
    "haversine_m",
    "samples_to_frame",
]
