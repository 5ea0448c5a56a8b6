"""
Geodesy helpers.

Great-circle distances are computed with the haversine formula on numpy arrays
so the same code serves single points and whole sample windows. Geohashes come
from pygeohash.
"""

import numpy as np
import pandas as pd
import pygeohash as pgh

from ..constants import GeoConstants


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    return float(haversine_array(np.array([lat1]), np.array([lon1]), lat2, lon2)[0])


def haversine_array(
    lats: np.ndarray, lons: np.ndarray, lat2: np.ndarray | float, lon2: np.ndarray | float
) -> np.ndarray:
    """
    Vectorized haversine distance in meters.

    Args:
        lats: Latitudes of the first points
        lons: Longitudes of the first points
        lat2: Latitude(s) of the second point(s), broadcast against lats
        lon2: Longitude(s) of the second point(s), broadcast against lons

    Returns:
        Array of distances in meters
    """
    phi1 = np.radians(np.asarray(lats, dtype=float))
    phi2 = np.radians(np.asarray(lat2, dtype=float))
    dphi = phi2 - phi1
    dlmb = np.radians(np.asarray(lon2, dtype=float) - np.asarray(lons, dtype=float))
    a = np.sin(dphi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlmb / 2.0) ** 2
    return 2.0 * GeoConstants.EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def hop_distances(frame: pd.DataFrame) -> np.ndarray:
    """
    Distances between consecutive fixes of a window.

    Args:
        frame: DataFrame with 'latitude' and 'longitude' columns in time order

    Returns:
        Array of len(frame) - 1 hop distances in meters
    """
    if len(frame) < 2:
        return np.zeros(0)
    lats = frame["latitude"].to_numpy(dtype=float)
    lons = frame["longitude"].to_numpy(dtype=float)
    return haversine_array(lats[:-1], lons[:-1], lats[1:], lons[1:])


def centroid(lats: np.ndarray, lons: np.ndarray) -> tuple[float, float]:
    """Arithmetic centroid of nearby points (adequate below city scale)."""
    return float(np.mean(lats)), float(np.mean(lons))


def encode_geohash(
    lat: float, lon: float, precision: int = GeoConstants.CENTROID_GEOHASH_PRECISION
) -> str:
    """Geohash of a point."""
    return pgh.encode(lat, lon, precision=precision)


def neighbor_prefixes(
    lat: float,
    lon: float,
    radius_m: float,
    precision: int = GeoConstants.INDEX_GEOHASH_PRECISION,
) -> set[str]:
    """
    Geohash cells that may hold points within radius_m of a location.

    The point's own cell plus the cells of the eight points offset by radius_m
    in each compass and diagonal direction. For radii smaller than the cell
    size this covers every cell the search circle can touch.
    """
    dlat = np.degrees(radius_m / GeoConstants.EARTH_RADIUS_M)
    cos_lat = max(np.cos(np.radians(lat)), 1e-6)
    dlon = np.degrees(radius_m / (GeoConstants.EARTH_RADIUS_M * cos_lat))
    cells = set()
    for dy in (-dlat, 0.0, dlat):
        for dx in (-dlon, 0.0, dlon):
            plat = float(np.clip(lat + dy, GeoConstants.MIN_LATITUDE, GeoConstants.MAX_LATITUDE))
            plon = float(((lon + dx + 180.0) % 360.0) - 180.0)
            cells.add(pgh.encode(plat, plon, precision=precision))
    return cells
