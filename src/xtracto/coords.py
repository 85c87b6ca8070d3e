"""
Coordinate Handling
===================

Longitude conventions, bounds checks against dataset coverage, and mapping of
requested coordinates onto the discrete ERDDAP grid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from xtracto.errors import OutOfBoundsError
from xtracto.registry import DatasetDescriptor

logger = logging.getLogger(__name__)

EPOCH = pd.Timestamp("1970-01-01")


# ============================================================================
# LONGITUDE CONVENTIONS
# ============================================================================

def _rescale(values, inside, wrap):
    arr = np.asarray(values, dtype=float)
    # values already in range pass through untouched so conversions are idempotent
    out = np.where(inside(arr), arr, wrap(arr))
    if out.ndim == 0:
        return float(out)
    return out


def make360(lon):
    """Map longitudes onto [0, 360)."""
    return _rescale(
        lon,
        lambda a: (a >= 0.0) & (a < 360.0),
        lambda a: np.mod(a, 360.0),
    )


def make180(lon):
    """Map longitudes onto [-180, 180)."""
    return _rescale(
        lon,
        lambda a: (a >= -180.0) & (a < 180.0),
        lambda a: np.mod(a + 180.0, 360.0) - 180.0,
    )


def normalize_longitudes(lon, lon360: bool):
    """Put longitudes on the convention of the target dataset."""
    return make360(lon) if lon360 else make180(lon)


def to_request_scale(lon, requested):
    """Report longitudes on the scale the caller used for ``requested``."""
    requested = np.asarray(requested, dtype=float)
    if np.nanmax(requested) > 180.0:
        lon = make360(lon)
    if np.nanmin(requested) < 0.0:
        lon = make180(lon)
    return lon


# ============================================================================
# TIME
# ============================================================================

def _naive_utc(value) -> pd.Timestamp:
    if isinstance(value, np.str_):
        value = str(value)
    stamp = pd.Timestamp(value)
    return stamp.tz_convert(None) if stamp.tzinfo is not None else stamp


def parse_dates(tpos) -> pd.DatetimeIndex:
    """Parse requested dates as naive UTC timestamps."""
    return pd.DatetimeIndex([_naive_utc(t) for t in np.atleast_1d(tpos)])


def to_epoch_seconds(times) -> np.ndarray:
    """Seconds since 1970-01-01 for each timestamp, as ERDDAP reports time."""
    index = pd.DatetimeIndex(times)
    if index.tz is not None:
        index = index.tz_convert(None)
    return ((index - EPOCH) / pd.Timedelta(seconds=1)).to_numpy(dtype=float)


# ============================================================================
# BOUNDS
# ============================================================================

def check_bounds(
    descriptor: DatasetDescriptor,
    lon_range: Tuple[float, float],
    lat_range: Tuple[float, float],
    time_range: Optional[Tuple[pd.Timestamp, pd.Timestamp]] = None,
) -> None:
    """
    Check that the union bounding box of a request lies inside the dataset.

    Longitudes must already be on the dataset's convention.

    Raises:
        OutOfBoundsError: naming every axis that falls outside the coverage.
    """
    problems = []
    axes = []

    if lon_range[0] < descriptor.min_lon or lon_range[1] > descriptor.max_lon:
        axes.append("longitude")
        problems.append(
            f"longitude [{lon_range[0]}, {lon_range[1]}] outside "
            f"[{descriptor.min_lon}, {descriptor.max_lon}]"
        )

    if lat_range[0] < descriptor.min_lat or lat_range[1] > descriptor.max_lat:
        axes.append("latitude")
        problems.append(
            f"latitude [{lat_range[0]}, {lat_range[1]}] outside "
            f"[{descriptor.min_lat}, {descriptor.max_lat}]"
        )

    if (
        time_range is not None
        and descriptor.min_time is not None
        and descriptor.max_time is not None
        and (time_range[0] < descriptor.min_time or time_range[1] > descriptor.max_time)
    ):
        axes.append("time")
        problems.append(
            f"time [{time_range[0]}, {time_range[1]}] outside "
            f"[{descriptor.min_time}, {descriptor.max_time}]"
        )

    if problems:
        for problem in problems:
            logger.warning(f"{descriptor.dtype_name}: {problem}")
        raise OutOfBoundsError(
            f"Coordinates out of bounds for dataset '{descriptor.dtype_name}': "
            + "; ".join(problems),
            axes=axes,
        )


# ============================================================================
# GRID INDICES
# ============================================================================

@dataclass(frozen=True, eq=False)
class GridAxes:
    """Coordinate values of a dataset's grid."""

    longitude: np.ndarray
    latitude: np.ndarray
    time: Optional[np.ndarray] = None
    isotime: Optional[np.ndarray] = None
    altitude: Optional[np.ndarray] = None


@dataclass(frozen=True)
class ResolvedIndices:
    """Grid indices a single request resolves to."""

    lon: Tuple[int, int]
    lat: Tuple[int, int]
    time: Optional[int] = None


def nearest_index(axis: Sequence[float], value: float) -> int:
    """Index of the grid value closest to ``value``; the lower index wins ties."""
    return int(np.argmin(np.abs(np.asarray(axis, dtype=float) - value)))


def resolve_indices(
    axes: GridAxes,
    xmin: float,
    xmax: float,
    ymin: float,
    ymax: float,
    t: Optional[float] = None,
    lat_descending: bool = False,
) -> ResolvedIndices:
    """
    Map a lon/lat box and a time onto grid indices.

    The box is given north-up; on a north-to-south latitude axis the latitude
    limits are swapped so the index pair follows the axis order.
    """
    if lat_descending:
        ymin, ymax = ymax, ymin

    time_index = None
    if t is not None and axes.time is not None:
        time_index = nearest_index(axes.time, t)

    return ResolvedIndices(
        lon=(nearest_index(axes.longitude, xmin), nearest_index(axes.longitude, xmax)),
        lat=(nearest_index(axes.latitude, ymin), nearest_index(axes.latitude, ymax)),
        time=time_index,
    )


def resolve_altitude(axes: GridAxes, target: Optional[float] = None) -> Optional[float]:
    """Level of the vertical axis closest to ``target`` (the lowest level by default)."""
    if axes.altitude is None or len(axes.altitude) == 0:
        return None
    if target is None:
        return float(np.min(axes.altitude))
    return float(axes.altitude[nearest_index(axes.altitude, target)])
