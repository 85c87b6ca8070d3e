"""
Box and Polygon Extraction
==========================

Download the full grid of a variable inside a longitude/latitude/time box, or
inside the bounding box of a polygon with the cells outside it masked.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import xarray as xr
from matplotlib.path import Path as PolygonPath

from xtracto.coords import (
    nearest_index,
    normalize_longitudes,
    parse_dates,
    resolve_altitude,
    resolve_indices,
    to_epoch_seconds,
    to_request_scale,
)
from xtracto.erddap import ErddapClient, build_griddap_url
from xtracto.errors import ValidationError
from xtracto.registry import DatasetId, DatasetRegistry, get_registry
from xtracto.track import validate_coverage

logger = logging.getLogger(__name__)


def _as_range(values, name: str) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(values, dtype=float))
    if arr.size != 2:
        raise ValidationError(f"{name} must be a (min, max) pair, got {arr.size} values")
    return np.sort(arr)


def extract_box(
    xpos: Sequence[float],
    ypos: Sequence[float],
    tpos: Optional[Sequence] = None,
    dtype: DatasetId = 1,
    verbose: bool = False,
    *,
    registry: Optional[DatasetRegistry] = None,
    client: Optional[ErddapClient] = None,
) -> xr.DataArray:
    """
    Extract the grid of a variable inside a box.

    Args:
        xpos: (min, max) longitude, 0-360 or -180-180
        ypos: (min, max) latitude
        tpos: (start, end) time; ignored for bathymetry
        dtype: Dataset name or 1-based index into the registry

    Returns:
        The variable with its coordinates, longitudes on the caller's scale.
    """
    xpos = _as_range(xpos, "xpos")
    ypos = _as_range(ypos, "ypos")

    if registry is None:
        registry = get_registry()
    descriptor = registry.lookup(dtype)
    if client is None:
        client = ErddapClient(verbose=verbose)
    xpos1 = normalize_longitudes(xpos, descriptor.lon360)
    if xpos1[0] > xpos1[1]:
        edge = "0/360" if descriptor.lon360 else "-180/180"
        raise ValidationError(
            f"longitude range [{xpos[0]}, {xpos[1]}] crosses the {edge} edge of "
            f"'{descriptor.dtype_name}'; split it into two requests"
        )
    lon_range = (float(xpos1[0]), float(xpos1[1]))
    lat_range = (float(ypos[0]), float(ypos[1]))

    dates = time_range = None
    if descriptor.has_time:
        if tpos is None or len(np.atleast_1d(tpos)) != 2:
            raise ValidationError("tpos must be a (start, end) pair for this dataset")
        dates = parse_dates(tpos).sort_values()
        time_range = (dates[0], dates[-1])
    descriptor = validate_coverage(descriptor, client, lon_range, lat_range, time_range)

    axes = client.get_axes(descriptor)
    indices = resolve_indices(
        axes, lon_range[0], lon_range[1], lat_range[0], lat_range[1],
        lat_descending=descriptor.lat_descending,
    )
    times = None
    if dates is not None:
        seconds = to_epoch_seconds(dates)
        times = (
            axes.isotime[nearest_index(axes.time, seconds[0])],
            axes.isotime[nearest_index(axes.time, seconds[-1])],
        )

    url = build_griddap_url(
        client.base_url,
        descriptor,
        lons=(axes.longitude[indices.lon[0]], axes.longitude[indices.lon[1]]),
        lats=(axes.latitude[indices.lat[0]], axes.latitude[indices.lat[1]]),
        times=times,
        altitude=resolve_altitude(axes, descriptor.min_alt),
    )
    data = client.fetch_dataarray(url, descriptor.var_name)
    logger.info(f"Extracted {descriptor.dtype_name} box with shape {data.shape}")

    if "longitude" in data.coords:
        data = data.assign_coords(
            longitude=np.atleast_1d(to_request_scale(data["longitude"].values, xpos))
        )
    return data


def polygon_mask(data: xr.DataArray, xpoly, ypoly) -> xr.DataArray:
    """Boolean mask over the data's latitude/longitude, True inside the polygon."""
    lon2d, lat2d = np.meshgrid(data["longitude"].values, data["latitude"].values)
    polygon = PolygonPath(np.column_stack([xpoly, ypoly]))
    inside = polygon.contains_points(np.column_stack([lon2d.ravel(), lat2d.ravel()]))
    return xr.DataArray(
        inside.reshape(lon2d.shape),
        coords={"latitude": data["latitude"].values, "longitude": data["longitude"].values},
        dims=("latitude", "longitude"),
    )


def extract_polygon(
    xpoly: Sequence[float],
    ypoly: Sequence[float],
    tpos: Optional[Sequence] = None,
    dtype: DatasetId = 1,
    verbose: bool = False,
    *,
    registry: Optional[DatasetRegistry] = None,
    client: Optional[ErddapClient] = None,
) -> xr.DataArray:
    """
    Extract the grid of a variable inside a polygon.

    The bounding box of the polygon is downloaded and every cell whose centre
    lies outside the polygon is set to NaN.
    """
    xpoly = np.asarray(xpoly, dtype=float)
    ypoly = np.asarray(ypoly, dtype=float)
    if xpoly.shape != ypoly.shape or xpoly.ndim != 1:
        raise ValidationError(
            f"polygon coordinates must be matching 1-D sequences, got {xpoly.shape} and {ypoly.shape}"
        )
    if xpoly.size < 3:
        raise ValidationError(f"a polygon needs at least 3 vertices, got {xpoly.size}")

    data = extract_box(
        (xpoly.min(), xpoly.max()),
        (ypoly.min(), ypoly.max()),
        tpos,
        dtype,
        verbose,
        registry=registry,
        client=client,
    )
    # the box longitudes are on the caller's scale, so are the vertices
    return data.where(polygon_mask(data, xpoly, ypoly))


# xtractomatic function names
xtracto_3d = extract_box
xtractogon = extract_polygon
