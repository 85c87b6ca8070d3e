"""
ERDDAP Client
=============

URL construction for griddap requests, downloads into scratch files and
netCDF decoding.
"""

from __future__ import annotations

import io
import logging
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import quote

import numpy as np
import pandas as pd
import requests
import xarray as xr

from xtracto.config import get_config, get_scratch_dir
from xtracto.coords import GridAxes, to_epoch_seconds
from xtracto.errors import DecodeError, TransportError
from xtracto.registry import DatasetDescriptor

logger = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _format_value(value: float) -> str:
    return repr(float(value))


def build_griddap_url(
    base_url: str,
    descriptor: DatasetDescriptor,
    lons: Sequence[float],
    lats: Sequence[float],
    times: Optional[Sequence[str]] = None,
    altitude: Optional[float] = None,
) -> str:
    """
    Build a griddap subset URL returning a netCDF file.

    Args:
        base_url: ERDDAP root, e.g. https://coastwatch.pfeg.noaa.gov/erddap
        descriptor: Dataset being queried
        lons: (start, stop) longitude in grid order
        lats: (start, stop) latitude in grid order
        times: (start, stop) ISO-8601 times; required when the dataset has a time axis
        altitude: Level on the vertical axis; the registry's minimum by default

    Returns:
        The request URL.
    """
    query = descriptor.var_name
    if descriptor.has_time:
        if times is None:
            raise ValueError(f"Dataset '{descriptor.dtype_name}' needs a time range")
        query += f"[({times[0]}):1:({times[1]})]"
    if descriptor.has_alt:
        if altitude is None:
            altitude = descriptor.min_alt or 0.0
        level = _format_value(altitude)
        query += f"[({level}):1:({level})]"
    query += f"[({_format_value(lats[0])}):1:({_format_value(lats[1])})]"
    query += f"[({_format_value(lons[0])}):1:({_format_value(lons[1])})]"
    return f"{base_url.rstrip('/')}/griddap/{descriptor.dataset_name}.nc?{query}"


def build_axes_url(base_url: str, descriptor: DatasetDescriptor) -> str:
    """URL returning only the coordinate variables of a dataset."""
    names = []
    if descriptor.has_time:
        names.append("time")
    if descriptor.has_alt:
        names.append(descriptor.alt_name)
    names.extend(["latitude", "longitude"])
    return f"{base_url.rstrip('/')}/griddap/{descriptor.dataset_name}.nc?{','.join(names)}"


def build_max_time_url(base_url: str, descriptor: DatasetDescriptor) -> str:
    """URL asking the server's dataset table for the current end of a time series."""
    constraint = quote(f'"{descriptor.dataset_name}"')
    return (
        f"{base_url.rstrip('/')}/tabledap/allDatasets.csv"
        f"?datasetID,maxTime&datasetID={constraint}"
    )


class ErddapClient:
    """
    Thin client for one ERDDAP server.

    Downloads go to a scratch directory that is removed as soon as the grid has
    been read, whether or not reading succeeded.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        verbose: bool = False,
        session: Optional[requests.Session] = None,
        scratch_dir: Optional[Path] = None,
    ):
        self.base_url = (base_url or get_config().erddap_url).rstrip("/")
        self.timeout = timeout if timeout is not None else get_config().download_timeout
        self.verbose = verbose
        self.session = session or requests.Session()
        self.scratch_dir = scratch_dir if scratch_dir is not None else get_scratch_dir()

    @property
    def _log_level(self) -> int:
        return logging.INFO if self.verbose else logging.DEBUG

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def _get(self, url: str, stream: bool = False) -> requests.Response:
        logger.log(self._log_level, f"GET {url}")
        try:
            response = self.session.get(url, stream=stream, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to ERDDAP failed: {e}", url=url) from e

        logger.log(self._log_level, f"HTTP {response.status_code} for {url}")
        if not response.ok:
            detail = response.text[:500].strip() if not stream else response.reason
            response.close()
            raise TransportError(
                f"ERDDAP returned HTTP {response.status_code}: {detail}", url=url
            )
        return response

    def fetch(self, url: str, destination: Path) -> None:
        """Download ``url`` into ``destination``."""
        response = self._get(url, stream=True)
        try:
            with open(destination, "wb") as f:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        f.write(chunk)
        except requests.RequestException as e:
            raise TransportError(f"Download interrupted: {e}", url=url) from e
        finally:
            response.close()

    # ========================================================================
    # DECODING
    # ========================================================================

    @staticmethod
    def read_grid(path: Path, var_name: str) -> xr.DataArray:
        """Read one variable from a netCDF file into memory."""
        try:
            with xr.open_dataset(path) as ds:
                if var_name not in ds:
                    raise DecodeError(
                        f"Variable '{var_name}' not found in {path.name}; "
                        f"available: {', '.join(map(str, ds.data_vars))}"
                    )
                return ds[var_name].load()
        except DecodeError:
            raise
        except (OSError, ValueError) as e:
            raise DecodeError(f"Could not read grid file {path.name}: {e}") from e

    def fetch_dataarray(self, url: str, var_name: str) -> xr.DataArray:
        """Download a subset and return the requested variable."""
        with tempfile.TemporaryDirectory(prefix="xtracto_", dir=self.scratch_dir) as tmp:
            path = Path(tmp) / "extract.nc"
            self.fetch(url, path)
            return self.read_grid(path, var_name)

    def fetch_values(self, url: str, var_name: str) -> np.ndarray:
        """Download a subset and return its values as a flat float array."""
        return np.asarray(self.fetch_dataarray(url, var_name).values, dtype=float).ravel()

    # ========================================================================
    # DATASET METADATA
    # ========================================================================

    def get_axes(self, descriptor: DatasetDescriptor) -> GridAxes:
        """Download the coordinate axes of a dataset."""
        url = build_axes_url(self.base_url, descriptor)
        with tempfile.TemporaryDirectory(prefix="xtracto_", dir=self.scratch_dir) as tmp:
            path = Path(tmp) / "axes.nc"
            self.fetch(url, path)
            try:
                with xr.open_dataset(path) as ds:
                    return self._axes_from_dataset(ds, descriptor)
            except KeyError as e:
                raise DecodeError(
                    f"Coordinate {e} missing for dataset '{descriptor.dataset_name}'"
                ) from e
            except (OSError, ValueError) as e:
                raise DecodeError(f"Could not read coordinates of '{descriptor.dataset_name}': {e}") from e

    @staticmethod
    def _axes_from_dataset(ds: xr.Dataset, descriptor: DatasetDescriptor) -> GridAxes:
        time = isotime = altitude = None
        if descriptor.has_time:
            stamps = pd.DatetimeIndex(ds["time"].values)
            time = to_epoch_seconds(stamps)
            isotime = np.asarray(stamps.strftime(ISO_FORMAT))
        if descriptor.has_alt:
            altitude = np.asarray(ds[descriptor.alt_name].values, dtype=float)
        return GridAxes(
            longitude=np.asarray(ds["longitude"].values, dtype=float),
            latitude=np.asarray(ds["latitude"].values, dtype=float),
            time=time,
            isotime=isotime,
            altitude=altitude,
        )

    def refresh_max_time(self, descriptor: DatasetDescriptor) -> DatasetDescriptor:
        """Return ``descriptor`` with the maximum time currently served."""
        url = build_max_time_url(self.base_url, descriptor)
        response = self._get(url)
        try:
            # second header row holds units
            table = pd.read_csv(io.StringIO(response.text), skiprows=[1])
            max_time = pd.Timestamp(table["maxTime"].iloc[0])
        except (KeyError, IndexError, ValueError, pd.errors.ParserError) as e:
            raise DecodeError(
                f"Could not read maxTime for '{descriptor.dataset_name}': {e}"
            ) from e
        if pd.isna(max_time):
            raise DecodeError(f"No maxTime reported for '{descriptor.dataset_name}'")
        if max_time.tzinfo is not None:
            max_time = max_time.tz_convert(None)
        logger.debug(f"{descriptor.dataset_name} maxTime is {max_time}")
        return replace(descriptor, max_time=max_time)
