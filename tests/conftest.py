import numpy as np
import pandas as pd
import pytest
import xarray as xr

from xtracto.coords import GridAxes, to_epoch_seconds
from xtracto.errors import TransportError
from xtracto.registry import DatasetDescriptor, DatasetKind, DatasetRegistry

BASE_URL = "https://example.test/erddap"
SATELLITE_DATES = ["2006-01-05", "2006-01-13", "2006-01-21", "2006-01-29"]


def make_descriptor(**overrides) -> DatasetDescriptor:
    fields = dict(
        dtype_name="testSST8day",
        dataset_name="testSST8day",
        long_name="Test SST, 8-day",
        var_name="sst",
        kind=DatasetKind.GRIDDED,
        lon360=True,
        lat_descending=False,
        has_alt=True,
        min_lon=120.0,
        max_lon=320.0,
        min_lat=-45.0,
        max_lat=65.0,
        min_alt=0.0,
        max_alt=0.0,
        min_time=pd.Timestamp("2006-01-05"),
        max_time=pd.Timestamp("2006-01-29"),
        time_spacing="8 days",
    )
    fields.update(overrides)
    return DatasetDescriptor(**fields)


def make_axes(lat_descending: bool = False, with_time: bool = True) -> GridAxes:
    latitude = np.round(np.arange(38.0, 47.0001, 0.25), 2)
    if lat_descending:
        latitude = latitude[::-1]
    time = isotime = None
    if with_time:
        stamps = pd.DatetimeIndex(SATELLITE_DATES)
        time = to_epoch_seconds(stamps)
        isotime = np.asarray(stamps.strftime("%Y-%m-%dT%H:%M:%SZ"))
    return GridAxes(
        longitude=np.round(np.arange(225.0, 240.0001, 0.25), 2),
        latitude=latitude,
        time=time,
        isotime=isotime,
        altitude=np.array([0.0]) if with_time else None,
    )


class FakeClient:
    """Stands in for ErddapClient and records every request."""

    base_url = BASE_URL

    def __init__(self, axes=None, values=None, fail_on=(), max_time=None):
        self.axes = axes if axes is not None else make_axes()
        self.values = values
        self.fail_on = set(fail_on)
        self.max_time = max_time
        self.urls = []
        self.axes_calls = 0
        self.refresh_calls = 0

    def get_axes(self, descriptor):
        self.axes_calls += 1
        return self.axes

    def fetch_values(self, url, var_name):
        self.urls.append(url)
        if len(self.urls) in self.fail_on:
            raise TransportError("HTTP 500", url=url)
        if self.values is not None:
            return np.asarray(self.values, dtype=float)
        return np.array([1.0, 2.0, 3.0, np.nan]) + len(self.urls)

    def fetch_dataarray(self, url, var_name):
        self.urls.append(url)
        return self.values

    def refresh_max_time(self, descriptor):
        from dataclasses import replace

        self.refresh_calls += 1
        if self.max_time is None:
            return descriptor
        return replace(descriptor, max_time=pd.Timestamp(self.max_time))


@pytest.fixture
def descriptor():
    return make_descriptor()


@pytest.fixture
def registry(descriptor):
    return DatasetRegistry([descriptor])


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def grid_file(tmp_path):
    """A small netCDF file shaped like an ERDDAP griddap response."""
    ds = xr.Dataset(
        {"sst": (("time", "altitude", "latitude", "longitude"),
                 np.array([[[[10.0, 11.0], [12.0, np.nan]]]]))},
        coords={
            "time": pd.DatetimeIndex(["2006-01-13"]),
            "altitude": [0.0],
            "latitude": [40.0, 40.025],
            "longitude": [230.0, 230.025],
        },
    )
    path = tmp_path / "grid.nc"
    ds.to_netcdf(path)
    return path
