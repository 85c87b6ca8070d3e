import numpy as np
import pandas as pd
import pytest
import requests
import xarray as xr

from xtracto.erddap import (
    ErddapClient,
    build_axes_url,
    build_griddap_url,
    build_max_time_url,
)
from xtracto.errors import DecodeError, TransportError
from xtracto.registry import DatasetKind

from conftest import BASE_URL, make_descriptor


class FakeResponse:
    def __init__(self, status_code=200, content=b"", reason="OK"):
        self.status_code = status_code
        self.content = content
        self.reason = reason
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    @property
    def text(self):
        return self.content.decode()

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses and records the requested URLs."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.urls = []

    def get(self, url, stream=False, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response


def make_client(tmp_path, response=None, error=None):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    session = FakeSession(response=response, error=error)
    return ErddapClient(base_url=BASE_URL, session=session, scratch_dir=scratch), session, scratch


# ============================================================================
# URLS
# ============================================================================

def test_build_griddap_url_with_altitude():
    url = build_griddap_url(
        BASE_URL + "/",
        make_descriptor(dataset_name="erdMBsstd8day"),
        lons=(230.0, 230.025),
        lats=(40.0, 40.025),
        times=("2006-01-13T00:00:00Z", "2006-01-13T00:00:00Z"),
    )
    assert url == (
        "https://example.test/erddap/griddap/erdMBsstd8day.nc?sst"
        "[(2006-01-13T00:00:00Z):1:(2006-01-13T00:00:00Z)]"
        "[(0.0):1:(0.0)]"
        "[(40.0):1:(40.025)]"
        "[(230.0):1:(230.025)]"
    )


def test_build_griddap_url_without_altitude_uses_numpy_values():
    url = build_griddap_url(
        BASE_URL,
        make_descriptor(has_alt=False),
        lons=(np.float64(-130.5), np.float64(-130.0)),
        lats=(np.float64(45.0), np.float64(44.5)),
        times=("2006-01-13T00:00:00Z", "2006-01-21T00:00:00Z"),
    )
    assert url.endswith("[(45.0):1:(44.5)][(-130.5):1:(-130.0)]")
    assert "(0.0)" not in url


def test_build_griddap_url_needs_time_for_gridded():
    with pytest.raises(ValueError):
        build_griddap_url(BASE_URL, make_descriptor(), (230.0, 230.0), (40.0, 40.0))


def test_axes_and_max_time_urls():
    descriptor = make_descriptor(dataset_name="erdMBsstd8day")
    assert build_axes_url(BASE_URL, descriptor) == (
        "https://example.test/erddap/griddap/erdMBsstd8day.nc?time,altitude,latitude,longitude"
    )
    etopo = make_descriptor(dataset_name="etopo180", kind=DatasetKind.BATHYMETRY, has_alt=False)
    assert build_axes_url(BASE_URL, etopo).endswith("etopo180.nc?latitude,longitude")
    assert build_max_time_url(BASE_URL, descriptor) == (
        "https://example.test/erddap/tabledap/allDatasets.csv"
        "?datasetID,maxTime&datasetID=%22erdMBsstd8day%22"
    )


# ============================================================================
# TRANSPORT
# ============================================================================

def test_fetch_writes_file(tmp_path):
    client, session, _ = make_client(tmp_path, FakeResponse(content=b"netcdf bytes" * 1000))
    destination = tmp_path / "out.nc"
    client.fetch("https://example.test/x.nc", destination)
    assert destination.read_bytes() == b"netcdf bytes" * 1000
    assert session.urls == ["https://example.test/x.nc"]
    assert session.response.closed


def test_http_error_raises_transport_error(tmp_path):
    client, _, _ = make_client(tmp_path, FakeResponse(status_code=404, reason="Not Found"))
    with pytest.raises(TransportError) as excinfo:
        client.fetch("https://example.test/x.nc", tmp_path / "out.nc")
    assert "404" in str(excinfo.value)
    assert excinfo.value.url == "https://example.test/x.nc"


def test_connection_error_raises_transport_error(tmp_path):
    client, _, _ = make_client(tmp_path, error=requests.ConnectionError("unreachable"))
    with pytest.raises(TransportError, match="unreachable"):
        client.fetch("https://example.test/x.nc", tmp_path / "out.nc")


def test_verbose_logs_url(tmp_path, caplog):
    client, _, _ = make_client(tmp_path, FakeResponse(content=b"x"))
    client.verbose = True
    with caplog.at_level("INFO", logger="xtracto.erddap"):
        client.fetch("https://example.test/verbose.nc", tmp_path / "out.nc")
    assert "GET https://example.test/verbose.nc" in caplog.text
    assert "HTTP 200" in caplog.text


# ============================================================================
# DECODING
# ============================================================================

def test_read_grid(grid_file):
    data = ErddapClient.read_grid(grid_file, "sst")
    assert data.dims == ("time", "altitude", "latitude", "longitude")
    assert np.isnan(data.values).sum() == 1


def test_read_grid_missing_variable(grid_file):
    with pytest.raises(DecodeError, match="chlorophyll"):
        ErddapClient.read_grid(grid_file, "chlorophyll")


def test_read_grid_rejects_garbage(tmp_path):
    path = tmp_path / "error.nc"
    path.write_bytes(b"Error {\n    code=404;\n    message=\"Not Found\";\n}\n")
    with pytest.raises(DecodeError):
        ErddapClient.read_grid(path, "sst")


def test_fetch_values_cleans_up_scratch(tmp_path, grid_file):
    client, _, scratch = make_client(tmp_path, FakeResponse(content=grid_file.read_bytes()))
    values = client.fetch_values("https://example.test/grid.nc", "sst")
    assert sorted(values[~np.isnan(values)]) == [10.0, 11.0, 12.0]
    assert list(scratch.iterdir()) == []


def test_decode_failure_still_cleans_up(tmp_path):
    client, _, scratch = make_client(tmp_path, FakeResponse(content=b"not a grid file"))
    with pytest.raises(DecodeError):
        client.fetch_values("https://example.test/grid.nc", "sst")
    assert list(scratch.iterdir()) == []


# ============================================================================
# METADATA
# ============================================================================

def test_get_axes(tmp_path):
    axes_file = tmp_path / "axes.nc"
    xr.Dataset(
        coords={
            "time": pd.DatetimeIndex(["2006-01-05", "2006-01-13"]),
            "altitude": [0.0],
            "latitude": [40.0, 40.025, 40.05],
            "longitude": [230.0, 230.025],
        }
    ).to_netcdf(axes_file)
    client, session, _ = make_client(tmp_path, FakeResponse(content=axes_file.read_bytes()))

    axes = client.get_axes(make_descriptor(dataset_name="erdMBsstd8day"))

    assert session.urls[0].endswith("erdMBsstd8day.nc?time,altitude,latitude,longitude")
    np.testing.assert_allclose(axes.latitude, [40.0, 40.025, 40.05])
    np.testing.assert_allclose(axes.longitude, [230.0, 230.025])
    np.testing.assert_allclose(axes.time, [1136419200.0, 1137110400.0])
    assert list(axes.isotime) == ["2006-01-05T00:00:00Z", "2006-01-13T00:00:00Z"]
    assert axes.altitude.tolist() == [0.0]


def test_refresh_max_time(tmp_path):
    table = b"datasetID,maxTime\n,UTC\nerdMBsstd8day,2024-05-01T00:00:00Z\n"
    client, _, _ = make_client(tmp_path, FakeResponse(content=table))
    descriptor = make_descriptor(dataset_name="erdMBsstd8day")

    refreshed = client.refresh_max_time(descriptor)

    assert refreshed.max_time == pd.Timestamp("2024-05-01")
    assert refreshed.min_time == descriptor.min_time
    assert descriptor.max_time == pd.Timestamp("2006-01-29")


def test_refresh_max_time_bad_table(tmp_path):
    client, _, _ = make_client(tmp_path, FakeResponse(content=b"datasetID\n\n"))
    with pytest.raises(DecodeError):
        client.refresh_max_time(make_descriptor())


def test_vertical_axis_name_is_used(tmp_path):
    descriptor = make_descriptor(dataset_name="ncdcOisst21Agg_LonPM180", lon360=False, alt_name="zlev")
    assert build_axes_url(BASE_URL, descriptor).endswith(
        "ncdcOisst21Agg_LonPM180.nc?time,zlev,latitude,longitude"
    )
    axes_file = tmp_path / "axes.nc"
    xr.Dataset(
        coords={
            "time": pd.DatetimeIndex(["2006-01-05"]),
            "zlev": [0.0],
            "latitude": [40.125],
            "longitude": [-130.125],
        }
    ).to_netcdf(axes_file)
    client, _, _ = make_client(tmp_path, FakeResponse(content=axes_file.read_bytes()))

    axes = client.get_axes(descriptor)

    assert axes.altitude.tolist() == [0.0]


def test_build_griddap_url_uses_given_altitude():
    url = build_griddap_url(
        BASE_URL, make_descriptor(), (230.0, 230.0), (40.0, 40.0),
        times=("2006-01-13T00:00:00Z", "2006-01-13T00:00:00Z"), altitude=5.0,
    )
    assert "[(5.0):1:(5.0)]" in url
