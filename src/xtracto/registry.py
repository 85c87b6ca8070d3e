"""
ERDDAP Dataset Registry
=======================

Static table of the gridded datasets xtracto knows how to query, with the
coverage and grid conventions needed to build requests against them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from xtracto.config import get_registry_path
from xtracto.errors import NotFoundError

logger = logging.getLogger(__name__)

DatasetId = Union[str, int]

SEARCH_FIELDS = ("dtype_name", "dataset_name", "long_name", "var_name")


class DatasetKind(str, Enum):
    """How a dataset is queried."""

    GRIDDED = "gridded"
    BATHYMETRY = "bathymetry"


# ============================================================================
# DATASET DESCRIPTOR
# ============================================================================

@dataclass(frozen=True)
class DatasetDescriptor:
    """Metadata for an ERDDAP griddap dataset."""

    dtype_name: str
    dataset_name: str
    long_name: str
    var_name: str
    kind: DatasetKind = DatasetKind.GRIDDED
    lon360: bool = True
    lat_descending: bool = False
    has_alt: bool = False
    alt_name: str = "altitude"
    min_lon: float = -180.0
    max_lon: float = 180.0
    lon_spacing: float = float("nan")
    min_lat: float = -90.0
    max_lat: float = 90.0
    lat_spacing: float = float("nan")
    min_alt: Optional[float] = None
    max_alt: Optional[float] = None
    min_time: Optional[pd.Timestamp] = None
    max_time: Optional[pd.Timestamp] = None
    time_spacing: str = ""
    info_url: str = ""

    @property
    def has_time(self) -> bool:
        return self.kind is DatasetKind.GRIDDED

    def __str__(self) -> str:
        return f"{self.dtype_name}: {self.long_name} ({self.var_name})"


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    return bool(value)


def _as_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _as_time(value) -> Optional[pd.Timestamp]:
    if value is None or pd.isna(value) or value == "":
        return None
    # kept as naive UTC
    stamp = pd.Timestamp(value)
    return stamp.tz_convert(None) if stamp.tzinfo is not None else stamp


def descriptor_from_record(record: dict) -> DatasetDescriptor:
    """Build a descriptor from one row of the registry table."""
    return DatasetDescriptor(
        dtype_name=str(record["dtype_name"]),
        dataset_name=str(record["dataset_name"]),
        long_name=str(record.get("long_name", "")),
        var_name=str(record["var_name"]),
        kind=DatasetKind(str(record.get("kind") or "gridded").lower()),
        lon360=_as_bool(record.get("lon360")),
        lat_descending=_as_bool(record.get("lat_descending")),
        has_alt=_as_bool(record.get("has_alt")),
        alt_name="altitude" if pd.isna(record.get("alt_name")) else str(record["alt_name"]),
        min_lon=float(record["min_lon"]),
        max_lon=float(record["max_lon"]),
        lon_spacing=_as_float(record.get("lon_spacing")) or float("nan"),
        min_lat=float(record["min_lat"]),
        max_lat=float(record["max_lat"]),
        lat_spacing=_as_float(record.get("lat_spacing")) or float("nan"),
        min_alt=_as_float(record.get("min_alt")),
        max_alt=_as_float(record.get("max_alt")),
        min_time=_as_time(record.get("min_time")),
        max_time=_as_time(record.get("max_time")),
        time_spacing="" if pd.isna(record.get("time_spacing")) else str(record.get("time_spacing")),
        info_url="" if pd.isna(record.get("info_url")) else str(record.get("info_url")),
    )


# ============================================================================
# REGISTRY
# ============================================================================

class DatasetRegistry:
    """
    Read-only, ordered collection of dataset descriptors.

    Datasets are addressed either by name or by their 1-based position in the
    table, so the order of the table is part of its contract.
    """

    def __init__(self, datasets: Sequence[DatasetDescriptor], version: str = ""):
        self._datasets = tuple(datasets)
        self.version = version

    def __len__(self) -> int:
        return len(self._datasets)

    def __iter__(self) -> Iterator[DatasetDescriptor]:
        return iter(self._datasets)

    def lookup(self, dtype: DatasetId) -> DatasetDescriptor:
        """Resolve a dataset name or 1-based index to its descriptor."""
        if isinstance(dtype, str):
            for descriptor in self._datasets:
                if descriptor.dtype_name == dtype:
                    return descriptor
            for descriptor in self._datasets:
                if descriptor.dataset_name == dtype:
                    return descriptor
            raise NotFoundError(f"No matching dataset found for name '{dtype}'")

        if isinstance(dtype, (int, np.integer)) and not isinstance(dtype, bool):
            size = len(self._datasets)
            if dtype < 1 or dtype > size:
                raise NotFoundError(
                    f"Dataset number {dtype} out of range - must be between 1 and {size}"
                )
            return self._datasets[int(dtype) - 1]

        raise NotFoundError(f"No matching dataset found for identifier {dtype!r}")

    def search(self, text: str, field: Optional[str] = None) -> List[DatasetDescriptor]:
        """Case-insensitive substring search over names and descriptions."""
        if field is not None and field not in SEARCH_FIELDS:
            raise ValueError(f"Cannot search on '{field}', expected one of {SEARCH_FIELDS}")
        fields = (field,) if field else SEARCH_FIELDS
        needle = text.lower()
        return [
            d for d in self._datasets
            if any(needle in str(getattr(d, f)).lower() for f in fields)
        ]

    def describe(self, dtype: DatasetId) -> str:
        """Return a formatted summary of one dataset."""
        d = self.lookup(dtype)
        time_range = (
            f"{d.min_time.isoformat()} to {d.max_time.isoformat()}"
            if d.min_time is not None and d.max_time is not None else "n/a"
        )
        lines = [
            f"{d.dtype_name} ({d.dataset_name})",
            "=" * 70,
            f"  Title:      {d.long_name}",
            f"  Variable:   {d.var_name}",
            f"  Kind:       {d.kind.value}",
            f"  Longitude:  [{d.min_lon}, {d.max_lon}] "
            f"({'0-360' if d.lon360 else '-180-180'}), spacing {d.lon_spacing}",
            f"  Latitude:   [{d.min_lat}, {d.max_lat}] "
            f"({'north to south' if d.lat_descending else 'south to north'}), spacing {d.lat_spacing}",
            f"  Time:       {time_range} {d.time_spacing}".rstrip(),
            f"  Altitude:   {d.alt_name if d.has_alt else 'no'}",
            f"  Info:       {d.info_url}",
        ]
        return "\n".join(lines)

    def list_datasets(self) -> str:
        """Return a formatted list of all datasets."""
        lines = ["Available ERDDAP Datasets:", "=" * 70]
        for i, d in enumerate(self._datasets, start=1):
            lines.append(f"  {i:4d} | {d.dtype_name:28} | {d.var_name:14} | {d.long_name}")
        return "\n".join(lines)

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame, version: str = "") -> "DatasetRegistry":
        return cls([descriptor_from_record(r) for r in frame.to_dict(orient="records")], version)


def load_registry(path: Optional[Union[str, Path]] = None) -> DatasetRegistry:
    """Load the registry table from a CSV file."""
    path = Path(path) if path is not None else get_registry_path()
    try:
        frame = pd.read_csv(path, dtype={"dtype_name": str, "dataset_name": str})
    except FileNotFoundError:
        raise NotFoundError(f"Dataset registry not found: {path}") from None
    registry = DatasetRegistry.from_dataframe(frame, version=path.name)
    logger.info(f"Loaded {len(registry)} datasets from {path}")
    return registry


# ============================================================================
# GLOBAL INSTANCE
# ============================================================================

_registry_instance: Optional[DatasetRegistry] = None


def get_registry() -> DatasetRegistry:
    """Get the process-wide registry, loading it on first use."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = load_registry()
    return _registry_instance


def reset_registry() -> None:
    """Reset the global registry instance."""
    global _registry_instance
    _registry_instance = None
