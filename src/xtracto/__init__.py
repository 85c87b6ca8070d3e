"""
xtracto - Environmental Data Along Tracks from ERDDAP
=====================================================

Extract gridded satellite and model data (SST, chlorophyll, wind, bathymetry,
...) from an ERDDAP server along longitude/latitude/time trajectories, inside
boxes, or inside polygons.

Example usage:
    from xtracto import extract_along_trajectory

    extract = extract_along_trajectory(
        xpos=[230, 235],
        ypos=[40, 45],
        tpos=["2006-01-15", "2006-01-20"],
        dtype="erdMBsstd8day",
        xlen=0.05,
        ylen=0.05,
    )
"""

__version__ = "1.0.0"

from xtracto.box import extract_box, extract_polygon, xtracto_3d, xtractogon
from xtracto.coords import make180, make360
from xtracto.erddap import ErddapClient, build_griddap_url
from xtracto.errors import (
    DecodeError,
    NotFoundError,
    OutOfBoundsError,
    TransportError,
    ValidationError,
    XtractoError,
)
from xtracto.registry import (
    DatasetDescriptor,
    DatasetKind,
    DatasetRegistry,
    get_registry,
    load_registry,
)
from xtracto.stats import summarize
from xtracto.track import RESULT_COLUMNS, extract_along_trajectory, xtracto

__all__ = [
    # Version
    "__version__",
    # Extraction
    "extract_along_trajectory",
    "extract_box",
    "extract_polygon",
    "xtracto",
    "xtracto_3d",
    "xtractogon",
    "RESULT_COLUMNS",
    # Registry
    "DatasetDescriptor",
    "DatasetKind",
    "DatasetRegistry",
    "get_registry",
    "load_registry",
    # ERDDAP
    "ErddapClient",
    "build_griddap_url",
    # Helpers
    "make180",
    "make360",
    "summarize",
    # Errors
    "XtractoError",
    "ValidationError",
    "NotFoundError",
    "OutOfBoundsError",
    "TransportError",
    "DecodeError",
]
