#!/usr/bin/env python3
"""
xtracto command line
====================

Usage:
    xtracto track track.csv erdMBsstd8day --xlen 0.05 --ylen 0.05 -o extract.csv
    xtracto search chlorophyll
    xtracto info 150

The track file needs ``lon``, ``lat`` and ``date`` columns.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Union

import pandas as pd
from dotenv import find_dotenv, load_dotenv

from xtracto.config import get_config
from xtracto.errors import XtractoError
from xtracto.registry import get_registry
from xtracto.track import ON_ERROR_CHOICES, extract_along_trajectory

logger = logging.getLogger(__name__)

TRACK_COLUMNS = ("lon", "lat", "date")


def _dataset_id(value: str) -> Union[int, str]:
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xtracto",
        description="Extract ERDDAP gridded data along tracks",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every ERDDAP request URL"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    track = commands.add_parser("track", help="Summarize a dataset along a track")
    track.add_argument("track_file", help="CSV file with lon, lat and date columns")
    track.add_argument("dtype", type=_dataset_id, help="Dataset name or 1-based index")
    track.add_argument("--xlen", type=float, default=0.0, help="Longitude box width (degrees)")
    track.add_argument("--ylen", type=float, default=0.0, help="Latitude box width (degrees)")
    track.add_argument("-o", "--output", help="Write the result to this CSV file")
    track.add_argument(
        "--cache-size",
        type=int,
        default=1,
        help="Number of recent requests to reuse (default: 1, the previous point)"
    )
    track.add_argument(
        "--on-error",
        choices=ON_ERROR_CHOICES,
        default="raise",
        help="Abort on a failed download, or record missing values and continue"
    )

    search = commands.add_parser("search", help="Search the dataset list")
    search.add_argument("text", help="Text to look for")
    search.add_argument("--field", help="Restrict the search to one field")

    info = commands.add_parser("info", help="Describe a dataset")
    info.add_argument("dtype", type=_dataset_id, help="Dataset name or 1-based index")

    commands.add_parser("list", help="List all datasets")
    return parser


def run_track(args: argparse.Namespace) -> int:
    track = pd.read_csv(args.track_file)
    missing = [c for c in TRACK_COLUMNS if c not in track.columns]
    if missing:
        logger.error(f"{args.track_file} is missing columns: {', '.join(missing)}")
        return 1

    result = extract_along_trajectory(
        track["lon"].to_numpy(),
        track["lat"].to_numpy(),
        track["date"].astype(str).tolist(),
        args.dtype,
        args.xlen,
        args.ylen,
        verbose=args.verbose,
        cache_size=args.cache_size,
        on_error=args.on_error,
    )
    if args.output:
        result.to_csv(args.output, index=False)
        logger.info(f"Wrote {len(result)} rows to {args.output}")
    else:
        print(result.to_string(index=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, get_config().log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        if args.command == "track":
            return run_track(args)

        registry = get_registry()
        if args.command == "search":
            for descriptor in registry.search(args.text, args.field):
                print(descriptor)
        elif args.command == "info":
            print(registry.describe(args.dtype))
        elif args.command == "list":
            print(registry.list_datasets())
        return 0

    except (XtractoError, ValueError, OSError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
