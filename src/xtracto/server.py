#!/usr/bin/env python3
"""
xtracto MCP Server
==================

Model Context Protocol server exposing ERDDAP trajectory extraction.

Usage:
    xtracto-mcp                     # If installed as package
    python -m xtracto.server        # Direct execution

Configuration via environment variables:
    XTRACTO_ERDDAP_URL        - ERDDAP server (default: ERD coastwatch)
    XTRACTO_TIMEOUT           - Download timeout in seconds (default: 300)
    XTRACTO_REGISTRY          - Dataset registry CSV (default: bundled table)
    XTRACTO_SCRATCH_DIR       - Directory for temporary downloads
    XTRACTO_REFRESH_MAX_TIME  - Ask the server for current time coverage (default: true)
    XTRACTO_LOG_LEVEL         - Logging level (default: INFO)
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import Any, List, Optional, Union

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables early
load_dotenv(find_dotenv(usecwd=True))

# Configure logging
log_level = os.environ.get("XTRACTO_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    CallToolResult,
    TextContent,
    Tool,
)

from xtracto.config import get_config
from xtracto.registry import SEARCH_FIELDS, get_registry
from xtracto.track import extract_along_trajectory

# Create MCP server
server = Server("xtracto-erddap")


# ============================================================================
# ARGUMENT SCHEMAS
# ============================================================================

class TrajectoryArgs(BaseModel):
    """Arguments for trajectory extraction."""

    xpos: List[float] = Field(
        description="Longitudes of the track in decimal degrees East (0 to 360 or -180 to 180)"
    )
    ypos: List[float] = Field(
        description="Latitudes of the track in decimal degrees North (-90 to 90)"
    )
    tpos: List[str] = Field(
        description="Dates of the track in YYYY-MM-DD format"
    )
    dtype: Union[int, str] = Field(
        description="Dataset name (e.g. 'erdMBsstd8day') or 1-based index in the dataset list"
    )
    xlen: float = Field(
        default=0.0,
        ge=0.0,
        description="Longitude width of the box around each point (degrees)"
    )
    ylen: float = Field(
        default=0.0,
        ge=0.0,
        description="Latitude width of the box around each point (degrees)"
    )

    @field_validator("tpos")
    @classmethod
    def validate_date_format(cls, v: List[str]) -> List[str]:
        for value in v:
            try:
                datetime.strptime(value, "%Y-%m-%d")
            except ValueError:
                raise ValueError(f"Dates must be in YYYY-MM-DD format, got: {value}")
        return v


class SearchArgs(BaseModel):
    """Arguments for dataset search."""

    text: str = Field(description="Text to look for (case-insensitive)")
    field: Optional[str] = Field(
        default=None,
        description=f"Restrict the search to one of: {', '.join(SEARCH_FIELDS)}"
    )


class DescribeArgs(BaseModel):
    """Arguments for dataset description."""

    dtype: Union[int, str] = Field(
        description="Dataset name or 1-based index in the dataset list"
    )


# ============================================================================
# TOOL DEFINITIONS
# ============================================================================

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return [
        Tool(
            name="extract_along_trajectory",
            description=(
                "Extract a gridded ERDDAP variable (SST, chlorophyll, wind, bathymetry, ...) "
                "along a longitude/latitude/time track.\n\n"
                "For every point the values inside a box of xlen by ylen degrees around it, "
                "at the nearest available time, are summarized.\n\n"
                "Returns CSV with columns: mean, stdev, n, satellite date, requested lon min, "
                "requested lon max, requested lat min, requested lat max, requested date, "
                "median, mad"
            ),
            inputSchema=TrajectoryArgs.model_json_schema(),
        ),
        Tool(
            name="list_datasets",
            description=(
                "List all ERDDAP datasets known to xtracto with their index, name "
                "and variable, for use with extract_along_trajectory."
            ),
            inputSchema={
                "type": "object",
                "properties": {},
                "additionalProperties": False
            }
        ),
        Tool(
            name="search_datasets",
            description="Search the dataset list by name, title or variable.",
            inputSchema=SearchArgs.model_json_schema(),
        ),
        Tool(
            name="describe_dataset",
            description=(
                "Show the coverage, grid conventions and variable of one dataset."
            ),
            inputSchema=DescribeArgs.model_json_schema(),
        ),
    ]


# ============================================================================
# TOOL HANDLERS
# ============================================================================

def _text(result: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=result)])


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
    """Handle tool calls."""

    try:
        if name == "extract_along_trajectory":
            args = TrajectoryArgs.model_validate(arguments)
            # Run synchronous function in thread pool
            frame = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: extract_along_trajectory(
                    args.xpos,
                    args.ypos,
                    args.tpos,
                    args.dtype,
                    args.xlen,
                    args.ylen,
                ),
            )
            return _text(frame.to_csv(index=False))

        elif name == "list_datasets":
            return _text(get_registry().list_datasets())

        elif name == "search_datasets":
            args = SearchArgs.model_validate(arguments)
            matches = get_registry().search(args.text, args.field)
            if not matches:
                return _text(f"No datasets match '{args.text}'")
            return _text("\n".join(str(d) for d in matches))

        elif name == "describe_dataset":
            args = DescribeArgs.model_validate(arguments)
            return _text(get_registry().describe(args.dtype))

        else:
            return CallToolResult(
                content=[TextContent(type="text", text=f"Unknown tool: {name}")],
                isError=True
            )

    except Exception as e:
        logger.exception(f"Error executing tool {name}")
        return CallToolResult(
            content=[TextContent(type="text", text=f"Error: {str(e)}")],
            isError=True
        )


# ============================================================================
# SERVER STARTUP
# ============================================================================

async def run_server() -> None:
    """Run the MCP server using stdio transport."""
    logger.info(f"Starting xtracto MCP Server against {get_config().erddap_url}...")

    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
