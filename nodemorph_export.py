#!/usr/bin/env python3
"""
NODEMORPH EXPORT - Run a repository search and save the hits as CSV

Purpose:
- Same search as the nodemorph_search MCP tool, from the command line
- Writes Path + one column per requested property, every field quoted
- Writes nothing when the search finds no nodes

Usage:
    python nodemorph_export.py <path> <output.csv> [--query Q] [--property-name P]
        [--substring] [--page-only] [--properties "jcr:title,sling:resourceType"]

Connection settings come from NODEMORPH_BASE_URL / NODEMORPH_USERNAME /
NODEMORPH_PASSWORD (see nodemorph_mcp.config).

Returns JSON to stdout:
    {
        "success": true,
        "written": true,
        "rows": 12,
        "output_file": "hits.csv"
    }
"""

import argparse
import asyncio
import json
import sys

from nodemorph_mcp.client import NodeMorphClient
from nodemorph_mcp.config import ServerConfig, setup_logging
from nodemorph_mcp.models import NodeMorphError, SearchCriteria


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export NodeMorph search results to CSV")
    parser.add_argument("path", help="Absolute scope path, e.g. /content/site")
    parser.add_argument("output_file", help="CSV file to write")
    parser.add_argument("--query", default="", help="Node name (wildcard *) or property value")
    parser.add_argument("--property-name", default="", help="Match this property's value instead of the node name")
    parser.add_argument("--substring", action="store_true", help="Property value contains the query")
    parser.add_argument("--page-only", action="store_true", help="Only cq:Page nodes")
    parser.add_argument("--properties", default="", help="Comma-separated properties to export")
    return parser.parse_args(argv)


def criteria_from_args(args: argparse.Namespace) -> SearchCriteria:
    return SearchCriteria(
        path=args.path,
        query=args.query,
        match_property=bool(args.property_name),
        property_name=args.property_name,
        substring_match=args.substring,
        page_only=args.page_only,
        properties=args.properties,
    )


async def nodemorph_export(args: argparse.Namespace, client: NodeMorphClient | None = None) -> dict:
    """Run the search and write the CSV.

    Returns:
        Dictionary describing what was written (or the error).
    """
    owned = client is None
    if client is None:
        client = NodeMorphClient(ServerConfig().get_api_config())
    try:
        return await client.export_csv(criteria_from_args(args), args.output_file)
    except NodeMorphError as e:
        return {"success": False, "error": f"{type(e).__name__}: {e}"}
    finally:
        if owned:
            await client.close()


def main() -> None:
    """CLI entrypoint for nodemorph_export."""
    setup_logging()
    args = parse_args()
    result = asyncio.run(nodemorph_export(args))
    print(json.dumps(result, indent=2))
    sys.exit(0 if result.get("success") else 1)


if __name__ == "__main__":
    main()
