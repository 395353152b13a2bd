"""NodeMorph MCP server - search and bulk-edit a hierarchical content repository."""

__version__ = "0.1.0"
