"""MCP server surface for refnotes."""
