"""Command-line interface for m365-mcp."""
