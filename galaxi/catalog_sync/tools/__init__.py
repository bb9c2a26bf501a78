"""Command-line tools for the catalog sync service."""
