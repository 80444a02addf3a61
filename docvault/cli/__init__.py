"""Command-line interface for docvault."""
