"""Command-line interface for gridprov."""
