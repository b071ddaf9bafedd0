"""gridprov CLI commands."""
