"""Command line interface (``wayfarer`` console script)."""
