"""Command-line interface for procmux."""
