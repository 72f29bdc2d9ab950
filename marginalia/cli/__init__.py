"""Command-line tools for Marginalia."""
