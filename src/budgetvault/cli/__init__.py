"""Command-line interface (bv command)."""
