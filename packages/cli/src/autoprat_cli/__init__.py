"""Command-line interface for autoprat."""
