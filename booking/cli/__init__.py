"""Command line tools for the booking engine."""
