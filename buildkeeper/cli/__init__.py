"""Command-line entry points for buildkeeper."""
