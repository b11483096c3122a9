"""Command-line exports."""
