"""Command-line interface for the lifecycle engine."""
