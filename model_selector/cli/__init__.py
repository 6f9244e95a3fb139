"""Command line interface for model-selector."""
