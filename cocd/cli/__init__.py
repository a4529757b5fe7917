"""Command line entry points for cocd."""
