"""Command line interface for protosearch."""
