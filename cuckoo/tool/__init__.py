"""Command line interface for cuckoo."""
