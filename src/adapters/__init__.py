"""Integration adapters implementing the core ports."""
