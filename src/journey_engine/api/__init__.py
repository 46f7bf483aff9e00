"""HTTP API for the Journey Engine."""
