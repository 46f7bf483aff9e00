"""Utility modules for the Journey Engine."""
