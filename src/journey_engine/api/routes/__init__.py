"""API route modules."""

from . import journey, points

__all__ = ["journey", "points"]
