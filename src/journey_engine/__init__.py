"""Journey Engine - stage/task progression for nutrition and habit journeys."""

__version__ = "0.1.0"
