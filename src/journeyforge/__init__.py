"""journeyforge: structured user journeys in, self-healing pytest-playwright tests out."""

__version__ = "0.1.0"
