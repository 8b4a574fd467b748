"""Commercial real estate news aggregation and personalized newsletters."""

__version__ = "0.1.0"
