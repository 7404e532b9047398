"""Provider layer for the personalized crypto dashboard."""

__version__ = "1.0.0"
