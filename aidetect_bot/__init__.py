"""Twitter mention bot that checks images for AI generation."""

__version__ = "0.1.0"
