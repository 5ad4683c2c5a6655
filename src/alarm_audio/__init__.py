"""Queue-backed alarm audio generation service."""

__version__ = "0.1.0"
