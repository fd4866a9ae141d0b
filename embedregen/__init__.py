"""Resumable embedding regeneration jobs for dataset tables."""

__version__ = "0.3.0"
