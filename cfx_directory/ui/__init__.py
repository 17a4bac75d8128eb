"""User interaction helpers."""

from .progress import LoadProgressReporter

__all__ = ["LoadProgressReporter"]
