"""Tracking persistence adapters."""

from .file_repository import FileTrackingRepository

__all__ = ["FileTrackingRepository"]
