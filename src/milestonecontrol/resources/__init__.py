"""Packaged resources for milestonecontrol."""

from __future__ import annotations

from importlib import resources

__all__ = ["read_resource_text"]


def read_resource_text(*parts: str) -> str:
    """Return the text of a file shipped under ``milestonecontrol/resources``."""

    entry = resources.files(__name__)
    for part in parts:
        entry = entry / part
    return entry.read_text("utf-8")
