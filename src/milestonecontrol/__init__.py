"""Milestone and test tracking engine with a text-command control channel."""

__version__ = "0.3.0"

__all__ = ["__version__"]
