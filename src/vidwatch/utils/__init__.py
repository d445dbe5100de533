"""Utility functions."""

from .console import console

__all__ = ["console"]
