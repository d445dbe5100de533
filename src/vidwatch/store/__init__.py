"""Persistent state that survives daemon restarts."""

from .known import KnownStore

__all__ = ["KnownStore"]
