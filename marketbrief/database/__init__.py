"""Persistence layer."""

from .storage import BriefingDatabase

__all__ = ["BriefingDatabase"]
