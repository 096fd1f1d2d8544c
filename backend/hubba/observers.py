"""Importing this module registers every change-bus subscriber."""
from __future__ import annotations
from hubba.services import challenges, notifications

__all__ = ["challenges", "notifications"]
