"""Freshness-aware cache of projects, users, epics and sprints."""

from .freshness import GROUP_KEYS, CacheBlob, CacheController, FreshnessGroup, GroupState

__all__ = [
    "GROUP_KEYS",
    "CacheBlob",
    "CacheController",
    "FreshnessGroup",
    "GroupState",
]
