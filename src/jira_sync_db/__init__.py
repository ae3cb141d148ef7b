"""Jira Sync DB - resilient sync and local cache for issue-tracker data."""

__version__ = "0.1.0"
