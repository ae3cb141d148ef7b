"""Command-line interface for Jira Sync DB."""
