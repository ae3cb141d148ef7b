"""Sync module - Jira to local store synchronization.

Services:
- SyncOrchestrator: sync strategies run as concurrent, isolated phases
- SnapshotWriter: persists a run's payloads through the repositories
"""

from .enums import OutputFormat, SyncRunState, SyncType
from .ingestion import SnapshotWriter
from .orchestrator import AccessReport, Phase, SyncOrchestrator
from .results import IngestionStats, PhaseError, PhaseResult, SyncResult

__all__ = [
    # Orchestration
    "AccessReport",
    "Phase",
    "SyncOrchestrator",
    # Persistence
    "IngestionStats",
    "SnapshotWriter",
    # Results
    "PhaseError",
    "PhaseResult",
    "SyncResult",
    # Enums
    "OutputFormat",
    "SyncRunState",
    "SyncType",
]
