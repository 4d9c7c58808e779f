"""Application services."""

from tickapp.services.execution import ExecutionService
from tickapp.services.tick_ingestion import TickIngestionService

__all__ = [
    "ExecutionService",
    "TickIngestionService",
]
