"""Storage backends for purchase requests and approver records."""

from ...core.config import Settings
from .memory import InMemoryWorkflowStore
from .sqlite import SQLiteWorkflowStore
from .store_base import WorkflowStoreBase

__all__ = ["InMemoryWorkflowStore", "SQLiteWorkflowStore", "WorkflowStoreBase", "create_store"]


def create_store(settings: Settings) -> WorkflowStoreBase:
    """Build the store selected by STORAGE_BACKEND"""
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return InMemoryWorkflowStore()
    if backend == "sqlite":
        return SQLiteWorkflowStore(settings.sqlite_db_path)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")
