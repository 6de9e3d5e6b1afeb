from functools import lru_cache

from ..core.config import settings
from ..services.approval_workflow import ApprovalWorkflow
from ..services.events.event_publisher import create_event_publisher
from ..services.storage import create_store


@lru_cache
def get_workflow() -> ApprovalWorkflow:
    """Process-wide workflow wired from settings (override in tests via app.dependency_overrides)"""
    return ApprovalWorkflow.from_settings(
        settings,
        store=create_store(settings),
        event_publisher=create_event_publisher(settings),
    )
