"""
Pytest configuration and shared fixtures.

Registers the integration marker (skipped unless --run-integration is
given) and wires an ApprovalWorkflow over an in-memory store with a
controllable clock.
"""

from datetime import datetime, timedelta, UTC
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from purchase_approvals.api.deps import get_workflow
from purchase_approvals.api.main import app
from purchase_approvals.models.schemas import CreatePurchaseRequest
from purchase_approvals.services.approval_workflow import ApprovalWorkflow
from purchase_approvals.services.events.event_publisher import EventPublisher
from purchase_approvals.services.otp import OtpEngine
from purchase_approvals.services.storage import InMemoryWorkflowStore

APPROVERS = ["a@x.com", "b@x.com", "c@x.com"]
REQUESTER = "requester@x.com"


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure resources"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real Azure resources"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FrozenClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def service_bus_sender():
    """Mock Service Bus sender matching the Azure SDK interface"""
    return Mock()


@pytest.fixture
def workflow(store, clock, service_bus_sender):
    return ApprovalWorkflow(
        store,
        otp_engine=OtpEngine(validity=timedelta(minutes=3), max_attempts=5, clock=clock),
        event_publisher=EventPublisher(service_bus_sender=service_bus_sender),
        clock=clock,
    )


@pytest.fixture
def payload():
    return CreatePurchaseRequest(
        title="Laptops",
        description="Three laptops for the new hires",
        amount=100.00,
        approver_emails=list(APPROVERS),
    )


@pytest.fixture
def created(workflow, payload):
    """A freshly created purchase request with its approver records"""
    return workflow.create_request(REQUESTER, payload)


@pytest.fixture
def unlock(workflow, store):
    """Issue and validate a code so the approver can decide; returns the token"""
    def _unlock(request_id: str, approver_token: str) -> str:
        workflow.issue_otp(request_id, approver_token)
        code = store.get_approver_by_token(approver_token).otp
        workflow.validate_otp(request_id, approver_token, code)
        return approver_token
    return _unlock


@pytest.fixture
def client(workflow):
    """TestClient whose routes use the test workflow"""
    app.dependency_overrides[get_workflow] = lambda: workflow
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
