import pytest

from helpers import InMemoryWorkflowEngine
from src.integrations.n8n.gateway import DeploymentGateway
from src.persistence.store import InMemoryRecordStore


@pytest.fixture
def engine():
    return InMemoryWorkflowEngine()


@pytest.fixture
def gateway(engine):
    return DeploymentGateway(engine)


@pytest.fixture
def store():
    return InMemoryRecordStore()
