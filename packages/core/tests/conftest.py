"""Pytest configuration and shared fixtures."""
from pathlib import Path

import pytest
from dotenv import load_dotenv

from fixtures.workflow_data import (
    MockObservabilityManager,
    make_complete_product,
    make_product,
)
from pimflow.domain.models.product import ProductWorkflow
from pimflow.domain.models.workflow import WorkflowState
from pimflow.engine import WorkflowEngine

# Load .env file from project root before running tests
project_root = Path(__file__).parent.parent.parent.parent
env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fallback: try loading from packages/core
    core_env_path = project_root / "packages" / "core" / ".env"
    if core_env_path.exists():
        load_dotenv(core_env_path)


@pytest.fixture
def observability() -> MockObservabilityManager:
    """Recording observability manager."""
    return MockObservabilityManager()


@pytest.fixture
def draft_product() -> ProductWorkflow:
    """Complete draft product with a reviewer assigned."""
    return make_complete_product("prod-draft")


@pytest.fixture
def review_product() -> ProductWorkflow:
    """Complete product waiting for review."""
    return make_complete_product("prod-review", state=WorkflowState.Review)


@pytest.fixture
def incomplete_product() -> ProductWorkflow:
    """Draft product with only a name."""
    return make_product("prod-incomplete")


@pytest.fixture
def engine(observability: MockObservabilityManager) -> WorkflowEngine:
    """Engine with default configuration and a recording observability manager."""
    return WorkflowEngine(
        config={"audit_archive_threshold": 0},
        observability_manager=observability,
    )
