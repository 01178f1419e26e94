"""Pytest configuration and shared fixtures for agentpipe tests.

This module provides:
- Basic pytest configuration
- Environment isolation (no real endpoints or state directories)
- Temporary state/cache directories and a ready execution context
"""

import sys
from pathlib import Path
from typing import Dict

import pytest

# Add project root to Python path so the root-level cli module imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from agentpipe.pipeline import ExecutionContext, ExecutionMode, create_default_registry  # noqa: E402


AGENTPIPE_ENV_VARS = [
    "LLM_TASK_URL",
    "LLM_TASK_TOKEN",
    "TOOL_ROUTER_URL",
    "TOOL_ROUTER_TOKEN",
    "LLM_TASK_MODEL",
    "LLM_TASK_SCHEMA_VERSION",
    "LLM_TASK_VALIDATION_RETRIES",
    "LLM_TASK_FORCE_REFRESH",
    "AGENTPIPE_RUN_STATE_KEY",
    "AGENTPIPE_CACHE_DIR",
    "AGENTPIPE_STATE_DIR",
]


# ==================== Pytest Configuration ====================

def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "unit: mark test as a unit test (fast, isolated)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as an integration test (slower, multiple components)"
    )


# ==================== Environment Fixtures ====================

@pytest.fixture(scope="function", autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Isolate each test from the developer's endpoints and state.

    Removes llm-task configuration picked up from the shell or a .env file and
    points the state and cache directories at the test's temp directory.
    """
    for var in AGENTPIPE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AGENTPIPE_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("AGENTPIPE_CACHE_DIR", str(tmp_path / "cache"))
    yield


@pytest.fixture
def state_dir(tmp_path) -> Path:
    """Temporary state directory."""
    return tmp_path / "state"


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    """Temporary cache directory."""
    return tmp_path / "cache"


@pytest.fixture
def direct_env() -> Dict[str, str]:
    """Environment for direct-mode llm-task calls."""
    return {
        "LLM_TASK_URL": "http://llm-task.test",
        "LLM_TASK_TOKEN": "direct-secret",
        "LLM_TASK_MODEL": "test-model",
    }


@pytest.fixture
def router_env() -> Dict[str, str]:
    """Environment for router-mode llm-task calls."""
    return {
        "TOOL_ROUTER_URL": "http://router.test",
        "TOOL_ROUTER_TOKEN": "router-secret",
    }


# ==================== Context Fixtures ====================

@pytest.fixture
def registry():
    """Registry with the built-in stages."""
    return create_default_registry()


@pytest.fixture
def make_ctx(tmp_path, state_dir, cache_dir, registry):
    """Factory for execution contexts over an explicit env bag.

    Example:
        ctx = make_ctx({"LLM_TASK_URL": "http://x"}, mode=ExecutionMode.HUMAN)
    """
    def _make(env=None, mode=ExecutionMode.TOOL, **kwargs):
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("state_dir", state_dir)
        kwargs.setdefault("cache_dir", cache_dir)
        return ExecutionContext(env=dict(env or {}), cwd=tmp_path, mode=mode, **kwargs)
    return _make


@pytest.fixture
def ctx(make_ctx) -> ExecutionContext:
    """Tool-mode context with an empty environment."""
    return make_ctx()
