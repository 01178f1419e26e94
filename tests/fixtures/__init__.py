"""Shared test fixtures for agentpipe tests.

This package provides:
- Stream helpers
- Small deterministic stages for engine tests
- A canned llm-task server behind httpx.MockTransport
"""

__all__ = [
    "test_helpers",
]
