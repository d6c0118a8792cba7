"""Pytest configuration and shared fixtures."""

import sys

import pytest


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def mock_agent_command() -> list[str]:
    """Command line running the reference agent as a subprocess, with fast streaming."""
    return [sys.executable, "-m", "uplink.mock_agent", "--stream-interval", "0.01"]
