"""Pytest configuration and shared fixtures."""

import pytest


@pytest.fixture(autouse=True)
def clean_agent_env(monkeypatch):
    """Keep ALICE_BOB_* settings from the calling shell out of tests and child peers."""
    monkeypatch.delenv("ALICE_BOB_NAME", raising=False)
    monkeypatch.delenv("ALICE_BOB_DEBUG", raising=False)
