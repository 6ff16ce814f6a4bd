"""Shared fixtures for wavegraph tests."""

import pytest

from wavegraph.observability import clear_trace_context


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point configuration at an empty location so a developer's file never leaks in."""
    monkeypatch.setenv("WAVEGRAPH_CONFIG", str(tmp_path / "missing-configuration.json"))


@pytest.fixture(autouse=True)
def clean_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()
