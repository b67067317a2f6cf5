"""Shared fixtures: isolated config home and a clean session registry per test."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tools.process_registry import reset_process_registry_for_tests


def pytest_collection_modifyitems(config, items):
    if sys.platform.startswith("win"):
        skip = pytest.mark.skip(reason="runs real POSIX shell commands")
        for item in items:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    """Point SHELLVISOR_HOME at a temp dir and drop SHELLVISOR_* overrides."""
    monkeypatch.setenv("SHELLVISOR_HOME", str(tmp_path / "shellvisor_home"))
    for name in (
        "SHELLVISOR_BASH_TIMEOUT",
        "SHELLVISOR_BASH_YIELD_MS",
        "SHELLVISOR_BASH_MAX_OUTPUT_CHARS",
        "SHELLVISOR_SCOPE",
        "SUDO_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_registry():
    reset_process_registry_for_tests()
    yield
    reset_process_registry_for_tests()
