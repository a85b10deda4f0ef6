import os

import pytest
from prometheus_client import CollectorRegistry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: "pytest.MonkeyPatch") -> "None":
    """
    drops TALLYMAN_* variables inherited from the shell so that
    configuration tests only see what they set.
    """
    for name in list(os.environ):
        if name.startswith("TALLYMAN_"):
            monkeypatch.delenv(name)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry per test, so pipeline counters
    never leak between tests.
    """
    return CollectorRegistry()
