import os

import pytest

from jr_engine.providers.retry import reset_upstream_state


def pytest_configure(config) -> None:
    config.addinivalue_line("markers", "slow: large-sample statistical checks")


@pytest.fixture(autouse=True)
def _clear_jobrec_env(monkeypatch) -> None:
    for key in list(os.environ):
        if key.startswith("JOBREC_"):
            monkeypatch.delenv(key, raising=False)
    reset_upstream_state()
