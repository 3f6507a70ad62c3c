"""
Shared pytest fixtures for bridge contract tests.
"""
import pytest

from bridge.tests.contracts._bridge_harness import FakeConfigs, FakeHost, FakeWebview, make_config
from bridge.collaborators import Collaborators


@pytest.fixture
def config():
    """BridgeConfig bound to an ephemeral localhost port."""
    return make_config()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def webview():
    return FakeWebview()


@pytest.fixture
def configs():
    return FakeConfigs()


@pytest.fixture
def collaborators(host, webview, configs):
    return Collaborators(host=host, webview=webview, configs=configs)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep BRIDGE_* variables and stray .env files out of every test."""
    import os
    for key in list(os.environ):
        if key.startswith("BRIDGE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BRIDGE_ENV_FILE", str(tmp_path / "missing.env"))
    yield
    # load_dotenv writes straight into os.environ
    for key in list(os.environ):
        if key.startswith("BRIDGE_"):
            os.environ.pop(key)
