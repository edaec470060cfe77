import json

import httpx
import pytest

from config.config import ConfigLoader
from tools.web.session_state import InMemorySessionHistory, SessionContext


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Isolated config document; returns a writer taking the JSON body."""
    path = tmp_path / "config.json"
    monkeypatch.setenv("WEB_TOOLS_CONFIG", str(path))
    monkeypatch.delenv("EXA_API_KEY", raising=False)

    def write(document: dict) -> ConfigLoader:
        path.write_text(json.dumps(document), encoding="utf-8")
        return ConfigLoader(ttl_seconds=0)

    write({"exaApiKey": "test-exa-key", "github": {"clonePath": str(tmp_path / "clones")}})
    return write


@pytest.fixture
def config_loader(config_file):
    return ConfigLoader(ttl_seconds=0)


@pytest.fixture
def session(tmp_path):
    return SessionContext.create(offload_dir=tmp_path)


@pytest.fixture
def history():
    return InMemorySessionHistory()


@pytest.fixture
def mock_client():
    """Build an httpx.AsyncClient served by a handler function."""
    clients = []

    def build(handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    return build
