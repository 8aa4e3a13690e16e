"""
Shared fixtures: the fake agent wired in through env vars, and a freshly
imported API server with an isolated database.
"""
import importlib
import re
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from filehandles.auth import generate_admin_keypair, sign_challenge
from filehandles.tests.fake_leak_agent import listener as fake_listener

FAKE_AGENT = "filehandles.tests.fake_leak_agent"
FAKE_LISTENER = "filehandles.tests.fake_leak_agent.listener"
SCRIPTED_HELPER = "filehandles.tests.scripted_helper"

HAS_PROC_FD = Path("/proc/self/fd").is_dir()


@pytest.fixture
def agent_env(tmp_path, monkeypatch):
    """Point the console at the fake agent, with residency state under tmp_path."""
    state_dir = tmp_path / "agent-state"
    monkeypatch.setenv("FAKE_AGENT_STATE_DIR", str(state_dir))
    monkeypatch.setenv("FHC_AGENT_LISTENER", FAKE_LISTENER)
    monkeypatch.setenv("FHC_AGENT_MAIN", FAKE_AGENT)
    monkeypatch.setenv("FHC_ATTACH_TIMEOUT", "60")
    # The console only finds listeners that are already loaded
    assert sys.modules[FAKE_LISTENER] is fake_listener
    return state_dir


@pytest.fixture
def fresh_app(tmp_path, monkeypatch, agent_env):
    """Fresh API server module with isolated database and JWT secret."""
    monkeypatch.setenv("FHC_DB_PATH", str(tmp_path / "fhc_test.db"))
    monkeypatch.setenv("FHC_JWT_SECRET", str(tmp_path / ".jwt_secret"))
    monkeypatch.setenv("FHC_ADMIN_ALLOWLIST", "")

    api_server = reload_app()
    client = TestClient(api_server.app)
    return client, api_server


def reload_app():
    """Re-import the server so module-level settings pick up the current env."""
    # keep the fake agent (and its listener) loaded
    for mod_name in list(sys.modules):
        if mod_name.startswith("filehandles.") and not mod_name.startswith("filehandles.tests"):
            del sys.modules[mod_name]
    return importlib.import_module("filehandles.api_server")


def login(api_server, monkeypatch, name="ops", is_admin=True):
    """Register a key, optionally allowlist it, and return auth headers."""
    auth = api_server._auth
    private_key, public_key = generate_admin_keypair()
    address = auth.register(name, public_key)

    if is_admin:
        monkeypatch.setenv("FHC_ADMIN_ALLOWLIST", address)

    challenge = auth.create_challenge(address)
    result = auth.verify_challenge(address, sign_challenge(private_key, challenge))
    return {
        "address": address,
        "token": result.token,
        "private_key": private_key,
        "public_key": public_key,
        "headers": {"Authorization": f"Bearer {result.token}"},
    }


def open_descriptors(dump):
    """Split a dump into records; the first chunk is the '<n> descriptors are open' header."""
    return re.split(r"#\d+ ", dump)[1:]
