"""Tests for persisted agent state and configuration loading."""

import json

import pytest

from chatdock.agent.ports import Bounds
from chatdock.agent.storage import AgentStore
from chatdock.config import (
    GlobalConfig,
    ServiceConfig,
    agent_socket_path,
    control_socket_path,
    load_global_config,
    load_service_config,
    save_service_config,
    status_file_path,
)
from chatdock.errors import ConfigLoadError, ErrorCode


class TestAgentStore:
    def test_absent_values(self, tmp_path):
        store = AgentStore(tmp_path / "state.json")
        store.load()
        assert store.get_bounds("whatsapp") is None
        assert store.first_run_dismissed("whatsapp") is False

    def test_bounds_round_trip(self, tmp_path):
        path = tmp_path / "state.json"
        store = AgentStore(path)
        store.set_bounds("whatsapp", Bounds(10, 20, 1000, 700))
        store.dismiss_first_run("messenger")

        reloaded = AgentStore(path)
        reloaded.load()
        assert reloaded.get_bounds("whatsapp") == Bounds(10, 20, 1000, 700)
        assert reloaded.get_bounds("messenger") is None
        assert reloaded.first_run_dismissed("messenger") is True
        assert reloaded.first_run_dismissed("whatsapp") is False

        data = json.loads(path.read_text())
        assert data["version"] == "1.0"

    def test_corrupted_file_backed_up(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = AgentStore(path)
        store.load()
        assert store.services == {}
        assert (tmp_path / "state.json.bak").exists()
        assert not path.exists()

    def test_malformed_bounds_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": "1.0", "services": {"whatsapp": {"bounds": {"left": 1}}}}))
        store = AgentStore(path)
        store.load()
        assert store.get_bounds("whatsapp") is None


class TestConfig:
    def test_missing_files_give_defaults(self, tmp_path):
        assert load_global_config(tmp_path / "none.json") == GlobalConfig()
        assert load_service_config("whatsapp", tmp_path / "none.json") == ServiceConfig()

    def test_global_config_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"devtools_url": "http://127.0.0.1:9333/", "shell_helper_enabled": False}))
        config = load_global_config(path)
        assert config.devtools_url == "http://127.0.0.1:9333"
        assert config.shell_helper_enabled is False

    def test_invalid_devtools_url(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"devtools_url": "ws://localhost"}))
        with pytest.raises(ConfigLoadError) as exc:
            load_global_config(path)
        assert exc.value.code == ErrorCode.CONFIG_LOAD_FAILED

    def test_corrupt_json(self, tmp_path):
        path = tmp_path / "whatsapp.json"
        path.write_text("{")
        with pytest.raises(ConfigLoadError):
            load_service_config("whatsapp", path)

    def test_service_config_round_trip(self, tmp_path):
        path = tmp_path / "services" / "whatsapp.json"
        save_service_config("whatsapp", ServiceConfig(do_not_disturb=True), path)
        assert load_service_config("whatsapp", path).do_not_disturb is True

    def test_runtime_paths(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
        assert agent_socket_path("whatsapp") == tmp_path / "chatdock" / "whatsapp.sock"
        assert control_socket_path("whatsapp") == tmp_path / "chatdock" / "whatsapp-control.sock"
        assert status_file_path("messenger") == tmp_path / "chatdock" / "messenger-status.json"
