"""Tests for create_engine wiring."""
import pytest
import yaml

from tasksync.bootstrap import create_engine, resolve_path
from tasksync.errors import ConfigurationError
from tasksync.remote.monday_client import MondayClient
from tasksync.storage.local_store import JsonTaskStore


def write_config(base_path, **monday):
    base_path.mkdir(parents=True, exist_ok=True)
    (base_path / "config.yaml").write_text(yaml.safe_dump({"monday": monday}))


class TestCreateEngine:
    """Tests for building an engine from the data directory."""

    def test_default_collaborators(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MONDAY_API_KEY", "key")
        write_config(tmp_path, enabled=True, board_id="42", conflict_resolution="local")

        engine = create_engine(tmp_path)

        assert isinstance(engine.remote, MondayClient)
        assert isinstance(engine.local_store, JsonTaskStore)
        assert engine.local_store.tasks_file == tmp_path / "tasks.json"
        assert engine.offline_queue.queue_file == tmp_path / ".sync-offline-queue.json"
        assert engine.conflict_resolver.policy.value == "local"

    def test_missing_api_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MONDAY_API_KEY", raising=False)
        write_config(tmp_path, enabled=True, board_id="42")

        with pytest.raises(ConfigurationError, match="API key"):
            create_engine(tmp_path)

    def test_injected_remote_skips_credential_check(self, tmp_path, remote, monkeypatch):
        monkeypatch.delenv("MONDAY_API_KEY", raising=False)

        engine = create_engine(tmp_path, remote=remote)

        assert engine.remote is remote
        assert engine.config.enabled is False

    def test_resolve_path(self, tmp_path):
        assert resolve_path(tmp_path, "queue.json") == tmp_path / "queue.json"
        assert resolve_path(tmp_path, str(tmp_path / "abs.json")) == tmp_path / "abs.json"
