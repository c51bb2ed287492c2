"""Tests for the mbackfill command line."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from mongo_backfill import __version__, cli
from mongo_backfill.sources import MemoryDocumentSource

T1 = datetime(2023, 1, 1, tzinfo=timezone.utc)

runner = CliRunner()

ENV_KEYS = (
    "MBACKFILL_MONGODB_URI",
    "MBACKFILL_DEFAULT_DB",
    "MBACKFILL_COLLECTION",
    "MBACKFILL_BATCH_SIZE",
    "MBACKFILL_RATE_LIMIT_MS",
    "MBACKFILL_USE_TRANSACTIONS",
    "MBACKFILL_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class DummyClient:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def memory_source(monkeypatch):
    source = MemoryDocumentSource()
    source.insert("matches", "m1", {})
    source.insert("matches", "m2", {"isActive": False, "lastMessage": T1})
    source.insert("matches", "m3", {"lastMessageAt": T1})

    client = DummyClient()
    monkeypatch.setattr(cli, "get_motor_client", lambda uri: client)
    source.configs = []

    def fake_document_source(c, config):
        source.configs.append(config)
        return source

    monkeypatch.setattr(cli, "get_document_source", fake_document_source)
    source.client = client
    return source


class TestRun:
    """Tests for running the migration."""

    def test_run_updates_documents(self, memory_source):
        """A clean run exits 0 and reports the update count."""
        result = runner.invoke(cli.app, ["--uri", "mongodb://localhost", "--db", "app"])

        assert result.exit_code == 0
        assert "Updated 2 of 3 documents" in result.output
        assert memory_source.get("matches", "m1")["isActive"] is True
        assert memory_source.client.closed is True

    def test_second_run_reports_nothing_to_do(self, memory_source):
        """A rerun finds nothing to migrate."""
        runner.invoke(cli.app, ["--uri", "mongodb://localhost", "--db", "app"])
        result = runner.invoke(cli.app, ["--uri", "mongodb://localhost", "--db", "app"])

        assert result.exit_code == 0
        assert "No matches needed migration" in result.output

    def test_failed_commit_exits_non_zero(self, memory_source):
        """A failed batch makes the process exit 1."""
        memory_source.fail_on_batches = {0}

        result = runner.invoke(cli.app, ["--uri", "mongodb://localhost", "--db", "app"])

        assert result.exit_code == 1
        assert "Migration failed" in result.output

    def test_dry_run(self, memory_source):
        """Dry runs report candidates and write nothing."""
        result = runner.invoke(cli.app, ["--uri", "mongodb://localhost", "--db", "app", "--dry-run"])

        assert result.exit_code == 0
        assert "Dry run: 2 of 3" in result.output
        assert memory_source.attempts == []

    def test_reads_config_file(self, memory_source, tmp_path, monkeypatch):
        """Without --uri/--db the config file is used."""
        monkeypatch.delenv("MBACKFILL_MONGODB_URI", raising=False)
        monkeypatch.delenv("MBACKFILL_DEFAULT_DB", raising=False)
        config_path = tmp_path / ".mbackfill.yml"
        config_path.write_text(yaml.safe_dump({"mongodb_uri": "mongodb://localhost", "default_db": "app"}))

        result = runner.invoke(cli.app, ["--config", str(config_path)])

        assert result.exit_code == 0
        assert "Updated 2 of 3 documents" in result.output

    def test_connection_flags_keep_layered_settings(self, memory_source, tmp_path, monkeypatch):
        """--uri/--db override only those keys; env and file settings survive."""
        monkeypatch.setenv("MBACKFILL_USE_TRANSACTIONS", "false")
        config_path = tmp_path / ".mbackfill.yml"
        config_path.write_text(yaml.safe_dump({
            "mongodb_uri": "mongodb://file:27017",
            "default_db": "filedb",
            "use_transactions": True,
            "collection": "legacy",
            "batch_size": 2,
        }))

        result = runner.invoke(
            cli.app, ["--uri", "mongodb://flag:27017", "--db", "flagdb", "--config", str(config_path)]
        )

        assert result.exit_code == 0
        config = memory_source.configs[0]
        assert config.mongodb_uri == "mongodb://flag:27017"
        assert config.default_db == "flagdb"
        assert config.use_transactions is False
        assert config.collection == "legacy"
        assert config.batch_size == 2

    def test_collection_flag_overrides_file(self, memory_source, tmp_path):
        """Command-line options win over the config file."""
        config_path = tmp_path / ".mbackfill.yml"
        config_path.write_text(yaml.safe_dump({
            "mongodb_uri": "mongodb://localhost",
            "default_db": "app",
            "collection": "legacy",
        }))

        result = runner.invoke(cli.app, ["--config", str(config_path), "--collection", "matches"])

        assert result.exit_code == 0
        assert memory_source.configs[0].collection == "matches"
        assert "Updated 2 of 3 documents" in result.output

    def test_missing_config_exits_non_zero(self, tmp_path, monkeypatch):
        """Missing connection settings are reported, not raised."""
        monkeypatch.delenv("MBACKFILL_MONGODB_URI", raising=False)
        monkeypatch.delenv("MBACKFILL_DEFAULT_DB", raising=False)

        result = runner.invoke(cli.app, ["--config", str(tmp_path / "missing.yml")])

        assert result.exit_code == 1
        assert "Missing MongoDB URI" in result.output

    def test_invalid_batch_size(self, memory_source):
        """Batch sizes over the limit are rejected before connecting."""
        result = runner.invoke(
            cli.app, ["--uri", "mongodb://localhost", "--db", "app", "--batch-size", "1000"]
        )

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert memory_source.client.closed is False


class TestCommands:
    """Tests for the helper subcommands."""

    def test_version(self):
        result = runner.invoke(cli.app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_writes_config(self, tmp_path):
        path = tmp_path / ".mbackfill.yml"

        result = runner.invoke(cli.app, ["init", "--path", str(path)])

        assert result.exit_code == 0
        assert path.exists()
        assert yaml.safe_load(path.read_text())["collection"] == "matches"

    def test_init_keeps_existing(self, tmp_path):
        path: Path = tmp_path / ".mbackfill.yml"
        path.write_text("custom: value\n")

        result = runner.invoke(cli.app, ["init", "--path", str(path)])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert path.read_text() == "custom: value\n"
