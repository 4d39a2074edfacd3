"""Tests for CLI commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from searchsync.cli import _setup_logging, app

runner = CliRunner()


@pytest.fixture
def schema_file(tmp_path: Path, sample_schema: dict) -> Path:
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(sample_schema), encoding="utf-8")
    return path


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("searchsync.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("searchsync.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestTokenizeCommand:
    """Tests for the tokenize command."""

    def test_tokenize(self) -> None:
        result = runner.invoke(app, ["tokenize", "maison"])
        assert result.exit_code == 0
        assert "mai maiso" in result.stdout

    def test_tokenize_only_stop_words(self) -> None:
        result = runner.invoke(app, ["tokenize", "le la les"])
        assert result.exit_code == 0
        assert "No tokens." in result.stdout


class TestCatalogCommand:
    """Tests for the catalog command."""

    def test_catalog_table(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["catalog", "--schema", str(schema_file)])
        assert result.exit_code == 0
        assert "__code" in result.stdout
        assert "__reference" in result.stdout

    def test_catalog_without_tracked_fields(self, tmp_path: Path) -> None:
        schema = tmp_path / "plain.json"
        schema.write_text(json.dumps({"fields": [{"name": "title"}]}), encoding="utf-8")

        result = runner.invoke(app, ["catalog", "-s", str(schema)])
        assert result.exit_code == 0
        assert "search is disabled" in result.stdout

    def test_schema_from_environment(self, schema_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEARCHSYNC_SCHEMA", str(schema_file))

        result = runner.invoke(app, ["catalog"])
        assert result.exit_code == 0
        assert "__code" in result.stdout

    def test_missing_schema_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["catalog", "--schema", str(tmp_path / "nope.json")])
        assert result.exit_code != 0

    def test_no_schema(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SEARCHSYNC_SCHEMA", raising=False)
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(app, ["catalog"])
        assert result.exit_code != 0

    def test_invalid_schema(self, tmp_path: Path) -> None:
        schema = tmp_path / "bad.json"
        schema.write_text(
            json.dumps({"fields": [{"name": "details", "type": "object", "trackable": True, "children": []}]}),
            encoding="utf-8",
        )

        result = runner.invoke(app, ["catalog", "--schema", str(schema)])
        assert result.exit_code != 0


class TestIndexSpecCommand:
    """Tests for the index-spec command."""

    def test_index_spec(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["index-spec", "--schema", str(schema_file)])
        assert result.exit_code == 0
        assert "TextIndex" in result.stdout

    def test_index_spec_without_tracked_fields(self, tmp_path: Path) -> None:
        schema = tmp_path / "plain.json"
        schema.write_text(json.dumps([{"name": "title"}]), encoding="utf-8")

        result = runner.invoke(app, ["index-spec", "--schema", str(schema)])
        assert result.exit_code == 0
        assert "no index needed" in result.stdout


class TestRewriteCommand:
    """Tests for the rewrite command."""

    def test_rewrite(self, schema_file: Path) -> None:
        result = runner.invoke(
            app, ["rewrite", '{"$set": {"code": "B"}}', "--schema", str(schema_file)]
        )
        assert result.exit_code == 0
        assert "__code" in result.stdout
        assert "$literal" in result.stdout

    def test_rewrite_untouched(self, schema_file: Path) -> None:
        result = runner.invoke(
            app, ["rewrite", '{"$set": {"details.status": "ok"}}', "--schema", str(schema_file)]
        )
        assert result.exit_code == 0
        assert "update unchanged" in result.stdout

    def test_rewrite_invalid_json(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["rewrite", "{not json", "--schema", str(schema_file)])
        assert result.exit_code != 0

    def test_rewrite_positional_update(self, schema_file: Path) -> None:
        """The $ element is located from the filter."""
        result = runner.invoke(
            app,
            [
                "rewrite",
                '{"$set": {"produits.$.description": "x"}}',
                "--filter",
                '{"produits.reference": "A"}',
                "--schema",
                str(schema_file),
            ],
        )
        assert result.exit_code == 0
        assert "$indexOfArray" in result.stdout

    def test_rewrite_unsupported_update(self, schema_file: Path) -> None:
        result = runner.invoke(
            app,
            ["rewrite", '{"$pull": {"produits": {"reference": "A"}}}', "--schema", str(schema_file)],
        )
        assert result.exit_code != 0


class TestSeedCommand:
    """Tests for the seed command."""

    def test_seed(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["seed", '{"code": "maison"}', "--schema", str(schema_file)])
        assert result.exit_code == 0
        assert "mai maiso" in result.stdout

    def test_seed_requires_object(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["seed", "[1, 2]", "--schema", str(schema_file)])
        assert result.exit_code != 0


class TestWebCommand:
    """Tests for the web command."""

    def test_web_starts_uvicorn(self) -> None:
        with patch("uvicorn.run") as mock_uvicorn_run:
            result = runner.invoke(app, ["web", "--host", "0.0.0.0", "--port", "9000"])

        assert result.exit_code == 0
        mock_uvicorn_run.assert_called_once()
        call_kwargs = mock_uvicorn_run.call_args[1]
        assert call_kwargs["host"] == "0.0.0.0"
        assert call_kwargs["port"] == 9000
