"""Tests for the relay CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from src.cli import cli


def _invoke(config: Path, *args: str):  # noqa: ANN202
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(config), *args])


def test_selection_add_persists(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    result = _invoke(config, "selection", "add", "111@c.us")
    assert result.exit_code == 0
    assert "Chat selected: 111@c.us" in result.output
    assert json.loads(config.read_text())["selectedChats"] == ["111@c.us"]


def test_selection_list(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    _invoke(config, "selection", "add", "222@c.us")
    _invoke(config, "selection", "add", "111@c.us")
    result = _invoke(config, "selection", "list")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data == {"selectedChats": ["111@c.us", "222@c.us"], "count": 2}


def test_selection_remove(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    _invoke(config, "selection", "add", "111@c.us")
    result = _invoke(config, "selection", "remove", "111@c.us")
    assert result.exit_code == 0
    assert "Chat deselected: 111@c.us" in result.output
    assert json.loads(config.read_text())["selectedChats"] == []


def test_set_webhook_and_show_config(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    result = _invoke(config, "set-webhook", "https://hooks.slack.test/x")
    assert result.exit_code == 0
    assert "Slack webhook updated" in result.output

    shown = json.loads(_invoke(config, "show-config").output)
    assert shown["hasSlackWebhook"] is True
    assert shown["selectedChatsCount"] == 0
    assert shown["serverPort"] == 3000
    assert shown["lastUpdated"] is not None
    assert "https://hooks.slack.test/x" not in json.dumps(shown)


def test_show_config_without_file(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "missing.json", "show-config")
    assert result.exit_code == 0
    shown = json.loads(result.output)
    assert shown["hasSlackWebhook"] is False
    assert shown["lastUpdated"] is None


def test_serve_runs_app_factory(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    with patch("src.cli.uvicorn.run") as mock_run:
        result = _invoke(config, "serve", "--port", "4100")
    assert result.exit_code == 0
    mock_run.assert_called_once()
    args, kwargs = mock_run.call_args
    assert args[0] == "src.server.app:create_app_from_env"
    assert kwargs["factory"] is True
    assert kwargs["port"] == 4100


def test_serve_defaults_port_from_config(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"selectedChats": [], "serverPort": 3900}))
    with patch("src.cli.uvicorn.run") as mock_run:
        result = _invoke(config, "serve")
    assert result.exit_code == 0
    assert mock_run.call_args.kwargs["port"] == 3900


def test_serve_binds_loopback_by_default(tmp_path: Path) -> None:
    with patch("src.cli.uvicorn.run") as mock_run:
        result = _invoke(tmp_path / "config.json", "serve")
    assert result.exit_code == 0
    assert mock_run.call_args.kwargs["host"] == "127.0.0.1"
