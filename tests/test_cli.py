import base64
import json

import pytest
from typer.testing import CliRunner

from vtslink.cli import app
from vtslink.config import load_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def app_dir(tmp_path, monkeypatch):
    monkeypatch.setattr("vtslink.config.CONFIG_FILE", tmp_path / "config.json")
    monkeypatch.setattr("vtslink.cli.CONFIG_FILE", tmp_path / "config.json")
    monkeypatch.setattr("vtslink.token_store.STORE_DIR", tmp_path / "store")
    return tmp_path


def test_setup_writes_endpoint_and_icon(app_dir):
    icon = app_dir / "icon.png"
    icon.write_bytes(b"\x89PNG fake")

    result = runner.invoke(
        app,
        [
            "setup",
            "--endpoint", "ws://studio.local:8001",
            "--name", "Deck Bridge",
            "--developer", "someone",
            "--icon", str(icon),
            "--store", "stage",
        ],
    )

    assert result.exit_code == 0, result.output
    config = load_config(app_dir / "config.json")
    assert config.endpoint.address == "ws://studio.local:8001"
    assert config.endpoint.plugin_name == "Deck Bridge"
    assert config.endpoint.store == "stage"
    assert config.endpoint.plugin_icon == base64.b64encode(b"\x89PNG fake").decode()


def test_status_shows_token_state(app_dir):
    (app_dir / "store").mkdir()
    (app_dir / "store" / "default.json").write_text(json.dumps({"token": "t"}))

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Token stored" in result.output
    assert "yes" in result.output


def test_forget_token_removes_it(app_dir):
    (app_dir / "store").mkdir()
    path = app_dir / "store" / "default.json"
    path.write_text(json.dumps({"token": "t"}))

    result = runner.invoke(app, ["forget-token"])

    assert result.exit_code == 0, result.output
    assert json.loads(path.read_text()) == {}


def test_call_rejects_invalid_json_payload():
    result = runner.invoke(app, ["call", "HotkeyTriggerRequest", "--data", "{nope"])
    assert result.exit_code == 2
