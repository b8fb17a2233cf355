"""Tests for the JSON configuration."""

import json
from pathlib import Path

import pytest

from snap_sync.config import (
    COLLISION_OVERWRITE,
    DEFAULT_CONFIG,
    Config,
    ConfigError,
)

VALID = {
    "mqtt_host": "broker.local",
    "frigate_api_address": "http://frigate.local:5000/",
    "upload_destinations": [
        "local:path=/srv/frigate",
        "sftp:username=u;host=h;remote-path=/r;identity=/k",
    ],
}


def _write(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_missing_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "nested" / "config.json"
    cfg = Config(path)
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == DEFAULT_CONFIG
    assert cfg.mqtt_port == 1883


def test_stored_values_merge_over_defaults(tmp_path):
    cfg = Config(_write(tmp_path / "c.json", VALID))
    assert cfg.mqtt_host == "broker.local"
    assert cfg.mqtt_port == 1883
    assert cfg.mqtt_topic_prefix == "frigate"
    assert cfg.frigate_api_address == "http://frigate.local:5000"
    assert cfg.retry_max_attempts == 6


def test_invalid_json(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigError):
        Config(path)


def test_non_object_json(tmp_path):
    with pytest.raises(ConfigError, match="JSON object"):
        Config(_write(tmp_path / "c.json", ["a", "b"]))


def test_from_dict_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = Config.from_dict(VALID)
    cfg.save()
    assert cfg.path is None
    assert list(tmp_path.iterdir()) == []


def test_validate_accepts_valid_config():
    Config.from_dict(VALID).validate()


def test_validate_reports_every_problem():
    cfg = Config.from_dict(
        {
            "mqtt_username": "frigate",
            "upload_destinations": [
                "local:path=/a",
                "local:path=/a",
                "ftp:path=/b",
            ],
            "collision_mode": "explode",
            "log_level": "chatty",
        }
    )
    with pytest.raises(ConfigError) as info:
        cfg.validate()
    message = str(info.value)
    assert "mqtt_host is not set" in message
    assert "frigate_api_address is not set" in message
    assert "mqtt_username and mqtt_password" in message
    assert "Duplicate destination: local:path=/a" in message
    assert "Invalid path descriptor 'ftp:path=/b'" in message
    assert "collision_mode" in message
    assert "log_level" in message


def test_validate_requires_destinations():
    cfg = Config.from_dict({**VALID, "upload_destinations": []})
    with pytest.raises(ConfigError, match="upload_destinations cannot be empty"):
        cfg.validate()


def test_validate_rejects_non_numeric_settings():
    cfg = Config.from_dict({**VALID, "retry_max_attempts": "lots"})
    with pytest.raises(ConfigError, match="Numeric setting"):
        cfg.validate()


def test_property_normalisation():
    cfg = Config.from_dict(
        {
            "collision_mode": "bogus",
            "log_level": "debug",
            "retry_max_attempts": 0,
            "retry_base_delay_seconds": 5,
            "retry_max_delay_seconds": 1,
            "upload_destinations": ["  local:path=/a  ", "", "   "],
        }
    )
    assert cfg.collision_mode == COLLISION_OVERWRITE
    assert cfg.log_level == "DEBUG"
    assert cfg.retry_max_attempts == 1
    assert cfg.retry_max_delay == 5
    assert cfg.upload_destinations == ["local:path=/a"]


def test_log_file_override(tmp_path):
    cfg = Config.from_dict({"log_file": str(tmp_path / "s.log")})
    assert cfg.log_file == tmp_path / "s.log"
