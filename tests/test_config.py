import json
from pathlib import Path

import pytest

from meshfeed.config import (
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_objects(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "nope.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_write_config_file_creates_parent(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    written = write_config_file({"api_port": 4111}, config_path)
    assert written == config_path
    assert json.loads(config_path.read_text()) == {"api_port": 4111}


def test_get_config_path_honours_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MESHFEED_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MESHFEED_TOKEN_DB", raising=False)
    cfg = load_config()
    assert cfg.api_host == "127.0.0.1"
    assert cfg.api_port == 4110
    assert cfg.worker_threads == 3
    assert cfg.work_queue_policy == "reject"
    assert cfg.token_db_path == "~/.meshfeed/tokens.sqlite"


def test_load_config_file_then_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "api_host": "10.0.0.5",
                "api_port": "4111",
                "poll_interval_s": 5,
                "work_queue_policy": "BLOCK",
                "log_level": "info",
                "unknown_key": True,
            }
        )
    )
    monkeypatch.setenv("MESHFEED_API_HOST", "192.168.1.9")
    monkeypatch.setenv("MESHFEED_WORKER_THREADS", "6")

    cfg = load_config(config_path)

    assert cfg.api_host == "192.168.1.9"
    assert cfg.api_port == 4111
    assert cfg.poll_interval_s == 5.0
    assert cfg.worker_threads == 6
    assert cfg.work_queue_policy == "block"
    assert cfg.log_level == "INFO"
    assert not hasattr(cfg, "unknown_key")


def test_empty_token_db_disables_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MESHFEED_TOKEN_DB", "")
    assert load_config().token_db_path is None


def test_invalid_values_warn_and_keep_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"api_port": "many", "work_queue_policy": "drop"}))
    monkeypatch.setenv("MESHFEED_REQUEST_TIMEOUT_S", "soon")

    with pytest.warns(RuntimeWarning):
        cfg = load_config(config_path)

    assert cfg.api_port == 4110
    assert cfg.work_queue_policy == "reject"
    assert cfg.request_timeout_s == 10.0


def test_load_config_ignores_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")
    with pytest.warns(RuntimeWarning, match="invalid config json"):
        cfg = load_config(config_path)
    assert cfg.api_port == 4110


def test_env_overrides_only_include_set_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MESHFEED_API_PORT", "5000")
    overrides = get_env_overrides()
    assert overrides["api_port"] == "5000"
    assert "api_host" not in overrides


def test_as_dict_masks_password(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MESHFEED_API_PASSWORD", "hunter2")
    data = load_config().as_dict()
    assert data["api_password"] == "***"
