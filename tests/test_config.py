import json
import os

from cubed_sync.config import Config, normalize_base_dir, write_default_settings, DEFAULT_SETTINGS


def test_config_load_defaults(monkeypatch, tmp_path):
    monkeypatch.delenv("CUBED_BASE_DIR", raising=False)
    monkeypatch.delenv("CUBED_SERVER", raising=False)
    monkeypatch.delenv("CUBED_LOCAL_DIRECTORY", raising=False)
    cfg = Config.load(str(tmp_path))
    assert cfg.base_dir == "plugins/Skript/scripts"
    assert cfg.server is None
    assert cfg.folder_support is False
    assert cfg.local_directory == str(tmp_path)
    assert cfg.settings_path == os.path.join(str(tmp_path), "CubedCraft.json")


def test_settings_file_values(monkeypatch, tmp_path):
    monkeypatch.delenv("CUBED_BASE_DIR", raising=False)
    monkeypatch.delenv("CUBED_SERVER", raising=False)
    (tmp_path / "CubedCraft.json").write_text(json.dumps({
        "folderSupport": True,
        "username": "Steve",
        "logErrors": True,
        "baseDir": "/plugins/Skript/scripts/",
        "server": "Survival",
        "excludePatterns": ["*.bak"],
    }))
    cfg = Config.load(str(tmp_path))
    assert cfg.folder_support is True
    assert cfg.username == "Steve"
    assert cfg.log_errors is True
    assert cfg.base_dir == "plugins/Skript/scripts"
    assert cfg.server == "Survival"
    assert cfg.exclude_patterns == ("*.bak",)


def test_env_overrides_settings_file(monkeypatch, tmp_path):
    (tmp_path / "CubedCraft.json").write_text(json.dumps({"server": "Survival", "folderSupport": True}))
    monkeypatch.setenv("CUBED_SERVER", "Creative")
    monkeypatch.setenv("CUBED_FOLDER_SUPPORT", "0")
    cfg = Config.load(str(tmp_path))
    assert cfg.server == "Creative"
    assert cfg.folder_support is False


def test_invalid_probe_interval(monkeypatch, tmp_path):
    monkeypatch.setenv("CUBED_PROBE_INTERVAL", "abc")
    try:
        Config.load(str(tmp_path))
    except ValueError as e:
        assert "Invalid CUBED_PROBE_INTERVAL" in str(e)
    else:
        assert False, "Expected ValueError"


def test_unreadable_settings_file(tmp_path):
    (tmp_path / "CubedCraft.json").write_text("{not json")
    try:
        Config.load(str(tmp_path))
    except ValueError as e:
        assert "CubedCraft.json" in str(e)
    else:
        assert False, "Expected ValueError"


def test_log_json_flag(monkeypatch, tmp_path):
    monkeypatch.setenv("CUBED_LOG_JSON", "1")
    cfg = Config.load(str(tmp_path))
    assert cfg.log_json is True


def test_normalize_base_dir():
    assert normalize_base_dir("/plugins/Skript/scripts/") == "plugins/Skript/scripts"
    assert normalize_base_dir("plugins") == "plugins"
    assert normalize_base_dir("/") == ""


def test_write_default_settings(tmp_path):
    path = tmp_path / "CubedCraft.json"
    assert write_default_settings(str(path)) is True
    assert json.loads(path.read_text()) == DEFAULT_SETTINGS
    path.write_text('{"server": "Mine"}')
    assert write_default_settings(str(path)) is False
    assert json.loads(path.read_text()) == {"server": "Mine"}
