"""Configuration loader for cubed-sync.

Settings come from (lowest to highest precedence) the dataclass defaults, the
``CubedCraft.json`` settings file in the project root, environment variables
(with optional .env support) and finally command-line flags applied by
``__main__``. The result is a typed Config object used by the rest of the
application.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

SETTINGS_FILE = "CubedCraft.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "folderSupport": False,
    "username": "",
    "logErrors": False,
    "baseDir": "plugins/Skript/scripts",
    "server": "",
}

DEFAULT_IGNORE = ("*.swp", "*.swx", "*~", ".#*", ".DS_Store", SETTINGS_FILE)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _parse_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Invalid {name}: {value}") from e


def _parse_float(name: str, value: Optional[str], default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"Invalid {name}: {value}") from e


def _parse_patterns(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return tuple()
    parts = [p.strip() for p in value.split(",")]
    return tuple(p for p in parts if p)


def normalize_base_dir(value: str) -> str:
    """Strip one leading and one trailing path separator."""
    if value.startswith("/"):
        value = value[1:]
    if value.endswith("/"):
        value = value[:-1]
    return value


def read_settings(path: str) -> Dict[str, Any]:
    """Read the JSON settings file; a missing file means no overrides."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Invalid settings file {path}: expected a JSON object")
    return data


def write_default_settings(path: str) -> bool:
    """Write the default settings file. Returns False if one already exists."""
    if os.path.exists(path):
        return False
    with open(path, "w", encoding="utf-8") as f:
        json.dump(DEFAULT_SETTINGS, f, indent=4)
        f.write("\n")
    return True


def _raw(settings: Dict[str, Any], key: str, env: str) -> Optional[str]:
    value = os.getenv(env)
    if value is not None:
        return value
    value = settings.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


@dataclass
class Config:
    root_dir: str = "."
    settings_file: str = SETTINGS_FILE

    # Dashboard / sync target
    folder_support: bool = False
    username: str = ""  # display name only, never used to log in
    log_errors: bool = False
    base_dir: str = "plugins/Skript/scripts"
    server: Optional[str] = None
    base_url: str = "https://playerservers.com"
    cookie_name: str = "PHPSESSID"
    request_timeout: float = 15.0

    # Paths / files
    local_directory: str = "."
    credentials_file: str = os.path.expanduser("~/.config/cubed-sync/credentials.enc")
    log_file: str = os.path.expanduser("~/.config/cubed-sync/cubed-sync.log")

    # Credential storage
    use_keyring: bool = False
    keyring_service: str = "cubed-sync"

    # Session / login behaviour
    probe_interval: int = 30  # seconds a non-expired probe result is trusted (0 = probe every call)
    keepalive_interval: int = 300
    max_login_attempts: int = 5
    retry_backoff: float = 1.0

    # Watcher
    include_patterns: Tuple[str, ...] = tuple()
    exclude_patterns: Tuple[str, ...] = tuple()
    ignore_patterns: Tuple[str, ...] = DEFAULT_IGNORE  # always ignored (takes precedence over include)
    debounce_ms: int = 250

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def settings_path(self) -> str:
        return os.path.join(self.root_dir, self.settings_file)

    @staticmethod
    def load(root_dir: str = ".") -> "Config":
        # Load .env if present
        load_dotenv()

        root_dir = os.path.abspath(os.path.expanduser(root_dir))
        settings_file = os.getenv("CUBED_SETTINGS_FILE", SETTINGS_FILE)
        settings = read_settings(os.path.join(root_dir, settings_file))

        # Dashboard / sync target
        folder_support = _parse_bool(_raw(settings, "folderSupport", "CUBED_FOLDER_SUPPORT"), False)
        username = _raw(settings, "username", "CUBED_USERNAME") or ""
        log_errors = _parse_bool(_raw(settings, "logErrors", "CUBED_LOG_ERRORS"), False)
        base_dir = normalize_base_dir(_raw(settings, "baseDir", "CUBED_BASE_DIR") or "plugins/Skript/scripts")
        server = (_raw(settings, "server", "CUBED_SERVER") or "").strip() or None
        base_url = (_raw(settings, "baseUrl", "CUBED_BASE_URL") or "https://playerservers.com").rstrip("/")
        cookie_name = _raw(settings, "cookieName", "CUBED_COOKIE_NAME") or "PHPSESSID"
        request_timeout = _parse_float("CUBED_REQUEST_TIMEOUT", _raw(settings, "requestTimeout", "CUBED_REQUEST_TIMEOUT"), 15.0)
        if request_timeout <= 0:
            request_timeout = 15.0

        # Paths
        local_dir = _raw(settings, "localDirectory", "CUBED_LOCAL_DIRECTORY") or root_dir
        local_dir = os.path.abspath(os.path.join(root_dir, os.path.expanduser(local_dir)))
        credentials_file = os.path.expanduser(
            _raw(settings, "credentialsFile", "CUBED_CREDENTIALS_FILE") or "~/.config/cubed-sync/credentials.enc")
        log_file = os.path.expanduser(_raw(settings, "logFile", "CUBED_LOG_FILE") or "~/.config/cubed-sync/cubed-sync.log")

        # Credential storage
        use_keyring = _parse_bool(_raw(settings, "useKeyring", "CUBED_USE_KEYRING"), False)
        keyring_service = _raw(settings, "keyringService", "CUBED_KEYRING_SERVICE") or "cubed-sync"

        # Session / login
        probe_interval = _parse_int("CUBED_PROBE_INTERVAL", _raw(settings, "probeInterval", "CUBED_PROBE_INTERVAL"), 30)
        if probe_interval < 0:
            probe_interval = 0
        keepalive_interval = _parse_int(
            "CUBED_KEEPALIVE_INTERVAL", _raw(settings, "keepaliveInterval", "CUBED_KEEPALIVE_INTERVAL"), 300)
        if keepalive_interval < 0:
            keepalive_interval = 0
        max_login_attempts = _parse_int(
            "CUBED_MAX_LOGIN_ATTEMPTS", _raw(settings, "maxLoginAttempts", "CUBED_MAX_LOGIN_ATTEMPTS"), 5)
        if max_login_attempts < 1:
            max_login_attempts = 1
        retry_backoff = _parse_float("CUBED_RETRY_BACKOFF", _raw(settings, "retryBackoff", "CUBED_RETRY_BACKOFF"), 1.0)
        if retry_backoff < 0:
            retry_backoff = 0.0

        # Watcher
        include_patterns = _parse_patterns(_raw(settings, "includePatterns", "CUBED_INCLUDE_PATTERNS"))
        exclude_patterns = _parse_patterns(_raw(settings, "excludePatterns", "CUBED_EXCLUDE_PATTERNS"))
        ignore_patterns = DEFAULT_IGNORE + _parse_patterns(_raw(settings, "ignorePatterns", "CUBED_IGNORE_PATTERNS"))
        debounce_ms = _parse_int("CUBED_DEBOUNCE_MS", _raw(settings, "debounceMs", "CUBED_DEBOUNCE_MS"), 250)
        if debounce_ms < 0:
            debounce_ms = 0

        # Logging
        log_level = (_raw(settings, "logLevel", "CUBED_LOG_LEVEL") or "INFO").upper()
        log_json = _parse_bool(_raw(settings, "logJson", "CUBED_LOG_JSON"), False)

        return Config(
            root_dir=root_dir,
            settings_file=settings_file,
            folder_support=folder_support,
            username=username,
            log_errors=log_errors,
            base_dir=base_dir,
            server=server,
            base_url=base_url,
            cookie_name=cookie_name,
            request_timeout=request_timeout,
            local_directory=local_dir,
            credentials_file=credentials_file,
            log_file=log_file,
            use_keyring=use_keyring,
            keyring_service=keyring_service,
            probe_interval=probe_interval,
            keepalive_interval=keepalive_interval,
            max_login_attempts=max_login_attempts,
            retry_backoff=retry_backoff,
            include_patterns=include_patterns,
            exclude_patterns=exclude_patterns,
            ignore_patterns=ignore_patterns,
            debounce_ms=debounce_ms,
            log_level=log_level,
            log_json=log_json,
        )
