import threading

import pytest

from cubed_sync.config import Config
from cubed_sync.errors import TransportError


class FakeTransport:
    """In-memory dashboard: records every call made against it."""

    def __init__(self, accounts=None, servers=None):
        self.accounts = accounts if accounts is not None else {"alice": "secret"}
        self.servers = servers if servers is not None else [{"id": 1, "name": "Creative"}]
        self.calls = []
        self.expired = False
        self.unreachable = False
        self.tokens = iter(f"tok{i}" for i in range(1, 1000))
        self.next_token = None
        self.login_gate = None  # threading.Event that login() waits on
        self.uploads = {}
        self.deleted = []
        self.upload_errors = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    def login(self, username, password):
        self._record("login", username, password)
        if self.login_gate is not None:
            self.login_gate.wait(5)
        if self.unreachable:
            raise TransportError("connection refused")
        if self.accounts.get(username) != password:
            return None
        self.expired = False
        if self.next_token:
            token, self.next_token = self.next_token, None
            return token
        return next(self.tokens)

    def probe_session_expired(self, token):
        self._record("probe", token)
        if self.unreachable:
            raise TransportError("connection refused")
        return self.expired

    def list_servers(self, token):
        self._record("list_servers", token)
        return list(self.servers)

    def select_server(self, token, server_id):
        self._record("select_server", token, server_id)
        if self.unreachable:
            raise TransportError("connection refused")

    def upload_file(self, headers, remote_path, data):
        self._record("upload", headers["cookie"], remote_path)
        self.uploads[remote_path] = data
        return list(self.upload_errors)

    def delete_file(self, headers, remote_path):
        self._record("delete", headers["cookie"], remote_path)
        self.deleted.append(remote_path)


class FakePrompter:
    """Answers prompts from a script; records what was asked."""

    def __init__(self, choices=(), visible=(), masked=()):
        self.choices = list(choices)
        self.visible = list(visible)
        self.masked = list(masked)
        self.asked = []

    def ask_choice(self, message, options):
        self.asked.append((message, list(options)))
        answer = self.choices.pop(0)
        if callable(answer):
            answer = answer(options)
        assert answer in options, f"{answer!r} not offered in {options!r}"
        return answer

    def ask_visible(self, prompt):
        return self.visible.pop(0)

    def ask_masked(self, prompt):
        return self.masked.pop(0)


class RecordingConsole:
    def __init__(self):
        self.messages = []

    def success(self, msg): self.messages.append(("success", msg))
    def error(self, msg): self.messages.append(("error", msg))
    def info(self, msg): self.messages.append(("info", msg))
    def log(self, msg): self.messages.append(("log", msg))

    def of(self, kind):
        return [m for k, m in self.messages if k == kind]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def console():
    return RecordingConsole()


@pytest.fixture
def config(monkeypatch, tmp_path):
    for var in ("CUBED_SERVER", "CUBED_BASE_DIR", "CUBED_FOLDER_SUPPORT", "CUBED_LOCAL_DIRECTORY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CUBED_CREDENTIALS_FILE", str(tmp_path / "creds" / "credentials.enc"))
    monkeypatch.setenv("CUBED_LOG_FILE", str(tmp_path / "cubed-sync.log"))
    cfg = Config.load(str(tmp_path))
    cfg.retry_backoff = 0
    cfg.debounce_ms = 0
    return cfg
