"""HTTP calls against the server dashboard.

The transport is stateless with respect to the login: the session token is
owned by AuthSession and handed to every call that needs it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import TransportError

logger = logging.getLogger(__name__)


class DashboardTransport:
    def __init__(self, base_url: str, timeout: float = 15.0, cookie_name: str = "PHPSESSID",
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cookie_name = cookie_name
        self.http = session or self._build_session()

    @staticmethod
    def _build_session() -> requests.Session:
        s = requests.Session()
        retry = Retry(total=3, backoff_factor=0.5, status_forcelist=(502, 503, 504),
                      allowed_methods=frozenset({"GET"}))
        adapter = HTTPAdapter(max_retries=retry)
        s.mount("http://", adapter)
        s.mount("https://", adapter)
        s.headers["User-Agent"] = "cubed-sync"
        return s

    def _cookie(self, token: str) -> Dict[str, str]:
        return {"cookie": f"{self.cookie_name}={token}"}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            resp = self.http.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TransportError(f"{method} {path} timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"{method} {path} connection failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        logger.debug(f"{method} {path} -> {resp.status_code}")
        if resp.status_code >= 500:
            raise TransportError(f"{method} {path} returned {resp.status_code}", status=resp.status_code)
        return resp

    @staticmethod
    def _json(resp: requests.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{what}: response is not JSON", status=resp.status_code) from e

    def _check(self, resp: requests.Response, what: str) -> None:
        if resp.status_code >= 400:
            raise TransportError(f"{what} returned {resp.status_code}", status=resp.status_code)

    # --- session ---
    def login(self, username: str, password: str) -> Optional[str]:
        """Return the session token, or None when the dashboard rejects the login."""
        resp = self._request("POST", "/login", data={"username": username, "password": password},
                             allow_redirects=False)
        if resp.status_code in (401, 403):
            return None
        self._check(resp, "login")
        token = resp.cookies.get(self.cookie_name)
        # Cookie jars keep the login cookie; the token is sent explicitly instead.
        self.http.cookies.clear()
        return token or None

    def probe_session_expired(self, token: str) -> bool:
        resp = self._request("GET", "/api/session", headers=self._cookie(token), allow_redirects=False)
        if resp.status_code in (401, 403) or resp.is_redirect:
            return True
        self._check(resp, "session probe")
        body = self._json(resp, "session probe")
        return bool(body.get("expired", False)) if isinstance(body, dict) else False

    def list_servers(self, token: str) -> List[Dict[str, Any]]:
        """Return ``[{"id": int, "name": str}, ...]`` for every server on the account."""
        resp = self._request("GET", "/api/servers", headers=self._cookie(token))
        self._check(resp, "server list")
        data = self._json(resp, "server list")
        if isinstance(data, dict):
            data = data.get("servers", [])
        if not isinstance(data, list):
            raise TransportError("server list: unexpected response shape", status=resp.status_code)
        servers = []
        for item in data:
            try:
                servers.append({"id": int(item["id"]), "name": str(item["name"])})
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed server entry {item!r}")
        return servers

    def select_server(self, token: str, server_id: int) -> None:
        resp = self._request("POST", "/api/servers/select", headers=self._cookie(token), data={"id": server_id})
        self._check(resp, "server select")

    # --- files ---
    def upload_file(self, headers: Dict[str, str], remote_path: str, data: bytes) -> List[str]:
        """Upload one file and return any diagnostic lines the dashboard reports for it."""
        resp = self._request("POST", "/api/files", headers=headers, data={"path": remote_path},
                             files={"file": (remote_path.rsplit("/", 1)[-1], data)})
        self._check(resp, f"upload {remote_path}")
        if not resp.content:
            return []
        body = self._json(resp, f"upload {remote_path}")
        errors = body.get("errors", []) if isinstance(body, dict) else []
        return [str(e) for e in errors]

    def delete_file(self, headers: Dict[str, str], remote_path: str) -> None:
        resp = self._request("POST", "/api/files/delete", headers=headers, data={"path": remote_path})
        if resp.status_code == 404:
            logger.debug(f"delete {remote_path}: already absent")
            return
        self._check(resp, f"delete {remote_path}")
