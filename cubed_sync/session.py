"""Session lifecycle: login, server selection, expiry detection and refresh.

AuthSession is the only owner of the session token and of the "last known
good" credentials/server pair. Everything that talks to the dashboard after
login goes through ``ensure_valid()`` first, which probes for expiry and, if
the session has expired, logs back in and re-selects the same server.

At most one probe, refresh or explicit login runs at a time. Callers that
arrive while one is in flight block until it finishes and then see its
outcome (success or the same exception) instead of starting a second login,
because the dashboard drops the previous session when a new login happens.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TypeVar

from .credentials import Credentials
from .errors import CannotRecover, InvalidCredentials, SessionStateError, TransportError, Unreachable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ServerSelection:
    id: int
    name: str = ""


class _Flight:
    """Outcome of one probe/refresh or explicit login, shared with every caller that waited on it."""

    def __init__(self, refresh: bool = True):
        self.refresh = refresh
        self.done = False
        self.error: Optional[BaseException] = None


class AuthSession:
    def __init__(self, transport, base_dir: str = "", cookie_name: str = "PHPSESSID",
                 probe_interval: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.transport = transport
        self.cookie_name = cookie_name
        self.probe_interval = probe_interval
        self._base_dir = base_dir
        self._clock = clock
        self._cond = threading.Condition()
        self._state = SessionState.UNAUTHENTICATED
        self._token = ""
        self._server: Optional[ServerSelection] = None
        self._last_credentials: Optional[Credentials] = None
        self._last_server: Optional[ServerSelection] = None
        self._checked_at: Optional[float] = None  # clock() of the last "not expired" answer
        self._flight: Optional[_Flight] = None
        self.refresh_count = 0
        self.on_expired: Optional[Callable[[], None]] = None  # called when a probe finds the session expired

    # --- read-only views ---
    @property
    def state(self) -> SessionState:
        with self._cond:
            return self._state

    @property
    def token(self) -> str:
        with self._cond:
            return self._token

    @property
    def server(self) -> Optional[ServerSelection]:
        with self._cond:
            return self._server

    @property
    def base_dir(self) -> str:
        return self._base_dir

    @property
    def last_known_good(self):
        with self._cond:
            return self._last_credentials, self._last_server

    def active_headers(self) -> Dict[str, str]:
        """Request headers carrying the current session cookie.

        Call ``ensure_valid()`` right before this; the token is only as fresh as
        the last check.
        """
        with self._cond:
            if self._state is not SessionState.ACTIVE or not self._token:
                raise SessionStateError(f"No active session (state={self._state.value})")
            return {"cookie": f"{self.cookie_name}={self._token}"}

    # --- transitions ---
    def authenticate(self, credentials: Credentials) -> str:
        """Log in with ``credentials`` and return the new session token.

        Raises InvalidCredentials when the dashboard rejects them and Unreachable
        on transport failure; in both cases the session is left non-active and
        the last known good credentials are unchanged.
        """
        with self._cond:
            while self._flight is not None:
                self._cond.wait()
            if self._state is SessionState.TERMINATED:
                raise CannotRecover("Session was terminated")
            fallback = SessionState.EXPIRED if self._state is SessionState.EXPIRED else SessionState.UNAUTHENTICATED
            flight = self._flight = _Flight(refresh=False)
        return self._fly(flight, lambda: self._login(credentials, fallback))

    def select_server(self, server: ServerSelection) -> None:
        """Make ``server`` the active server; only valid on an ACTIVE session."""
        with self._cond:
            while self._flight is not None:
                self._cond.wait()
        self._select(server)

    def available_servers(self) -> List[ServerSelection]:
        with self._cond:
            if self._state is not SessionState.ACTIVE:
                raise SessionStateError(f"available_servers() needs an active session (state={self._state.value})")
            token = self._token
        try:
            raw = self.transport.list_servers(token)
        except TransportError as e:
            raise Unreachable(f"Could not load the server list: {e}") from e
        return [ServerSelection(id=int(s["id"]), name=str(s["name"])) for s in raw]

    def mark_expired(self) -> None:
        """Forget the cached liveness answer so the next ensure_valid() probes."""
        with self._cond:
            self._checked_at = None

    def ensure_valid(self) -> None:
        """Make sure the session is usable, refreshing it if the dashboard expired it.

        No network call is made while a "not expired" answer younger than
        ``probe_interval`` is cached. Raises CannotRecover when the session
        expired and there is no last known good pair to log back in with (the
        session is then TERMINATED for good), Unreachable when the probe or the
        refresh could not reach the dashboard.
        """
        with self._cond:
            while True:
                if self._state is SessionState.TERMINATED:
                    raise CannotRecover("Session was terminated; cannot log back in")
                flight = self._flight
                if flight is None:
                    break
                while not flight.done:
                    self._cond.wait()
                if flight.refresh:
                    if flight.error is not None:
                        raise flight.error
                    return
                # An explicit login finished; look at the session it left behind.
            if self._state is SessionState.ACTIVE and self._fresh():
                return
            flight = self._flight = _Flight()
        self._fly(flight, self._check_and_refresh)

    def _fly(self, flight: _Flight, func: Callable[[], T]) -> T:
        try:
            return func()
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._cond:
                flight.done = True
                self._flight = None
                self._cond.notify_all()

    # --- internals ---
    def _fresh(self) -> bool:
        if self._checked_at is None or self.probe_interval <= 0:
            return False
        return self._clock() - self._checked_at < self.probe_interval

    def _select(self, server: ServerSelection) -> None:
        with self._cond:
            if self._state is not SessionState.ACTIVE:
                raise SessionStateError(f"select_server() needs an active session (state={self._state.value})")
            token = self._token
        try:
            self.transport.select_server(token, server.id)
        except TransportError as e:
            raise Unreachable(f"Could not select server {server.name or server.id}: {e}") from e
        with self._cond:
            self._server = server
            self._last_server = server
        logger.info(f"Selected server {server.name or server.id} (id={server.id})")

    def _login(self, credentials: Credentials, fallback: SessionState) -> str:
        with self._cond:
            self._state = SessionState.AUTHENTICATING
            self._token = ""
        try:
            token = self.transport.login(credentials.username, credentials.password)
        except TransportError as e:
            with self._cond:
                self._state = fallback
            raise Unreachable(f"Login failed: {e}") from e
        if not token:
            with self._cond:
                self._state = fallback
            raise InvalidCredentials("Username or password is incorrect")
        with self._cond:
            self._token = token
            self._state = SessionState.ACTIVE
            self._last_credentials = credentials
            self._checked_at = self._clock()
        logger.info(f"Logged in as {credentials.username}")
        return token

    def _check_and_refresh(self) -> None:
        with self._cond:
            state, token = self._state, self._token
        if state is SessionState.ACTIVE:
            try:
                expired = self.transport.probe_session_expired(token)
            except TransportError as e:
                raise Unreachable(f"Session check failed: {e}") from e
            if not expired:
                with self._cond:
                    self._checked_at = self._clock()
                return
            logger.info("Session expired; refreshing")
            if self.on_expired is not None:
                self.on_expired()
            with self._cond:
                self._state = SessionState.EXPIRED
                self._token = ""
                self._checked_at = None
        self._refresh()

    def _refresh(self) -> None:
        with self._cond:
            credentials, server = self._last_credentials, self._last_server
            if credentials is None or server is None:
                self._state = SessionState.TERMINATED
                self._token = ""
                raise CannotRecover("Failed to log back in: no previous login to refresh the session with")
        try:
            self._login(credentials, SessionState.EXPIRED)
        except InvalidCredentials as e:
            # The saved login stopped working; nothing automated can fix that.
            with self._cond:
                self._state = SessionState.TERMINATED
            raise CannotRecover("Failed to log back in: saved credentials were rejected") from e
        try:
            self._select(server)
        except Unreachable:
            with self._cond:
                self._state = SessionState.EXPIRED
                self._token = ""
                self._checked_at = None
            raise
        with self._cond:
            self.refresh_count += 1
        logger.info(f"Session refreshed (refresh #{self.refresh_count})")
