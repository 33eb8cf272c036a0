"""Startup login flow: pick a login method, log in, pick a server."""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable, List, Optional

from .config import Config
from .console import Console
from .credentials import Credentials, CredentialStore
from .errors import ConfigMismatch, InvalidCredentials, LoginAborted, StoreWriteError, Unreachable
from .session import AuthSession, ServerSelection

logger = logging.getLogger(__name__)

MAX_BACKOFF = 30.0


class LoginMethod(enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    RECONFIGURE = "reconfigure"


class LoginOrchestrator:
    def __init__(self, config: Config, store: CredentialStore, session: AuthSession, prompter,
                 console: Console, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.store = store
        self.session = session
        self.prompter = prompter
        self.console = console
        self._sleep = sleep

    def run(self) -> ServerSelection:
        """Log in and select a server. Raises LoginAborted once attempts run out."""
        self.login()
        return self.choose_server()

    # --- login ---
    def ask_login_method(self, stored: Optional[Credentials]) -> LoginMethod:
        if stored is None or not stored.username or not stored.password:
            return LoginMethod.MANUAL
        automatic = f"Log in as {stored.username}"
        reconfigure = "Change username and password for auto log in"
        choice = self.prompter.ask_choice(
            "How would you like to start the system?",
            [automatic, reconfigure, "Log in manually"],
        )
        if choice == automatic:
            return LoginMethod.AUTOMATIC
        if choice == reconfigure:
            return LoginMethod.RECONFIGURE
        return LoginMethod.MANUAL

    def _ask_credentials(self) -> Credentials:
        username = self.prompter.ask_visible("What is your username?")
        password = self.prompter.ask_masked("What is your password?")
        return Credentials(username=username, password=password)

    def _save(self, credentials: Credentials) -> None:
        try:
            self.store.save(credentials)
        except StoreWriteError as e:
            # Still usable for this run.
            self.console.error(f"Could not save login details: {e}")

    def login(self) -> Credentials:
        attempts = self.config.max_login_attempts
        delay = self.config.retry_backoff
        for attempt in range(1, attempts + 1):
            stored = self.store.load()
            method = self.ask_login_method(stored)
            logger.debug(f"Login attempt {attempt}/{attempts} method={method.value}")
            if method is LoginMethod.MANUAL:
                credentials = self._ask_credentials()
            elif method is LoginMethod.RECONFIGURE:
                credentials = self._ask_credentials()
                if credentials.username and credentials.password:
                    self._save(credentials)
            else:
                credentials = stored

            if not credentials.username or not credentials.password:
                self.console.error("No username or password was found. Please try again.")
                continue

            try:
                self.session.authenticate(credentials)
            except InvalidCredentials:
                self.console.error("Failed to log in: username or password is incorrect.")
                continue
            except Unreachable as e:
                self.console.error(f"Could not reach the dashboard: {e}")
                if attempt < attempts and delay > 0:
                    self.console.info(f"Retrying in {delay:.0f}s")
                    self._sleep(delay)
                    delay = min(delay * 2, MAX_BACKOFF)
                continue

            self.console.success(f"Logged in as {self.config.username or credentials.username}")
            if method is LoginMethod.MANUAL:
                save = self.prompter.ask_choice(
                    "Do you want to save your login details for future use?", ["Yes", "No"])
                if save == "Yes":
                    self._save(credentials)
            return credentials

        self.console.error(f"Giving up after {attempts} failed login attempt{'s' if attempts != 1 else ''}.")
        raise LoginAborted("Login failed")

    # --- server selection ---
    def match_configured_server(self, servers: List[ServerSelection]) -> Optional[ServerSelection]:
        """Return the server named in the settings, or None if none is configured.

        Raises ConfigMismatch when a server is configured but not in ``servers``.
        """
        wanted = self.config.server
        if not wanted:
            return None
        for server in servers:
            if server.name.lower() == wanted.lower():
                return server
        raise ConfigMismatch(wanted, [s.name for s in servers])

    def choose_server(self) -> ServerSelection:
        try:
            servers = self.session.available_servers()
        except Unreachable as e:
            self.console.error(str(e))
            raise LoginAborted("Server list unavailable") from e
        if not servers:
            self.console.error("No servers were found on this account.")
            raise LoginAborted("No servers available")

        try:
            server = self.match_configured_server(servers)
        except ConfigMismatch as e:
            logger.warning(str(e))
            self.console.error(f"Specified server in {self.config.settings_file} was not found.")
            server = None
        if server is None:
            name = self.prompter.ask_choice("What server are you working on?", [s.name for s in servers])
            server = next(s for s in servers if s.name.lower() == name.lower())

        try:
            self.session.select_server(server)
        except Unreachable as e:
            self.console.error(str(e))
            raise LoginAborted("Server selection failed") from e
        self.console.success("Successfully selected a server to work on")
        return server
