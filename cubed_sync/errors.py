"""Exception hierarchy shared by the credential store, session and login flow."""


class CubedSyncError(Exception):
    """Base class for all cubed-sync errors."""


class CredentialError(CubedSyncError):
    pass


class StoreWriteError(CredentialError):
    """Raised when the encrypted credential file could not be written."""


class TransportError(CubedSyncError):
    """Raised for network failures and unexpected dashboard responses."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class AuthError(CubedSyncError):
    pass


class InvalidCredentials(AuthError):
    pass


class Unreachable(AuthError):
    pass


class CannotRecover(AuthError):
    """The session expired and there is nothing left to log back in with."""


class ConfigMismatch(CubedSyncError):
    def __init__(self, server: str, available):
        super().__init__(f"Server {server!r} not found (available: {', '.join(available) or 'none'})")
        self.server = server
        self.available = list(available)


class LoginAborted(CubedSyncError):
    pass


class SessionStateError(RuntimeError):
    """An AuthSession method was called in a state that does not allow it."""
