"""Encrypted at-rest storage for the dashboard username/password.

The blob is AES-256-GCM over the JSON-encoded credentials. The key is derived
with Scrypt from a per-file random salt and a secret that is either bound to
this machine (hostname, OS user, home directory) or, when ``use_keyring`` is
set, a random value kept in the system keyring.

Anything that cannot be read back exactly (missing file, bad JSON, unknown
version, wrong key, tampered ciphertext) loads as ``None`` so the caller can
fall back to asking the user.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import secrets
import socket
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Optional

import keyring
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from keyring.errors import KeyringError

from .errors import StoreWriteError

logger = logging.getLogger(__name__)

BLOB_VERSION = 1
AAD = b"cubed-sync/credentials/v1"
KEYRING_ENTRY = "credential-key"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


class CredentialStore:
    def __init__(self, path: str, use_keyring: bool = False, keyring_service: str = "cubed-sync"):
        self.path = os.path.expanduser(path)
        self.use_keyring = use_keyring
        self.keyring_service = keyring_service
        self._write_lock = threading.Lock()

    # --- key material ---
    def _machine_secret(self) -> bytes:
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = os.environ.get("USER") or os.environ.get("USERNAME") or "cubed"
        return f"{socket.gethostname()}|{user}|{os.path.expanduser('~')}".encode("utf-8")

    def _keyring_secret(self, create: bool) -> Optional[bytes]:
        try:
            stored = keyring.get_password(self.keyring_service, KEYRING_ENTRY)
            if stored:
                return bytes.fromhex(stored)
            if not create:
                return None
            value = secrets.token_bytes(32)
            keyring.set_password(self.keyring_service, KEYRING_ENTRY, value.hex())
            logger.info("Stored credential key in keyring")
            return value
        except (KeyringError, ValueError) as e:
            logger.warning(f"Keyring unavailable ({e}); using machine-bound key")
            return None

    def _secret(self, source: str, create: bool) -> Optional[bytes]:
        if source == "keyring":
            return self._keyring_secret(create)
        return self._machine_secret()

    @staticmethod
    def _derive(secret: bytes, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=32, n=2 ** 14, r=8, p=1)
        return kdf.derive(secret)

    # --- public API ---
    def load(self) -> Optional[Credentials]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                blob = json.load(f)
        except FileNotFoundError:
            logger.debug(f"No saved credentials at {self.path}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Saved credentials unreadable ({e}); ignoring")
            return None
        try:
            if not isinstance(blob, dict) or blob.get("version") != BLOB_VERSION:
                raise ValueError("unsupported credential file version")
            secret = self._secret(blob.get("key", "machine"), create=False)
            if secret is None:
                raise ValueError("credential key not available")
            key = self._derive(secret, bytes.fromhex(blob["salt"]))
            plain = AESGCM(key).decrypt(bytes.fromhex(blob["nonce"]), bytes.fromhex(blob["ciphertext"]), AAD)
            data = json.loads(plain.decode("utf-8"))
            return Credentials(username=str(data["username"]), password=str(data["password"]))
        except (InvalidTag, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Saved credentials could not be decrypted ({e.__class__.__name__}); ignoring")
            return None

    def save(self, credentials: Credentials) -> None:
        source = "machine"
        secret: Optional[bytes] = None
        if self.use_keyring:
            secret = self._keyring_secret(create=True)
            if secret is not None:
                source = "keyring"
        if secret is None:
            secret = self._machine_secret()
        salt = secrets.token_bytes(16)
        nonce = secrets.token_bytes(12)
        plain = json.dumps({"username": credentials.username, "password": credentials.password}).encode("utf-8")
        ciphertext = AESGCM(self._derive(secret, salt)).encrypt(nonce, plain, AAD)
        blob = {
            "version": BLOB_VERSION,
            "kdf": "scrypt",
            "key": source,
            "salt": salt.hex(),
            "nonce": nonce.hex(),
            "ciphertext": ciphertext.hex(),
        }
        with self._write_lock:
            try:
                self._write_atomic(json.dumps(blob, sort_keys=True))
            except OSError as e:
                raise StoreWriteError(f"Could not save credentials to {self.path}: {e}") from e
        logger.info(f"Saved credentials for {credentials.username} to {self.path}")

    def clear(self) -> bool:
        with self._write_lock:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StoreWriteError(f"Could not remove {self.path}: {e}") from e
        return True

    def _write_atomic(self, text: str) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".credentials-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.remove(tmp)
            except FileNotFoundError:
                pass
            raise
