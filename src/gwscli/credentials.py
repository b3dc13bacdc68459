"""
Secret storage for OAuth2 token material.

A Credential is the token set for one account alias.  Stores are a narrow
get/put/delete interface keyed by alias so the backend can be swapped without
the callers caring: the OS keyring via the keyring library, or an encrypted
file store for machines where no keyring service is available.

Nothing here ever logs a token value.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
import datetime
import getpass
import hashlib
import json
import logging
import os
import re
import secrets
import socket

import keyring
import keyring.errors
from keyring.backend import KeyringBackend
from keyring.backends import fail as keyring_fail
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import Config, ensure_private_dir, write_private_file
from .errors import CredentialNotFoundError, CredentialStoreError, ConfigError

logger = logging.getLogger(__name__)

SERVICE_NAME = "gwscli"
KEY_TOKEN = "oauth_token"

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _parse_time(value) -> datetime.datetime|None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        t = value
    else:
        t = datetime.datetime.fromisoformat(str(value))
    if t.tzinfo is None:
        t = t.replace(tzinfo=datetime.timezone.utc)
    return t.astimezone(datetime.timezone.utc)


@dataclass
class Credential:
    """
    OAuth2 token material for a single account.
    expiry is timezone aware UTC, or None when the provider did not say.
    """
    access_token: str = field(default="", repr=False)
    refresh_token: str = field(default="", repr=False)
    expiry: datetime.datetime|str|None = field(default=None)
    token_uri: str = field(default=GOOGLE_TOKEN_URI)
    scopes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.expiry = _parse_time(self.expiry)
        self.scopes = list(self.scopes or [])

    def __bool__(self) -> bool:
        return bool(self.access_token) or bool(self.refresh_token)

    def expired(self, now: datetime.datetime|None = None,
                margin: datetime.timedelta = datetime.timedelta(0)) -> bool:
        """
        True if the access token is at or past expiry (less the margin).
        No expiry means the provider never told us, treat it as good.
        """
        if not self.access_token:
            return True
        if self.expiry is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return self.expiry - margin <= now

    def to_json(self) -> str:
        return json.dumps({
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "token_uri": self.token_uri,
            "scopes": self.scopes,
        })

    @classmethod
    def from_json(cls, blob: str|bytes) -> "Credential":
        try:
            d = json.loads(blob)
        except (TypeError, ValueError) as e:
            raise CredentialStoreError("stored credential is corrupt") from e
        if not isinstance(d, dict):
            raise CredentialStoreError("stored credential is corrupt")
        return cls(access_token=d.get("access_token") or "",
                   refresh_token=d.get("refresh_token") or "",
                   expiry=d.get("expiry"),
                   token_uri=d.get("token_uri") or GOOGLE_TOKEN_URI,
                   scopes=d.get("scopes") or [])


def storage_key(alias: str, key: str = KEY_TOKEN) -> str:
    """Namespaced key, gwscli:<alias>:<key>, so aliases never collide."""
    return f"{SERVICE_NAME}:{alias}:{key}"


class CredentialStore(ABC):
    """
    Key-value secret storage for credentials, keyed by account alias.
    """

    @abstractmethod
    def get(self, alias: str) -> Credential:
        """Credential for alias, raising CredentialNotFoundError if absent."""

    @abstractmethod
    def put(self, alias: str, credential: Credential) -> None:
        """Store a credential, replacing any existing one."""

    @abstractmethod
    def delete(self, alias: str) -> None:
        """Remove a credential.  Deleting something absent is not an error."""

    def __contains__(self, alias: str) -> bool:
        try:
            self.get(alias)
        except CredentialNotFoundError:
            return False
        return True


class KeyringCredentialStore(CredentialStore):
    """
    Credentials in the OS secret service through the keyring library:
    macOS Keychain, Windows Credential Locker, or Secret Service on Linux.
    """

    def __init__(self, backend: KeyringBackend|None = None,
                 service: str = SERVICE_NAME) -> None:
        self.__backend = backend
        self.service = service

    @property
    def backend(self) -> KeyringBackend:
        return self.__backend if self.__backend is not None else keyring.get_keyring()

    def __str__(self) -> str:
        return f"keyring:{self.backend.__class__.__name__}"

    def get(self, alias: str) -> Credential:
        try:
            blob = self.backend.get_password(self.service, storage_key(alias))
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(f"keyring lookup failed for {alias}: {e}") from e
        if blob is None:
            raise CredentialNotFoundError(alias)
        return Credential.from_json(blob)

    def put(self, alias: str, credential: Credential) -> None:
        try:
            self.backend.set_password(self.service, storage_key(alias), credential.to_json())
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(f"failed to store credential for {alias}: {e}") from e
        logger.debug("stored credential for %s in %s", alias, self)

    def delete(self, alias: str) -> None:
        try:
            self.backend.delete_password(self.service, storage_key(alias))
        except keyring.errors.PasswordDeleteError:
            # not there, which is what we wanted
            return
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(f"failed to delete credential for {alias}: {e}") from e
        logger.debug("deleted credential for %s from %s", alias, self)


class EncryptedFileCredentialStore(CredentialStore):
    """
    Fallback store for machines with no keyring service.
    One file per alias in <config dir>/tokens/<alias>.enc holding a JSON
    envelope of a random salt and an AES-256-GCM ciphertext.  The key is
    PBKDF2-HMAC-SHA256 over machine and user identifiers plus the alias, so a
    copied file does not decrypt elsewhere.  This is obfuscation against
    casual disclosure rather than protection from the local user.
    """

    ITERATIONS = 100_000
    SALT_SIZE = 32
    NONCE_SIZE = 12

    __ALIAS_RE = re.compile(r"^[^/\\:\x00]+$")

    def __init__(self, directory: Path|str, secret: str|None = None) -> None:
        self.directory = Path(directory)
        self.__secret = secret if secret is not None else self.machine_secret()

    def __str__(self) -> str:
        return f"file:{self.directory}"

    @staticmethod
    def machine_secret() -> str:
        parts = [SERVICE_NAME, socket.gethostname()]
        try:
            parts.append(getpass.getuser())
        except (KeyError, OSError):
            # no passwd entry, e.g. some containers; uid below still applies
            logger.debug("no login name available for the file store key")
        if hasattr(os, "getuid"):
            parts.append(str(os.getuid()))
        parts.append(str(Path.home()))
        return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()

    def path(self, alias: str) -> Path:
        if not self.__ALIAS_RE.match(alias) or alias in (".", ".."):
            raise CredentialStoreError(f"alias cannot be used as a file name: {alias!r}")
        return self.directory / f"{alias}.enc"

    def _key(self, alias: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt,
                         iterations=self.ITERATIONS)
        return kdf.derive(f"{storage_key(alias)}:{self.__secret}".encode("utf-8"))

    def get(self, alias: str) -> Credential:
        p = self.path(alias)
        if not p.is_file():
            raise CredentialNotFoundError(alias)
        try:
            with open(p, "r", encoding="utf-8") as f:
                envelope = json.load(f)
            salt = bytes.fromhex(envelope["salt"])
            blob = bytes.fromhex(envelope["ciphertext"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CredentialStoreError(f"credential file for {alias} is unreadable") from e
        nonce, ciphertext = blob[:self.NONCE_SIZE], blob[self.NONCE_SIZE:]
        try:
            plaintext = AESGCM(self._key(alias, salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise CredentialStoreError(f"credential file for {alias} cannot be decrypted on this machine") from e
        return Credential.from_json(plaintext.decode("utf-8"))

    def put(self, alias: str, credential: Credential) -> None:
        p = self.path(alias)
        ensure_private_dir(self.directory)
        salt = secrets.token_bytes(self.SALT_SIZE)
        nonce = secrets.token_bytes(self.NONCE_SIZE)
        ciphertext = AESGCM(self._key(alias, salt)).encrypt(nonce, credential.to_json().encode("utf-8"), None)
        envelope = {"salt": salt.hex(), "ciphertext": (nonce + ciphertext).hex()}
        write_private_file(p, json.dumps(envelope))
        logger.debug("stored credential for %s in %s", alias, self)

    def delete(self, alias: str) -> None:
        p = self.path(alias)
        try:
            p.unlink()
        except FileNotFoundError:
            return
        logger.debug("deleted credential for %s from %s", alias, self)


def keyring_usable() -> bool:
    """Is there a real keyring backend, rather than the fail placeholder?"""
    try:
        backend = keyring.get_keyring()
    except keyring.errors.KeyringError:
        return False
    if isinstance(backend, keyring_fail.Keyring):
        return False
    return backend.priority > 0


def open_store(config: Config) -> CredentialStore:
    """
    Pick the credential backend from configuration.
    'auto' prefers the OS keyring and falls back to the encrypted file store.
    """
    choice = config.credential_backend
    tokens_dir = config.directory / "tokens"
    if choice == "keyring":
        return KeyringCredentialStore()
    if choice == "file":
        return EncryptedFileCredentialStore(tokens_dir)
    if choice == "auto":
        if keyring_usable():
            return KeyringCredentialStore()
        logger.info("no usable keyring backend, using encrypted file store at %s", tokens_dir)
        return EncryptedFileCredentialStore(tokens_dir)
    raise ConfigError(f"invalid credential backend {choice!r}")
