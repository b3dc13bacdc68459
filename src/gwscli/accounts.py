"""
Account records and the registry that persists them.

An Account is the plaintext metadata for one authenticated Google identity:
alias, email, granted scopes, when it was added, and whether it is the
default.  The token material itself never lands here, that is owned by a
CredentialStore.

The registry is a YAML file holding a list, so insertion order survives
restarts.  AccountService stitches the registry together with the credential
store, the token manager and the login flow for the operations that touch
more than one of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Self
import datetime
import logging
import re

import yaml

from .config import write_private_file
from .credentials import CredentialStore
from .errors import (AccountNotFoundError, ConfigError, CredentialNotFoundError, DuplicateAliasError, GwsError,
                     InvalidAliasError, InvalidEmailError, NoAccountError)

logger = logging.getLogger(__name__)

ACCOUNTS_FILE = "accounts.yaml"

_ALIAS_RE = re.compile(r"^[^\s/\\:]([^/\\:]*[^\s/\\:])?$")


def validate_alias(alias: str) -> str:
    a = str(alias).strip()
    if not a:
        raise InvalidAliasError("invalid alias: alias cannot be empty")
    if not _ALIAS_RE.match(a) or a in (".", ".."):
        raise InvalidAliasError(f"invalid alias {alias!r}: must not contain ':', '/' or '\\'")
    return a


def validate_email(email: str) -> str:
    e = str(email).strip()
    parts = e.split("@")
    if not e or any(c.isspace() for c in e) or len(parts) != 2 or not all(parts):
        raise InvalidEmailError(f"invalid email {email!r}: must be a valid email address")
    return e


def alias_from_email(email: str) -> str:
    """Derive a default alias from the local part of an email address."""
    local = validate_email(email).split("@")[0].lower()
    return validate_alias(re.sub(r"[\s/\\:]+", "-", local).strip("-") or "default")


@dataclass
class Account:
    """
    Persisted metadata for one authenticated identity.
    """
    alias: str
    email: str
    scopes: list[str] = field(default_factory=list)
    is_default: bool = field(default=False)
    added: datetime.datetime|str|None = field(default=None)

    def __post_init__(self) -> None:
        if self.added is None:
            self.added = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
        elif not isinstance(self.added, datetime.datetime):
            self.added = datetime.datetime.fromisoformat(str(self.added))
        if self.added.tzinfo is None:
            self.added = self.added.replace(tzinfo=datetime.timezone.utc)
        scopes = []
        for s in self.scopes or []:
            if s not in scopes:
                scopes.append(s)
        self.scopes = scopes

    def __str__(self) -> str:
        return f"{self.alias}<{self.email}>"

    def validate(self) -> None:
        self.alias = validate_alias(self.alias)
        self.email = validate_email(self.email)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def add_scope(self, scope: str) -> None:
        if scope not in self.scopes:
            self.scopes.append(scope)

    def remove_scope(self, scope: str) -> None:
        if scope in self.scopes:
            self.scopes.remove(scope)

    def to_base(self) -> dict:
        return {"alias": self.alias, "email": self.email, "scopes": list(self.scopes),
                "default": self.is_default, "added": self.added.isoformat()}

    @classmethod
    def from_base(cls, d: dict) -> Self:
        return cls(alias=str(d["alias"]), email=str(d.get("email", "")),
                   scopes=list(d.get("scopes") or []),
                   is_default=bool(d.get("default", False)),
                   added=d.get("added"))


class AccountRegistry():
    """
    Durable alias -> Account mapping with at most one default.
    Loaded lazily on first use and written back after every change.
    """

    def __init__(self, path: Path|str) -> None:
        self.path = Path(path)
        self.__accounts: list[Account]|None = None

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, alias: str) -> bool:
        return self.get(alias) is not None

    def __iter__(self) -> Iterator[Account]:
        return iter(self.list())

    @classmethod
    def in_directory(cls, directory: Path|str) -> Self:
        return cls(Path(directory) / ACCOUNTS_FILE)

    @property
    def _accounts(self) -> list[Account]:
        if self.__accounts is None:
            self.__accounts = self._load()
        return self.__accounts

    def _load(self) -> list[Account]:
        if not self.path.is_file():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse {self.path}: {e}") from e
        accounts = []
        try:
            for entry in data.get("accounts") or []:
                accounts.append(Account.from_base(entry))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"malformed account registry {self.path}: {e}") from e
        # a hand edited file might mark several, keep the first
        seen_default = False
        for a in accounts:
            if a.is_default:
                if seen_default:
                    logger.warning("multiple default accounts in %s, keeping the first", self.path)
                    a.is_default = False
                seen_default = True
        return accounts

    def _save(self) -> None:
        data = {"accounts": [a.to_base() for a in self._accounts]}
        write_private_file(self.path, yaml.safe_dump(data, sort_keys=False))
        logger.debug("saved %d accounts to %s", len(self._accounts), self.path)

    def get(self, alias: str) -> Account|None:
        for a in self._accounts:
            if a.alias == alias:
                return a
        return None

    def require(self, alias: str) -> Account:
        a = self.get(alias)
        if a is None:
            raise AccountNotFoundError(alias)
        return a

    def default(self) -> Account|None:
        for a in self._accounts:
            if a.is_default:
                return a
        return None

    def list(self) -> list[Account]:
        """All accounts in insertion order."""
        return list(self._accounts)

    def resolve(self, alias: str = "") -> Account:
        """
        Account for alias, or the default account when alias is empty.
        """
        if alias:
            return self.require(alias)
        if not self._accounts:
            raise NoAccountError("no accounts configured",
                                 hint="run 'gws auth login' or 'gws account add' to add an account")
        d = self.default()
        if d is None:
            raise NoAccountError()
        return d

    def add(self, alias: str, email: str, scopes: list[str]|None = None) -> Account:
        account = Account(alias=alias, email=email, scopes=list(scopes or []))
        account.validate()
        if self.get(account.alias) is not None:
            raise DuplicateAliasError(account.alias)
        account.is_default = not self._accounts
        self._accounts.append(account)
        self._save()
        logger.info("added account %s", account)
        return account

    def update(self, account: Account) -> None:
        """Write back changes to an existing record (email, scopes)."""
        current = self.require(account.alias)
        current.email = validate_email(account.email)
        current.scopes = list(account.scopes)
        self._save()

    def remove(self, alias: str) -> None:
        """
        Delete the record.  If it was the default nothing is promoted in its
        place, the user has to switch explicitly.
        """
        account = self.require(alias)
        self._accounts.remove(account)
        self._save()
        logger.info("removed account %s", account)

    def switch(self, alias: str) -> None:
        target = self.require(alias)
        for a in self._accounts:
            a.is_default = a is target
        self._save()
        logger.info("default account is now %s", target)

    def rename(self, old_alias: str, new_alias: str) -> None:
        account = self.require(old_alias)
        new = validate_alias(new_alias)
        if new == old_alias:
            return
        if self.get(new) is not None:
            raise DuplicateAliasError(new)
        account.alias = new
        self._save()
        logger.info("renamed account %s to %s", old_alias, new)


class AccountService():
    """
    Operations spanning the registry, the credential store and the login flow.
    Everything is passed in, nothing is looked up globally.
    """

    def __init__(self, registry: AccountRegistry, store: CredentialStore,
                 tokens=None, login_flow=None) -> None:
        self.registry = registry
        self.store = store
        self.tokens = tokens
        self.login_flow = login_flow

    def _login(self, scopes: list[str]|None):
        if self.login_flow is None:
            raise GwsError("no login flow available")
        return self.login_flow.run(scopes)

    def resolve(self, alias: str = "") -> Account:
        return self.registry.resolve(alias)

    def list(self) -> list[Account]:
        return self.registry.list()

    def switch(self, alias: str) -> Account:
        self.registry.switch(alias)
        return self.registry.resolve(alias)

    def add(self, alias: str|None, scopes: list[str]|None = None) -> Account:
        """
        Run the consent flow and register the account.
        When alias is not given it is derived from the email address.
        The duplicate check happens before the browser is opened when we can.
        """
        if alias:
            alias = validate_alias(alias)
            if alias in self.registry:
                raise DuplicateAliasError(alias)
        email, credential = self._login(scopes)
        if not alias:
            alias = alias_from_email(email)
            if alias in self.registry:
                raise DuplicateAliasError(alias)
        granted = credential.scopes or list(scopes or [])
        self.store.put(alias, credential)
        try:
            return self.registry.add(alias, email, granted)
        except Exception:
            self.store.delete(alias)
            raise

    def login(self, alias: str|None, scopes: list[str]|None = None) -> Account:
        """
        Authenticate an account, adding it if new or replacing the stored
        credential if it already exists.
        """
        if not alias or alias not in self.registry:
            return self.add(alias, scopes)
        account = self.registry.resolve(alias)
        email, credential = self._login(scopes or account.scopes or None)
        if email != account.email:
            logger.warning("account %s was %s but authenticated as %s", alias, account.email, email)
        self.store.put(alias, credential)
        account.email = email
        account.scopes = credential.scopes or list(scopes or account.scopes)
        self.registry.update(account)
        return account

    def logout(self, alias: str = "") -> Account:
        """Forget the credential but keep the account record."""
        account = self.registry.resolve(alias)
        self.store.delete(account.alias)
        logger.info("logged out %s", account)
        return account

    def remove(self, alias: str) -> Account:
        """
        Delete the credential and then the record.  Credential first so a
        retry after a partial failure still finds the record and completes.
        """
        account = self.registry.require(alias)
        self.store.delete(account.alias)
        self.registry.remove(account.alias)
        return account

    def rename(self, old_alias: str, new_alias: str) -> Account:
        account = self.registry.require(old_alias)
        new = validate_alias(new_alias)
        if new == old_alias:
            return account
        if new in self.registry:
            raise DuplicateAliasError(new)
        try:
            credential = self.store.get(old_alias)
        except CredentialNotFoundError:
            credential = None
        if credential is not None:
            self.store.put(new, credential)
        self.registry.rename(old_alias, new)
        if credential is not None:
            self.store.delete(old_alias)
        return account
