"""
Access token lifecycle.

TokenManager turns an account alias into a TokenSource.  Asking the source
for a token returns the stored access token if it is still good for at least
EXPIRY_MARGIN, otherwise it exchanges the refresh token once, persists the
result and hands back the new access token.  A failed refresh is terminal for
the command: nothing is retried and the stored credential is left as it was.

The actual exchange is a pluggable refresher callable so tests can count
calls.  GoogleTokenRefresher is the real one and is a thin wrapper around
google.oauth2.credentials.Credentials.refresh().
"""

from dataclasses import dataclass, field
from typing import Callable
import datetime
import logging

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from .credentials import Credential, CredentialStore
from .errors import CredentialNotFoundError, NoCredentialError, TokenRefreshError

logger = logging.getLogger(__name__)

EXPIRY_MARGIN = datetime.timedelta(seconds=30)

Refresher = Callable[[Credential], Credential]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    value: str = field(repr=False)
    expiry: datetime.datetime|None = None

    def __str__(self) -> str:
        return self.value


@dataclass
class TokenInfo:
    """What we can say about a stored credential without touching the network."""
    alias: str
    has_token: bool = False
    expired: bool = False
    expiry: datetime.datetime|None = None
    has_refresh_token: bool = False
    scopes: list[str] = field(default_factory=list)


class GoogleTokenRefresher():
    """
    Refresh-token exchange against Google's token endpoint via google-auth.
    client is anything with client_id and client_secret attributes, see
    gwscli.oauth.OAuthClient, or a callable returning one on demand.
    """

    def __init__(self, client, request: Request|None = None) -> None:
        self.__client = client
        self.request = request

    @property
    def client(self):
        return self.__client() if callable(self.__client) else self.__client

    def __call__(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise TokenRefreshError("no refresh token stored")
        client = self.client
        creds = Credentials(token=credential.access_token or None,
                            refresh_token=credential.refresh_token,
                            token_uri=credential.token_uri,
                            client_id=client.client_id,
                            client_secret=client.client_secret,
                            scopes=credential.scopes or None)
        try:
            creds.refresh(self.request or Request())
        except google.auth.exceptions.RefreshError as e:
            raise TokenRefreshError(f"token refresh rejected: {e}") from e
        except google.auth.exceptions.TransportError as e:
            raise TokenRefreshError(f"token refresh failed: {e}") from e
        return from_google_credentials(creds, fallback=credential)


def from_google_credentials(creds: Credentials, fallback: Credential|None = None) -> Credential:
    """
    Convert google-auth Credentials to our stored form.
    google-auth keeps expiry as a naive UTC datetime.
    The refresh token is carried over from fallback when the provider
    did not issue a new one.
    """
    expiry = creds.expiry
    if expiry is not None and expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=datetime.timezone.utc)
    refresh_token = creds.refresh_token or (fallback.refresh_token if fallback else "")
    scopes = list(creds.granted_scopes or creds.scopes or (fallback.scopes if fallback else []) or [])
    return Credential(access_token=creds.token or "",
                      refresh_token=refresh_token or "",
                      expiry=expiry,
                      token_uri=creds.token_uri or (fallback.token_uri if fallback else None) or Credential().token_uri,
                      scopes=scopes)


class TokenSource():
    """
    Yields a currently valid access token for one alias.
    """

    def __init__(self, manager: "TokenManager", alias: str) -> None:
        self.manager = manager
        self.alias = alias

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.alias!r})"

    def token(self) -> AccessToken:
        return self.manager.access_token(self.alias)


class TokenManager():
    """
    Resolves aliases to valid tokens, refreshing and persisting as needed.
    When a registry is given a credential with no matching account record is
    treated as absent.
    """

    def __init__(self, store: CredentialStore, refresher: Refresher,
                 registry=None, clock: Callable[[], datetime.datetime] = utcnow,
                 margin: datetime.timedelta = EXPIRY_MARGIN) -> None:
        self.store = store
        self.refresher = refresher
        self.registry = registry
        self.clock = clock
        self.margin = margin

    def _load(self, alias: str) -> Credential:
        if self.registry is not None and alias not in self.registry:
            logger.debug("ignoring credential for %s, no account record", alias)
            raise NoCredentialError(alias)
        try:
            credential = self.store.get(alias)
        except CredentialNotFoundError as e:
            raise NoCredentialError(alias) from e
        if not credential:
            raise NoCredentialError(alias)
        return credential

    def get_token_source(self, alias: str) -> TokenSource:
        """
        Check up front that there is something to work with, so callers get
        NoCredentialError before doing anything else.
        """
        self._load(alias)
        return TokenSource(self, alias)

    def access_token(self, alias: str) -> AccessToken:
        credential = self._load(alias)
        if not credential.expired(self.clock(), self.margin):
            return AccessToken(credential.access_token, credential.expiry)
        logger.info("access token for %s expired at %s, refreshing", alias, credential.expiry)
        refreshed = self._refresh(alias, credential)
        return AccessToken(refreshed.access_token, refreshed.expiry)

    def refresh(self, alias: str) -> Credential:
        """Force a refresh regardless of expiry."""
        return self._refresh(alias, self._load(alias))

    def _refresh(self, alias: str, credential: Credential) -> Credential:
        try:
            refreshed = self.refresher(credential)
        except TokenRefreshError:
            logger.warning("token refresh failed for %s", alias)
            raise
        if not refreshed.access_token:
            raise TokenRefreshError("token endpoint returned no access token")
        if not refreshed.refresh_token:
            refreshed.refresh_token = credential.refresh_token
        if not refreshed.scopes:
            refreshed.scopes = list(credential.scopes)
        # only persist once the exchange has fully succeeded
        self.store.put(alias, refreshed)
        logger.info("refreshed access token for %s, expires %s", alias, refreshed.expiry)
        return refreshed

    def info(self, alias: str) -> TokenInfo:
        info = TokenInfo(alias=alias)
        try:
            credential = self.store.get(alias)
        except CredentialNotFoundError:
            return info
        info.has_token = bool(credential)
        info.expired = credential.expired(self.clock(), self.margin)
        info.expiry = credential.expiry
        info.has_refresh_token = bool(credential.refresh_token)
        info.scopes = list(credential.scopes)
        return info
