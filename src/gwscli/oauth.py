"""
Interactive OAuth2 login.

See https://developers.google.com/workspace/guides/create-credentials for how
to obtain a desktop OAuth client.  The client id and secret come from the
environment or from a client secrets JSON file as downloaded from the Google
Cloud console.  The consent flow itself is google-auth-oauthlib's
InstalledAppFlow: a loopback redirect on localhost, PKCE, offline access.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
import json
import logging
import os

from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
import google.auth.exceptions
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from .config import Config
from .credentials import Credential, GOOGLE_TOKEN_URI
from .errors import LoginError, OAuthConfigError
from .tokens import from_google_credentials

logger = logging.getLogger(__name__)

ENV_CLIENT_ID = "GWSCLI_CLIENT_ID"
ENV_CLIENT_SECRET = "GWSCLI_CLIENT_SECRET"

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

SCOPE_URL_PREFIX = "https://www.googleapis.com/"

SCOPE_GMAIL_READONLY = "https://www.googleapis.com/auth/gmail.readonly"
SCOPE_CALENDAR_READONLY = "https://www.googleapis.com/auth/calendar.readonly"
SCOPE_USERINFO_EMAIL = "https://www.googleapis.com/auth/userinfo.email"
SCOPE_OPENID = "openid"

SCOPES = {
    "gmail": SCOPE_GMAIL_READONLY,
    "gmail.readonly": SCOPE_GMAIL_READONLY,
    "gmail.send": "https://www.googleapis.com/auth/gmail.send",
    "gmail.modify": "https://www.googleapis.com/auth/gmail.modify",
    "gmail.compose": "https://www.googleapis.com/auth/gmail.compose",
    "gmail.labels": "https://www.googleapis.com/auth/gmail.labels",
    "gmail.full": "https://mail.google.com/",
    "calendar": SCOPE_CALENDAR_READONLY,
    "calendar.readonly": SCOPE_CALENDAR_READONLY,
    "calendar.events": "https://www.googleapis.com/auth/calendar.events",
    "calendar.full": "https://www.googleapis.com/auth/calendar",
    "email": SCOPE_USERINFO_EMAIL,
    "userinfo.email": SCOPE_USERINFO_EMAIL,
    "profile": "https://www.googleapis.com/auth/userinfo.profile",
    "openid": SCOPE_OPENID,
}

DEFAULT_SCOPES = [SCOPE_GMAIL_READONLY, SCOPE_CALENDAR_READONLY, SCOPE_USERINFO_EMAIL, SCOPE_OPENID]

AUTH_PROMPT_MSG = "Opening a browser for authentication.  If it does not open, visit:\n{url}"
AUTH_SUCCESS_MSG = "Authentication complete, you can close this window and return to the terminal."


def get_scope(scope: str) -> str:
    """
    Expand a shorthand like 'gmail.modify' to the full scope URL.
    Full URLs pass through.  Anything else is returned as given and left to
    Google to reject.
    """
    s = str(scope).strip()
    full = SCOPES.get(s.lower())
    if full:
        return full
    return s


def parse_scopes(scopes: Iterable[str]|str|None) -> list[str]:
    """
    Expand a list of scope names (comma separated strings allowed).
    Empty input gives the defaults.  Email and openid are always present
    since we need them to find out who logged in.
    """
    if not scopes:
        return list(DEFAULT_SCOPES)
    items = [scopes] if isinstance(scopes, str) else list(scopes)
    result = []
    for item in items:
        for part in str(item).split(","):
            if not part.strip():
                continue
            s = get_scope(part)
            if s not in result:
                result.append(s)
    if not result:
        return list(DEFAULT_SCOPES)
    for required in (SCOPE_USERINFO_EMAIL, SCOPE_OPENID):
        if required not in result:
            result.append(required)
    return result


@dataclass
class OAuthClient:
    """OAuth desktop client registration."""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI

    def __bool__(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)

    def validate(self) -> None:
        if not self.client_id:
            raise OAuthConfigError(f"{ENV_CLIENT_ID} is not set and no client secrets file is configured")
        if not self.client_secret:
            raise OAuthConfigError(f"{ENV_CLIENT_SECRET} is not set and no client secrets file is configured")

    def to_client_config(self) -> dict:
        """The dict shape Google's client secrets files use."""
        return {"installed": {"client_id": self.client_id,
                              "client_secret": self.client_secret,
                              "auth_uri": self.auth_uri,
                              "token_uri": self.token_uri,
                              "redirect_uris": ["http://localhost"]}}

    @classmethod
    def from_secrets_file(cls, path: Path|str) -> "OAuthClient":
        p = Path(path).expanduser()
        try:
            with open(p, "r", encoding="utf-8") as f:
                j = json.load(f)
        except (OSError, ValueError) as e:
            raise OAuthConfigError(f"cannot read client secrets file {p}: {e}") from e
        info = j.get("installed") or j.get("web") if isinstance(j, dict) else None
        if not info:
            raise OAuthConfigError(f"{p} is not a Google OAuth client secrets file")
        return cls(client_id=info.get("client_id", ""),
                   client_secret=info.get("client_secret", ""),
                   auth_uri=info.get("auth_uri", GOOGLE_AUTH_URI),
                   token_uri=info.get("token_uri", GOOGLE_TOKEN_URI))

    @classmethod
    def load(cls, config: Config, env: dict|None = None) -> "OAuthClient":
        """
        Environment variables take precedence over the client secrets file.
        Does not validate, an unconfigured client only matters once we need it.
        """
        env = os.environ if env is None else env
        client = cls()
        if config.client_secrets:
            client = cls.from_secrets_file(config.client_secrets)
        client_id = env.get(ENV_CLIENT_ID)
        client_secret = env.get(ENV_CLIENT_SECRET)
        if client_id:
            client.client_id = client_id
        if client_secret:
            client.client_secret = client_secret
        return client


class ClientLoader():
    """
    OAuthClient.load deferred to the first call and cached after that.
    Commands that never reach Google never read the client secrets file.
    """

    def __init__(self, config: Config, env: dict|None = None) -> None:
        self.config = config
        self.env = env
        self.__client: OAuthClient|None = None

    def __call__(self) -> OAuthClient:
        if self.__client is None:
            self.__client = OAuthClient.load(self.config, self.env)
        return self.__client


class LoginFlow():
    """
    Runs the browser consent flow and reports who signed in.
    """

    def __init__(self, client: OAuthClient|Callable[[], OAuthClient], host: str = "localhost",
                 port: int = 0, open_browser: bool = True) -> None:
        self.__client = client
        self.host = host
        self.port = port
        self.open_browser = open_browser

    @property
    def client(self) -> OAuthClient:
        return self.__client() if callable(self.__client) else self.__client

    def authorize(self, scopes: list[str]):
        self.client.validate()
        flow = InstalledAppFlow.from_client_config(self.client.to_client_config(), scopes)
        try:
            return flow.run_local_server(host=self.host, port=self.port,
                                         open_browser=self.open_browser,
                                         authorization_prompt_message=AUTH_PROMPT_MSG,
                                         success_message=AUTH_SUCCESS_MSG,
                                         access_type="offline", prompt="consent")
        except (OAuth2Error, google.auth.exceptions.GoogleAuthError, OSError) as e:
            raise LoginError(f"authentication failed: {e}") from e

    def fetch_email(self, creds) -> str:
        """Ask the userinfo endpoint who the token belongs to."""
        try:
            service = build("oauth2", "v2", credentials=creds, cache_discovery=False)
            info = service.userinfo().get().execute()
        except HttpError as e:
            raise LoginError(f"failed to get user email: {e}") from e
        email = info.get("email", "")
        if not email:
            raise LoginError("no email in userinfo response")
        return email

    def run(self, scopes: list[str]|None = None) -> tuple[str, Credential]:
        requested = parse_scopes(scopes)
        creds = self.authorize(requested)
        email = self.fetch_email(creds)
        credential = from_google_credentials(creds)
        if not credential.scopes:
            credential.scopes = requested
        if not credential.refresh_token:
            logger.warning("no refresh token issued for %s, the login will not survive token expiry", email)
        logger.info("authenticated as %s", email)
        return email, credential
