import datetime
import json

import httplib2
import keyring.errors
import pytest
from keyring.backend import KeyringBackend
from googleapiclient.errors import HttpError

from gwscli.accounts import AccountRegistry, AccountService
from gwscli.credentials import Credential, CredentialStore
from gwscli.errors import CredentialNotFoundError, TokenRefreshError
from gwscli.tokens import TokenManager

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class MemoryStore(CredentialStore):
    def __init__(self):
        self.data = {}
        self.puts = 0
        self.fail_put = None

    def get(self, alias):
        if alias not in self.data:
            raise CredentialNotFoundError(alias)
        return Credential.from_json(self.data[alias])

    def put(self, alias, credential):
        if self.fail_put is not None:
            raise self.fail_put
        self.puts += 1
        self.data[alias] = credential.to_json()

    def delete(self, alias):
        self.data.pop(alias, None)


class RecordingRefresher:
    """Counts exchanges and hands back a fresh token, or raises error if set."""

    def __init__(self, token="fresh-token", lifetime=datetime.timedelta(hours=1), now=NOW):
        self.calls = []
        self.token = token
        self.lifetime = lifetime
        self.now = now
        self.error = None

    def __call__(self, credential):
        self.calls.append(credential)
        if self.error is not None:
            raise self.error
        return Credential(access_token=self.token, expiry=self.now + self.lifetime,
                          scopes=list(credential.scopes))


class FakeLoginFlow:
    def __init__(self, email="user@example.com", token="login-token"):
        self.email = email
        self.token = token
        self.runs = []

    def run(self, scopes=None):
        self.runs.append(scopes)
        return self.email, Credential(access_token=self.token, refresh_token="refresh-" + self.token,
                                      expiry=NOW + datetime.timedelta(hours=1),
                                      scopes=["https://www.googleapis.com/auth/userinfo.email", "openid"])


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise keyring.errors.PasswordDeleteError("not found")
        del self.passwords[(service, username)]


class _FakeCall:
    def __init__(self, service, path, kwargs):
        self.service = service
        self.path = path
        self.kwargs = kwargs

    def __getattr__(self, name):
        return _FakeMethod(self.service, f"{self.path}.{name}")

    def execute(self):
        self.service.calls.append((self.path, self.kwargs))
        r = self.service.responses.get(self.path, {})
        if isinstance(r, list):
            r = r.pop(0)
        if callable(r):
            r = r(**self.kwargs)
        if isinstance(r, Exception):
            raise r
        return r


class _FakeMethod:
    def __init__(self, service, path):
        self.service = service
        self.path = path

    def __call__(self, **kwargs):
        return _FakeCall(self.service, self.path, kwargs)


class FakeService:
    """
    Stands in for a googleapiclient Resource.  responses maps a dotted method
    path like 'users.messages.list' to a dict, an exception, a callable taking
    the request kwargs, or a list of those consumed in order.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        return _FakeMethod(self, name)

    def called(self, path):
        return [kw for p, kw in self.calls if p == path]


def http_error(status, message="boom"):
    resp = httplib2.Response({"status": status})
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(resp, content, uri="https://example.invalid")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(tmp_path):
    return AccountRegistry(tmp_path / "accounts.yaml")


@pytest.fixture
def refresher():
    return RecordingRefresher()


@pytest.fixture
def tokens(store, refresher, registry):
    return TokenManager(store, refresher, registry=registry, clock=lambda: NOW)


@pytest.fixture
def login_flow():
    return FakeLoginFlow()


@pytest.fixture
def service(registry, store, tokens, login_flow):
    return AccountService(registry, store, tokens=tokens, login_flow=login_flow)


@pytest.fixture
def memory_keyring():
    return MemoryKeyring()
