import datetime

import google.auth.exceptions
import pytest

from gwscli.credentials import Credential
from gwscli.errors import CredentialStoreError, NoCredentialError, TokenRefreshError
from gwscli.tokens import EXPIRY_MARGIN, GoogleTokenRefresher, TokenManager, from_google_credentials

from conftest import NOW


def _stored(store, registry, alias="work", expiry=NOW + datetime.timedelta(hours=1), **kwargs):
    registry.add(alias, f"{alias}@example.com")
    c = Credential(access_token="stored-token", refresh_token="refresh", expiry=expiry, scopes=["openid"], **kwargs)
    store.put(alias, c)
    return c


def test_valid_token_not_refreshed(store, registry, refresher, tokens):
    _stored(store, registry)
    source = tokens.get_token_source("work")
    assert(source.token().value == "stored-token")
    assert(source.token().value == "stored-token")
    assert(len(refresher.calls) == 0)


def test_expired_token_refreshed_once_and_persisted(store, registry, refresher, tokens):
    _stored(store, registry, expiry=NOW - datetime.timedelta(minutes=5))
    puts = store.puts
    token = tokens.get_token_source("work").token()
    assert(token.value == "fresh-token")
    assert(len(refresher.calls) == 1)
    assert(store.puts == puts + 1)
    saved = store.get("work")
    assert(saved.access_token == "fresh-token")
    # refresh token is carried over when the provider does not rotate it
    assert(saved.refresh_token == "refresh")
    assert(saved.scopes == ["openid"])
    # now valid, no second exchange
    tokens.get_token_source("work").token()
    assert(len(refresher.calls) == 1)


def test_expiry_margin(store, registry, refresher, tokens):
    _stored(store, registry, expiry=NOW + EXPIRY_MARGIN - datetime.timedelta(seconds=1))
    tokens.get_token_source("work").token()
    assert(len(refresher.calls) == 1)


def test_failed_refresh_leaves_store_unchanged(store, registry, refresher, tokens):
    original = _stored(store, registry, expiry=NOW - datetime.timedelta(minutes=5))
    before = store.data["work"]
    refresher.error = TokenRefreshError("invalid_grant")
    source = tokens.get_token_source("work")
    with pytest.raises(TokenRefreshError):
        source.token()
    assert(len(refresher.calls) == 1)
    assert(store.data["work"] == before)
    assert(store.get("work").access_token == original.access_token)


def test_no_credential(registry, tokens):
    registry.add("work", "w@example.com")
    with pytest.raises(NoCredentialError) as e:
        tokens.get_token_source("work")
    assert("gws auth login --account work" in e.value.hint)


def test_orphaned_credential_ignored(store, tokens):
    store.put("ghost", Credential(access_token="x", refresh_token="y",
                                  expiry=NOW + datetime.timedelta(hours=1)))
    with pytest.raises(NoCredentialError):
        tokens.get_token_source("ghost")


def test_forced_refresh(store, registry, refresher, tokens):
    _stored(store, registry)
    c = tokens.refresh("work")
    assert(c.access_token == "fresh-token")
    assert(len(refresher.calls) == 1)


def test_info(store, registry, tokens):
    _stored(store, registry, expiry=NOW - datetime.timedelta(minutes=1))
    info = tokens.info("work")
    assert(info.has_token)
    assert(info.expired)
    assert(info.has_refresh_token)
    registry.add("home", "h@example.com")
    assert(not tokens.info("home").has_token)


def test_empty_refresh_response(store, registry, refresher, tokens):
    _stored(store, registry, expiry=NOW - datetime.timedelta(minutes=1))
    refresher.token = ""
    before = store.data["work"]
    with pytest.raises(TokenRefreshError):
        tokens.access_token("work")
    assert(store.data["work"] == before)


class _Client:
    client_id = "id"
    client_secret = "secret"


def test_google_refresher_maps_errors(monkeypatch):
    def refresh(self, request):
        raise google.auth.exceptions.RefreshError("invalid_grant: Token has been revoked")

    monkeypatch.setattr("google.oauth2.credentials.Credentials.refresh", refresh)
    r = GoogleTokenRefresher(_Client(), request=object())
    with pytest.raises(TokenRefreshError):
        r(Credential(access_token="a", refresh_token="b"))


def test_google_refresher_needs_refresh_token():
    with pytest.raises(TokenRefreshError):
        GoogleTokenRefresher(_Client(), request=object())(Credential(access_token="a"))


def test_google_refresher_success(monkeypatch):
    def refresh(self, request):
        self.token = "new"
        self.expiry = datetime.datetime(2030, 1, 1, 0, 0, 0)

    monkeypatch.setattr("google.oauth2.credentials.Credentials.refresh", refresh)
    c = GoogleTokenRefresher(_Client(), request=object())(Credential(access_token="a", refresh_token="b",
                                                                    scopes=["openid"]))
    assert(c.access_token == "new")
    assert(c.refresh_token == "b")
    assert(c.expiry == datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc))
    assert(c.scopes == ["openid"])


def test_refresh_not_returned_when_store_fails(store, registry, refresher, tokens):
    _stored(store, registry, expiry=NOW - datetime.timedelta(minutes=5))
    before = store.data["work"]
    store.fail_put = CredentialStoreError("keyring locked")
    source = tokens.get_token_source("work")
    with pytest.raises(CredentialStoreError):
        source.token()
    assert(len(refresher.calls) == 1)
    assert(store.data["work"] == before)
