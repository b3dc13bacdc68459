import json

import pytest

from gwscli.config import Config
from gwscli.errors import LoginError, OAuthConfigError
from gwscli.oauth import (DEFAULT_SCOPES, SCOPE_OPENID, SCOPE_USERINFO_EMAIL, ClientLoader, LoginFlow, OAuthClient,
                          get_scope, parse_scopes)

from conftest import FakeService


def test_scope_shorthands():
    assert(get_scope("gmail.modify") == "https://www.googleapis.com/auth/gmail.modify")
    assert(get_scope("Calendar") == "https://www.googleapis.com/auth/calendar.readonly")
    url = "https://www.googleapis.com/auth/drive.readonly"
    assert(get_scope(url) == url)


def test_parse_scopes():
    assert(parse_scopes(None) == DEFAULT_SCOPES)
    assert(parse_scopes([]) == DEFAULT_SCOPES)
    scopes = parse_scopes(["gmail.send,calendar.events", "gmail.send"])
    assert(scopes == ["https://www.googleapis.com/auth/gmail.send",
                      "https://www.googleapis.com/auth/calendar.events",
                      SCOPE_USERINFO_EMAIL, SCOPE_OPENID])
    assert(parse_scopes("openid,email") == [SCOPE_OPENID, SCOPE_USERINFO_EMAIL])


def test_client_from_env(tmp_path):
    client = OAuthClient.load(Config(path=tmp_path / "config.yaml"),
                              env={"GWSCLI_CLIENT_ID": "id", "GWSCLI_CLIENT_SECRET": "s3cret"})
    assert(client)
    client.validate()
    assert(client.to_client_config()["installed"]["client_id"] == "id")
    assert("s3cret" not in repr(client))


def test_client_from_secrets_file(tmp_path):
    secrets = tmp_path / "client_secret.json"
    secrets.write_text(json.dumps({"installed": {"client_id": "file-id", "client_secret": "file-secret",
                                                 "token_uri": "https://oauth2.googleapis.com/token"}}))
    cfg = Config(path=tmp_path / "config.yaml", client_secrets=str(secrets))
    client = OAuthClient.load(cfg, env={})
    assert(client.client_id == "file-id")
    client = OAuthClient.load(cfg, env={"GWSCLI_CLIENT_ID": "env-id"})
    assert(client.client_id == "env-id")
    assert(client.client_secret == "file-secret")


def test_client_missing(tmp_path):
    client = OAuthClient.load(Config(path=tmp_path / "config.yaml"), env={})
    assert(not client)
    with pytest.raises(OAuthConfigError):
        client.validate()
    with pytest.raises(OAuthConfigError):
        OAuthClient.from_secrets_file(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"something": "else"}))
    with pytest.raises(OAuthConfigError):
        OAuthClient.from_secrets_file(bad)


class _GoogleCreds:
    token = "access"
    refresh_token = "refresh"
    expiry = None
    token_uri = "https://oauth2.googleapis.com/token"
    scopes = None
    granted_scopes = None


def test_login_flow_run(monkeypatch):
    flow = LoginFlow(OAuthClient("id", "secret"), open_browser=False)
    requested = []

    def authorize(scopes):
        requested.append(scopes)
        return _GoogleCreds()

    monkeypatch.setattr(flow, "authorize", authorize)
    monkeypatch.setattr(flow, "fetch_email", lambda creds: "w@example.com")
    email, credential = flow.run(["gmail.modify"])
    assert(email == "w@example.com")
    assert(credential.access_token == "access")
    assert(credential.refresh_token == "refresh")
    assert(credential.scopes == requested[0])
    assert(SCOPE_OPENID in credential.scopes)


def test_fetch_email(monkeypatch):
    service = FakeService({"userinfo.get": {"email": "w@example.com", "verified_email": True}})
    monkeypatch.setattr("gwscli.oauth.build", lambda *args, **kwargs: service)
    assert(LoginFlow(OAuthClient("id", "secret")).fetch_email(object()) == "w@example.com")
    service.responses["userinfo.get"] = {}
    with pytest.raises(LoginError):
        LoginFlow(OAuthClient("id", "secret")).fetch_email(object())


def test_authorize_requires_client():
    with pytest.raises(OAuthConfigError):
        LoginFlow(OAuthClient()).authorize(DEFAULT_SCOPES)


def test_client_loader_reads_on_first_use(tmp_path):
    cfg = Config(path=tmp_path / "config.yaml")
    cfg.set_value("client_secrets", str(tmp_path / "missing.json"))
    loader = ClientLoader(cfg, env={})
    flow = LoginFlow(loader, open_browser=False)
    with pytest.raises(OAuthConfigError):
        flow.authorize(DEFAULT_SCOPES)
    (tmp_path / "missing.json").write_text(json.dumps({"installed": {"client_id": "id", "client_secret": "s"}}))
    assert(flow.client.client_id == "id")
    assert(loader() is flow.client)
