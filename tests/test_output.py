import datetime
import io
import json

import pytest

from gwscli.accounts import Account
from gwscli.calendar import BusyPeriod, Event, FreeBusyResponse
from gwscli.errors import ConfigError
from gwscli.mail import Label, Message, MessagePage
from gwscli.output import JsonPresenter, PlainPresenter, Presenter, TablePresenter, get_presenter
from gwscli.tokens import TokenInfo

UTC = datetime.timezone.utc
ADDED = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _accounts():
    return [Account("work", "w@example.com", ["openid"], True, ADDED),
            Account("home", "h@example.com", [], False, ADDED)]


def _render(fmt, method, *args, **kwargs):
    out = io.StringIO()
    p = get_presenter(fmt, out)
    getattr(p, method)(*args, **kwargs)
    return out.getvalue()


def test_get_presenter():
    assert(isinstance(get_presenter("table"), TablePresenter))
    assert(isinstance(get_presenter("plain"), PlainPresenter))
    assert(isinstance(get_presenter("json"), JsonPresenter))
    with pytest.raises(ConfigError):
        get_presenter("xml")


def test_presenter_is_abstract():
    with pytest.raises(TypeError):
        Presenter()


def test_table_accounts():
    lines = _render("table", "list", _accounts()).splitlines()
    assert(lines[0].split() == ["ALIAS", "EMAIL", "SCOPES", "ADDED"])
    assert(lines[1].startswith("*"))
    assert("work" in lines[1])
    assert(not lines[2].startswith("*"))
    # columns line up
    assert(lines[1].index("w@example.com") == lines[2].index("h@example.com"))


def test_table_empty():
    assert(_render("table", "list", []) == "No results.\n")
    assert(_render("plain", "list", []) == "")
    assert(json.loads(_render("json", "list", [])) == [])


def test_plain_accounts():
    lines = _render("plain", "list", _accounts()).splitlines()
    assert(lines[0].split("\t")[:3] == ["*", "work", "w@example.com"])
    assert(len(lines) == 2)


def test_json_accounts():
    data = json.loads(_render("json", "list", _accounts()))
    assert(data[0] == {"alias": "work", "email": "w@example.com", "scopes": ["openid"],
                       "default": True, "added": "2024-05-01T12:00:00+00:00"})


def test_json_message_page():
    page = MessagePage(messages=[Message(id="m1", subject="Hi", labelIds=["INBOX"])], next_page_token="n")
    data = json.loads(_render("json", "list", page))
    assert(data["nextPageToken"] == "n")
    assert(data["messages"][0]["subject"] == "Hi")
    assert("body" not in data["messages"][0])


def test_table_message_page():
    page = MessagePage(messages=[Message(id="m1", subject="Hi", sender="a@example.com",
                                         labelIds=["UNREAD"])])
    lines = _render("table", "list", page).splitlines()
    assert(lines[0].split() == ["ID", "DATE", "FROM", "SUBJECT"])
    assert(lines[1].split() == ["m1", "a@example.com", "Hi", "U"])


def test_show_message_includes_body():
    m = Message(id="m1", subject="Hi", body="Hello there")
    out = _render("table", "show", m)
    assert("Subject: Hi" in out)
    assert(out.rstrip().endswith("Hello there"))


def test_show_event_json():
    e = Event(id="e1", summary="Lunch")
    e.set_duration(datetime.datetime(2024, 5, 1, 12, 0, tzinfo=UTC))
    data = json.loads(_render("json", "show", e))
    assert(data["start"] == {"dateTime": "2024-05-01T12:00:00+00:00"})


def test_table_event_when():
    e = Event(id="e1", summary="Lunch")
    e.set_duration(datetime.datetime(2024, 5, 1, 12, 0, tzinfo=UTC))
    out = _render("table", "list", [e])
    assert("2024-05-01 12:00 - 13:00" in out)
    allday = Event(id="e2", summary="Off")
    allday.set_duration("2024-05-01")
    assert("2024-05-01 (all day)" in _render("table", "list", [allday]))


def test_labels_plain():
    out = _render("plain", "list", [Label(id="Label_1", name="Receipts", type="user")])
    assert(out == "Label_1\tReceipts\tuser\n")


def test_detail_and_status():
    assert(_render("table", "detail", {"timezone": "Local"}) == "timezone: Local\n")
    assert(_render("plain", "detail", {"timezone": "Local"}) == "timezone\tLocal\n")
    assert(_render("table", "status", "done", id="x") == "done\n")
    assert(json.loads(_render("json", "status", "done", id="x")) == {"status": "done", "id": "x"})


def test_token_info():
    info = TokenInfo(alias="work", has_token=True, expired=False,
                     expiry=ADDED, has_refresh_token=True, scopes=["openid"])
    out = _render("table", "show", info)
    assert("Authenticated: yes" in out)
    assert("valid" in _render("table", "list", [info]))
    assert(json.loads(_render("json", "show", info))["alias"] == "work")


def test_freebusy():
    fb = FreeBusyResponse(calendars={"primary": [BusyPeriod(ADDED, ADDED + datetime.timedelta(hours=1))]})
    out = _render("table", "freebusy", fb)
    assert("primary" in out)
    assert("2024-05-01 13:00" in out)
    assert(_render("table", "freebusy", FreeBusyResponse()) == "No busy periods.\n")
    data = json.loads(_render("json", "freebusy", fb))
    assert(data["calendars"]["primary"][0]["start"] == "2024-05-01 12:00:00+00:00")
