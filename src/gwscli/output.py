"""
Rendering command results.

Three presenters share one interface:
  table  aligned columns with a header, for people
  plain  tab separated, no header, for cut/awk
  json   json.dumps of the raw-ish records, for jq
Column and detail layouts are picked by the type of the item being shown.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import asdict, is_dataclass
from typing import Any, TextIO
import datetime
import json
import sys

from .accounts import Account
from .calendar import AclRule, BusyPeriod, CalendarListEntry, Event, FreeBusyResponse
from .errors import ConfigError
from .mail import Label, Message, MessagePage, Thread
from .resources import ResourceBase
from .tokens import TokenInfo

Column = tuple[str, Callable[[Any], Any]]


def _fmt(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, datetime.datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(_fmt(v) for v in value)
    return str(value)


def _one_line(s: str, width: int = 60) -> str:
    s = " ".join(str(s or "").split())
    return s if len(s) <= width else s[:width - 3] + "..."


def _when(e: Event) -> str:
    start, end = e.duration()
    if e.all_day:
        return f"{_fmt(start)} (all day)"
    return f"{_fmt(start)} - {end.strftime('%H:%M') if isinstance(end, datetime.datetime) else _fmt(end)}"


COLUMNS: dict[type, list[Column]] = {
    Account: [("", lambda a: "*" if a.is_default else ""),
              ("ALIAS", lambda a: a.alias),
              ("EMAIL", lambda a: a.email),
              ("SCOPES", lambda a: len(a.scopes)),
              ("ADDED", lambda a: a.added)],
    Message: [("ID", lambda m: m.id),
              ("DATE", lambda m: m.date),
              ("FROM", lambda m: _one_line(m.sender, 30)),
              ("SUBJECT", lambda m: _one_line(m.subject, 50)),
              ("", lambda m: ("" if m.read else "U") + ("*" if m.starred else ""))],
    Label: [("ID", lambda l: l.id),
            ("NAME", lambda l: l.name),
            ("TYPE", lambda l: l.type)],
    Thread: [("ID", lambda t: t.id),
             ("SNIPPET", lambda t: _one_line(t.snippet))],
    Event: [("ID", lambda e: e.id),
            ("WHEN", _when),
            ("SUMMARY", lambda e: _one_line(e.summary, 50)),
            ("LOCATION", lambda e: _one_line(e.location, 30))],
    CalendarListEntry: [("ID", lambda c: c.id),
                        ("NAME", lambda c: c.title),
                        ("ROLE", lambda c: c.accessRole),
                        ("", lambda c: "primary" if c.primary else "")],
    AclRule: [("ID", lambda r: r.id),
              ("ROLE", lambda r: r.role),
              ("SCOPE", lambda r: r.scope_type),
              ("VALUE", lambda r: r.scope_value)],
    BusyPeriod: [("START", lambda b: b.start),
                 ("END", lambda b: b.end)],
    TokenInfo: [("ACCOUNT", lambda t: t.alias),
                ("STATUS", lambda t: ("expired" if t.expired else "valid") if t.has_token else "logged out"),
                ("EXPIRY", lambda t: t.expiry),
                ("REFRESH", lambda t: t.has_refresh_token)],
}

DETAILS: dict[type, list[Column]] = {
    Account: [("Alias", lambda a: a.alias),
              ("Email", lambda a: a.email),
              ("Default", lambda a: a.is_default),
              ("Added", lambda a: a.added),
              ("Scopes", lambda a: a.scopes)],
    Message: [("ID", lambda m: m.id),
              ("Thread", lambda m: m.threadId),
              ("From", lambda m: m.sender),
              ("To", lambda m: m.to),
              ("Cc", lambda m: m.cc),
              ("Date", lambda m: m.date),
              ("Subject", lambda m: m.subject),
              ("Labels", lambda m: m.labelIds)],
    Event: [("ID", lambda e: e.id),
            ("Summary", lambda e: e.summary),
            ("Start", lambda e: e.start.value() if e.start else None),
            ("End", lambda e: e.end.value() if e.end else None),
            ("Location", lambda e: e.location),
            ("Description", lambda e: e.description),
            ("Attendees", lambda e: [a.get("email", "") for a in e.attendees or []]),
            ("Response", lambda e: e.my_response),
            ("Link", lambda e: e.htmlLink)],
    Label: [("ID", lambda l: l.id),
            ("Name", lambda l: l.name),
            ("Type", lambda l: l.type),
            ("Messages", lambda l: l.messagesTotal),
            ("Unread", lambda l: l.messagesUnread)],
    TokenInfo: [("Account", lambda t: t.alias),
                ("Authenticated", lambda t: t.has_token),
                ("Expired", lambda t: t.expired),
                ("Expiry", lambda t: t.expiry),
                ("Refresh token", lambda t: t.has_refresh_token),
                ("Scopes", lambda t: t.scopes)],
}


def to_record(item: Any) -> Any:
    """The JSON-able form of anything a command returns."""
    if isinstance(item, Account):
        return item.to_base()
    if isinstance(item, ResourceBase):
        return item.trim()
    if isinstance(item, MessagePage):
        return {"messages": [to_record(m) for m in item.messages],
                "nextPageToken": item.next_page_token or None}
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    if isinstance(item, dict):
        return {k: to_record(v) for k, v in item.items()}
    if isinstance(item, (list, tuple)):
        return [to_record(v) for v in item]
    return item


class Presenter(ABC):
    name = ""

    def __init__(self, out: TextIO|None = None) -> None:
        self.out = out or sys.stdout

    def write(self, text: str = "") -> None:
        print(text, file=self.out)

    @abstractmethod
    def list(self, items: Iterable[Any]) -> None:
        """A collection, one row per item."""

    @abstractmethod
    def show(self, item: Any) -> None:
        """One item in full."""

    @abstractmethod
    def detail(self, data: dict[str, Any]) -> None:
        """Key and value pairs, e.g. settings."""

    @abstractmethod
    def status(self, text: str, **data) -> None:
        """Confirmation of something done, e.g. 'switched to work'."""

    @abstractmethod
    def thread(self, thread: Thread) -> None:
        """Every message of a thread in order."""

    @abstractmethod
    def freebusy(self, response: FreeBusyResponse) -> None:
        """Busy periods per calendar."""


class TablePresenter(Presenter):
    name = "table"
    empty = "No results."
    separator = "  "
    header = True

    def rows(self, items: list[Any]) -> tuple[list[str], list[list[str]]]:
        columns = COLUMNS.get(type(items[0]))
        if columns is None:
            return [], [[_fmt(i)] for i in items]
        return ([name for name, _ in columns],
                [[_fmt(get(i)) for _, get in columns] for i in items])

    def _table(self, headers: list[str], rows: list[list[str]]) -> None:
        all_rows = ([headers] if self.header and headers else []) + rows
        widths = [max(len(r[i]) for r in all_rows) for i in range(len(all_rows[0]))]
        for r in all_rows:
            self.write(self.separator.join(c.ljust(w) for c, w in zip(r, widths)).rstrip())

    def list(self, items: Iterable[Any]) -> None:
        items = list(items)
        if not items:
            if self.empty:
                self.write(self.empty)
            return
        self._table(*self.rows(items))

    def _pairs(self, pairs: list[tuple[str, Any]]) -> None:
        width = max((len(k) for k, _ in pairs), default=0)
        for k, v in pairs:
            self.write(f"{k + ':':<{width + 1}} {_fmt(v)}")

    def show(self, item: Any) -> None:
        layout = DETAILS.get(type(item))
        if layout is None:
            self.write(_fmt(item))
            return
        self._pairs([(k, get(item)) for k, get in layout])
        if isinstance(item, Message):
            self.write()
            self.write(item.body or item.html_body or item.snippet)

    def thread(self, thread: Thread) -> None:
        for i, m in enumerate(thread.messages):
            if i:
                self.write("-" * 40)
            self.show(m)

    def detail(self, data: dict[str, Any]) -> None:
        self._pairs(list(data.items()))

    def status(self, text: str, **data) -> None:
        self.write(text)

    def freebusy(self, response: FreeBusyResponse) -> None:
        rows = []
        for cid, busy in response.calendars.items():
            if cid in response.errors:
                rows.append([cid, "error", _fmt([e.get("reason", "") for e in response.errors[cid]])])
            for b in busy:
                rows.append([cid, _fmt(b.start), _fmt(b.end)])
        if not rows:
            if self.empty:
                self.write("No busy periods.")
            return
        self._table(["CALENDAR", "START", "END"], rows)


class PlainPresenter(TablePresenter):
    name = "plain"
    empty = ""
    separator = "\t"
    header = False

    def _table(self, headers: list[str], rows: list[list[str]]) -> None:
        for r in rows:
            self.write(self.separator.join(r))

    def _pairs(self, pairs: list[tuple[str, Any]]) -> None:
        for k, v in pairs:
            self.write(f"{k}\t{_fmt(v)}")


class JsonPresenter(Presenter):
    name = "json"

    def dump(self, data: Any) -> None:
        self.write(json.dumps(data, indent=2, default=str))

    def list(self, items: Iterable[Any]) -> None:
        if isinstance(items, MessagePage):
            self.dump(to_record(items))
            return
        self.dump([to_record(i) for i in items])

    def show(self, item: Any) -> None:
        self.dump(to_record(item))

    def thread(self, thread: Thread) -> None:
        self.show(thread)

    def detail(self, data: dict[str, Any]) -> None:
        self.dump(to_record(data))

    def status(self, text: str, **data) -> None:
        self.dump({"status": text, **to_record(data)})

    def freebusy(self, response: FreeBusyResponse) -> None:
        self.dump(to_record(response))


PRESENTERS: dict[str, type[Presenter]] = {p.name: p for p in (TablePresenter, PlainPresenter, JsonPresenter)}


def get_presenter(fmt: str, out: TextIO|None = None) -> Presenter:
    try:
        return PRESENTERS[fmt](out)
    except KeyError:
        raise ConfigError(f"unknown output format: {fmt}",
                          hint=f"use one of {', '.join(PRESENTERS)}") from None
