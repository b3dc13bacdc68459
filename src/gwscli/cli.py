"""
The gws command line.

  gws [--account ALIAS] [--format table|json|plain] [--config-dir DIR] [-v] <group> <command>

Every invocation builds one AppContext from the parsed arguments and the
config file and passes it to the command handler.  Handlers never look
anything up globally, so tests can hand main() their own context factory.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
import argparse
import datetime
import logging
import os
import sys

from . import calendar as gcal
from . import mail
from .accounts import Account, AccountRegistry, AccountService
from .config import Config, ENV_ACCOUNT, FORMATS
from .credentials import CredentialStore, open_store
from .errors import GwsError
from .oauth import ClientLoader, LoginFlow
from .output import Presenter, get_presenter
from .resources import parse_datetime
from .services import ServiceFactory
from .tokens import GoogleTokenRefresher, TokenManager, TokenSource

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


@dataclass
class AppContext:
    """
    Everything a command needs, built once per invocation.
    account is the alias asked for on the command line or in the
    environment, empty meaning the default account.
    """
    config: Config
    registry: AccountRegistry
    store: CredentialStore
    tokens: TokenManager
    accounts: AccountService
    presenter: Presenter
    account: str = ""
    service_factory: Callable[[TokenSource], ServiceFactory] = field(default=ServiceFactory)

    def resolve(self) -> Account:
        return self.accounts.resolve(self.account)

    def services(self) -> ServiceFactory:
        account = self.resolve()
        return self.service_factory(self.tokens.get_token_source(account.alias))

    def gmail(self):
        return self.services().gmail()

    def calendar(self):
        return self.services().calendar()

    @property
    def tz(self) -> datetime.tzinfo|None:
        return self.config.tzinfo


def build_context(args: argparse.Namespace) -> AppContext:
    config = Config.load(args.config_dir)
    presenter = get_presenter(args.format or config.default_format)
    store = open_store(config)
    registry = AccountRegistry.in_directory(config.directory)
    client = ClientLoader(config)
    tokens = TokenManager(store, GoogleTokenRefresher(client), registry=registry)
    login_flow = LoginFlow(client, port=getattr(args, "port", 0) or 0,
                           open_browser=not getattr(args, "no_browser", False))
    accounts = AccountService(registry, store, tokens=tokens, login_flow=login_flow)
    logger.debug("config from %s, credentials in %s", config.path, store)
    return AppContext(config=config, registry=registry, store=store, tokens=tokens,
                      accounts=accounts, presenter=presenter,
                      account=args.account or os.environ.get(ENV_ACCOUNT, ""))


def parse_when(value: str, tz: datetime.tzinfo|None = None) -> datetime.date|datetime.datetime:
    """
    Command line time: YYYY-MM-DD is a date, anything longer an ISO datetime.
    Naive datetimes are taken to be in tz, or local time when tz is None.
    """
    v = value.strip()
    if v == "now":
        return datetime.datetime.now(tz).astimezone(tz)
    if v == "today":
        return datetime.datetime.now(tz).date()
    if len(v) == 10:
        return datetime.date.fromisoformat(v)
    dt = parse_datetime(v)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()
    return dt


def _start_of(value: datetime.date|datetime.datetime, tz: datetime.tzinfo|None) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    dt = datetime.datetime.combine(value, datetime.time())
    return dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()


def _time_range(args: argparse.Namespace, tz: datetime.tzinfo|None,
                default_days: int) -> tuple[datetime.datetime, datetime.datetime]:
    start = _start_of(parse_when(args.start or "now", tz), tz)
    if args.end:
        end = _start_of(parse_when(args.end, tz), tz)
    else:
        end = start + datetime.timedelta(days=args.days or default_days)
    return start, end


# account

def cmd_account_add(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.add(args.alias, args.scopes)
    ctx.presenter.status(f"added account {account.alias} ({account.email})",
                         alias=account.alias, email=account.email)


def cmd_account_remove(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.remove(args.alias)
    ctx.presenter.status(f"removed account {account.alias}", alias=account.alias)
    if account.is_default and len(ctx.registry):
        print("note: there is no default account now, use 'gws account switch'", file=sys.stderr)


def cmd_account_list(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.list(ctx.accounts.list())


def cmd_account_switch(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.switch(args.alias)
    ctx.presenter.status(f"default account is now {account.alias}", alias=account.alias)


def cmd_account_show(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.show(ctx.accounts.resolve(args.alias or ctx.account))


def cmd_account_rename(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.rename(args.old, args.new)
    ctx.presenter.status(f"renamed {args.old} to {account.alias}", old=args.old, alias=account.alias)


# auth

def cmd_auth_login(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.login(ctx.account or None, args.scopes)
    ctx.presenter.status(f"logged in as {account.email} ({account.alias})",
                         alias=account.alias, email=account.email)


def cmd_auth_logout(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.accounts.logout(ctx.account)
    ctx.presenter.status(f"logged out {account.alias}", alias=account.alias)


def cmd_auth_status(ctx: AppContext, args: argparse.Namespace) -> None:
    if args.all:
        ctx.presenter.list([ctx.tokens.info(a.alias) for a in ctx.accounts.list()])
        return
    ctx.presenter.show(ctx.tokens.info(ctx.resolve().alias))


def cmd_auth_refresh(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.resolve()
    credential = ctx.tokens.refresh(account.alias)
    ctx.presenter.status(f"refreshed token for {account.alias}, expires {credential.expiry}",
                         alias=account.alias, expiry=credential.expiry)


# config

def cmd_config_show(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.detail({k: ctx.config.get_value(k) for k in Config.KEYS})


def cmd_config_get(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.detail({args.key: ctx.config.get_value(args.key)})


def cmd_config_set(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.config.set_value(args.key, args.value)
    path = ctx.config.save()
    ctx.presenter.status(f"set {args.key} = {ctx.config.get_value(args.key)}",
                         key=args.key, value=ctx.config.get_value(args.key), path=str(path))


def cmd_config_path(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.status(str(ctx.config.path), path=str(ctx.config.path))


# mail

def _show_page(ctx: AppContext, page: mail.MessagePage) -> None:
    ctx.presenter.list(page)
    if page.next_page_token:
        print(f"more results: --page-token {page.next_page_token}", file=sys.stderr)


def cmd_mail_list(ctx: AppContext, args: argparse.Namespace) -> None:
    service = ctx.gmail()
    labels = mail.resolve_labels(service, args.label or [ctx.config.mail.default_label])
    page = mail.list_messages(service, query=args.query or "", labels=labels,
                              max_results=args.max or ctx.config.mail.page_size,
                              page_token=args.page_token or "")
    _show_page(ctx, page)


def cmd_mail_read(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.show(mail.get_message(ctx.gmail(), args.id))


def cmd_mail_search(ctx: AppContext, args: argparse.Namespace) -> None:
    page = mail.search(ctx.gmail(), " ".join(args.query),
                       max_results=args.max or ctx.config.mail.page_size,
                       page_token=args.page_token or "")
    _show_page(ctx, page)


def _read_body(args: argparse.Namespace) -> str:
    if args.body_file == "-":
        return sys.stdin.read()
    if args.body_file:
        return Path(args.body_file).read_text(encoding="utf-8")
    return args.body or ""


def cmd_mail_send(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.resolve()
    message = mail.build_message(args.to, args.subject or "", _read_body(args), sender=account.email,
                                 cc=args.cc, bcc=args.bcc)
    sent = mail.send_message(ctx.gmail(), message)
    ctx.presenter.status(f"sent message {sent.id}", id=sent.id, threadId=sent.threadId)


def cmd_mail_reply(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.resolve()
    sent = mail.reply(ctx.gmail(), args.id, _read_body(args), sender=account.email, reply_all=args.all)
    ctx.presenter.status(f"sent reply {sent.id} in thread {sent.threadId}", id=sent.id, threadId=sent.threadId)


def cmd_mail_forward(ctx: AppContext, args: argparse.Namespace) -> None:
    account = ctx.resolve()
    sent = mail.forward(ctx.gmail(), args.id, args.to, _read_body(args), sender=account.email)
    ctx.presenter.status(f"forwarded {args.id} as {sent.id}", id=sent.id, threadId=sent.threadId)


def _for_each(ctx: AppContext, args: argparse.Namespace, op: Callable, verb: str) -> None:
    service = ctx.gmail()
    for message_id in args.ids:
        op(service, message_id)
        ctx.presenter.status(f"{verb} {message_id}", id=message_id)


def cmd_mail_trash(ctx: AppContext, args: argparse.Namespace) -> None:
    _for_each(ctx, args, mail.trash, "trashed")


def cmd_mail_untrash(ctx: AppContext, args: argparse.Namespace) -> None:
    _for_each(ctx, args, mail.untrash, "untrashed")


def cmd_mail_delete(ctx: AppContext, args: argparse.Namespace) -> None:
    _for_each(ctx, args, mail.delete, "deleted")


def cmd_mail_archive(ctx: AppContext, args: argparse.Namespace) -> None:
    _for_each(ctx, args, mail.archive, "archived")


def cmd_mail_modify(ctx: AppContext, args: argparse.Namespace) -> None:
    service = ctx.gmail()
    add = mail.resolve_labels(service, args.add or [])
    remove = mail.resolve_labels(service, args.remove or [])
    for message_id in args.ids:
        m = mail.modify(service, message_id, add=add, remove=remove)
        ctx.presenter.status(f"modified {message_id}", id=message_id, labelIds=m.labelIds)


def cmd_mail_mark(ctx: AppContext, args: argparse.Namespace) -> None:
    service = ctx.gmail()
    for message_id in args.ids:
        mail.mark(service, message_id, args.how)
        ctx.presenter.status(f"marked {message_id} {args.how}", id=message_id)


# label

def cmd_label_list(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.list(mail.list_labels(ctx.gmail()))


def cmd_label_create(ctx: AppContext, args: argparse.Namespace) -> None:
    label = mail.create_label(ctx.gmail(), args.name)
    ctx.presenter.status(f"created label {label.name} ({label.id})", id=label.id, name=label.name)


def cmd_label_delete(ctx: AppContext, args: argparse.Namespace) -> None:
    service = ctx.gmail()
    label = mail.find_label(service, args.label)
    if label.system:
        raise GwsError(f"cannot delete system label {label.name}")
    mail.delete_label(service, label.id)
    ctx.presenter.status(f"deleted label {label.name}", id=label.id, name=label.name)


# thread

def cmd_thread_list(ctx: AppContext, args: argparse.Namespace) -> None:
    service = ctx.gmail()
    labels = mail.resolve_labels(service, args.label or [])
    ctx.presenter.list(mail.list_threads(service, query=args.query or "", labels=labels,
                                         max_results=args.max or ctx.config.mail.page_size))


def cmd_thread_show(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.thread(mail.get_thread(ctx.gmail(), args.id))


# cal

def _calendar_id(ctx: AppContext, args: argparse.Namespace) -> str:
    return getattr(args, "calendar", None) or ctx.config.calendar.default_calendar


def _list_events(ctx: AppContext, args: argparse.Namespace,
                 start: datetime.datetime, end: datetime.datetime) -> None:
    events = gcal.list_events(ctx.calendar(), _calendar_id(ctx, args), time_min=start, time_max=end,
                              query=getattr(args, "query", None) or "", max_results=args.max or 0)
    ctx.presenter.list(events)


def cmd_cal_list(ctx: AppContext, args: argparse.Namespace) -> None:
    _list_events(ctx, args, *_time_range(args, ctx.tz, 7))


def _today(tz: datetime.tzinfo|None) -> datetime.date:
    return datetime.datetime.now(tz).date()


def cmd_cal_today(ctx: AppContext, args: argparse.Namespace) -> None:
    start = _start_of(_today(ctx.tz), ctx.tz)
    _list_events(ctx, args, start, start + datetime.timedelta(days=1))


def cmd_cal_week(ctx: AppContext, args: argparse.Namespace) -> None:
    """Monday to Monday of the current week."""
    today = _today(ctx.tz)
    start = _start_of(today - datetime.timedelta(days=today.weekday()), ctx.tz)
    _list_events(ctx, args, start, start + datetime.timedelta(days=7))


def cmd_cal_show(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.show(gcal.get_event(ctx.calendar(), _calendar_id(ctx, args), args.id))


def cmd_cal_create(ctx: AppContext, args: argparse.Namespace) -> None:
    event = gcal.Event(summary=args.summary, description=args.description,
                       location=args.location)
    start = parse_when(args.start, ctx.tz)
    end = parse_when(args.end, ctx.tz) if args.end else None
    if end is None and args.duration and isinstance(start, datetime.datetime):
        end = start + datetime.timedelta(minutes=args.duration)
    event.set_duration(start, end, tz=ctx.config.timezone if ctx.tz else None)
    if args.attendee:
        event.attendees = [{"email": a} for a in args.attendee]
    created = gcal.insert_event(ctx.calendar(), _calendar_id(ctx, args), event,
                                send_updates=args.send_updates or "")
    ctx.presenter.show(created)


def cmd_cal_update(ctx: AppContext, args: argparse.Namespace) -> None:
    """
    Patch only what was given.  Moving the start without an end keeps the
    event's length.
    """
    service = ctx.calendar()
    calendar_id = _calendar_id(ctx, args)
    changes = gcal.Event(id=args.id)
    changes.update_fields(summary=args.summary, location=args.location, description=args.description)
    if args.start or args.end:
        old_start, old_end = gcal.get_event(service, calendar_id, args.id).duration()
        start = parse_when(args.start, ctx.tz) if args.start else old_start
        end = parse_when(args.end, ctx.tz) if args.end else None
        if end is None and old_start is not None and old_end is not None \
                and isinstance(start, datetime.datetime) == isinstance(old_start, datetime.datetime):
            end = start + (old_end - old_start)
        if start is None:
            raise ValueError(f"event {args.id} has no start, give --start")
        changes.set_duration(start, end, tz=ctx.config.timezone if ctx.tz else None)
    if args.attendee:
        changes.attendees = [{"email": a} for a in args.attendee]
    if set(changes.trim()) == {"id"}:
        raise ValueError("nothing to update")
    updated = gcal.update_event(service, calendar_id, changes, send_updates=args.send_updates or "")
    ctx.presenter.show(updated)


def cmd_cal_rsvp(ctx: AppContext, args: argparse.Namespace) -> None:
    event = gcal.rsvp(ctx.calendar(), _calendar_id(ctx, args), args.id, args.response,
                      send_updates=args.send_updates or "")
    ctx.presenter.status(f"{args.response} {event.summary or args.id}", id=args.id, responseStatus=args.response)


def cmd_cal_instances(ctx: AppContext, args: argparse.Namespace) -> None:
    start = _start_of(parse_when(args.start, ctx.tz), ctx.tz) if args.start else None
    end = _start_of(parse_when(args.end, ctx.tz), ctx.tz) if args.end else None
    ctx.presenter.list(gcal.list_instances(ctx.calendar(), _calendar_id(ctx, args), args.id,
                                           time_min=start, time_max=end, max_results=args.max or 0))


def cmd_cal_delete(ctx: AppContext, args: argparse.Namespace) -> None:
    gcal.delete_event(ctx.calendar(), _calendar_id(ctx, args), args.id,
                      send_updates=args.send_updates)
    ctx.presenter.status(f"deleted event {args.id}", id=args.id)


def cmd_cal_quick(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.show(gcal.quick_add(ctx.calendar(), _calendar_id(ctx, args), " ".join(args.text)))


def cmd_cal_freebusy(ctx: AppContext, args: argparse.Namespace) -> None:
    start, end = _time_range(args, ctx.tz, 1)
    calendars = args.calendars or [ctx.config.calendar.default_calendar]
    ctx.presenter.freebusy(gcal.query_freebusy(ctx.calendar(), calendars, start, end))


def cmd_cal_calendars(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.list(gcal.list_calendars(ctx.calendar(), min_access_role=args.min_role or "",
                                           show_hidden=args.hidden))


# acl

def cmd_acl_list(ctx: AppContext, args: argparse.Namespace) -> None:
    ctx.presenter.list(gcal.list_acl(ctx.calendar(), _calendar_id(ctx, args)))


def cmd_acl_add(ctx: AppContext, args: argparse.Namespace) -> None:
    rule = gcal.AclRule.new(args.role, args.type, args.value or "")
    rule = gcal.insert_acl(ctx.calendar(), _calendar_id(ctx, args), rule,
                           send_notifications=not args.no_notify)
    ctx.presenter.status(f"added {rule.role} for {rule.scope_value or rule.scope_type} ({rule.id})",
                         id=rule.id, role=rule.role)


def cmd_acl_remove(ctx: AppContext, args: argparse.Namespace) -> None:
    gcal.delete_acl(ctx.calendar(), _calendar_id(ctx, args), args.rule_id)
    ctx.presenter.status(f"removed rule {args.rule_id}", id=args.rule_id)


def _group(sub, name: str, help: str):
    p = sub.add_parser(name, help=help)
    g = p.add_subparsers(dest="command", required=True, metavar="<command>")
    return g


def _cmd(group, name: str, func: Callable, help: str, **kwargs):
    p = group.add_parser(name, help=help, **kwargs)
    p.set_defaults(func=func)
    return p


def _add_range(p, what: str) -> None:
    p.add_argument("--from", dest="start", help=f"start of the {what} range (ISO date/time, 'now' or 'today')")
    p.add_argument("--to", dest="end", help=f"end of the {what} range")
    p.add_argument("--days", type=int, help="range length in days when --to is not given")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gws", description="Multi-account Gmail and Google Calendar client.")
    parser.add_argument("--account", "-a", default="",
                        help=f"account alias to act as (default: ${ENV_ACCOUNT} or the default account)")
    parser.add_argument("--format", "-f", choices=FORMATS, help="output format")
    parser.add_argument("--config-dir", type=Path, help="configuration directory")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="more logging, repeat for debug")
    sub = parser.add_subparsers(dest="group", required=True, metavar="<group>")

    g = _group(sub, "account", "manage configured accounts")
    p = _cmd(g, "add", cmd_account_add, "authenticate and add an account")
    p.add_argument("alias", nargs="?", help="alias, derived from the email address if omitted")
    p.add_argument("--scopes", "-s", action="append", help="scopes to request, comma separated shorthands or URLs")
    p.add_argument("--no-browser", action="store_true", help="print the URL instead of opening a browser")
    p.add_argument("--port", type=int, default=0, help="local redirect port")
    p = _cmd(g, "remove", cmd_account_remove, "remove an account and its credential")
    p.add_argument("alias")
    _cmd(g, "list", cmd_account_list, "list accounts")
    p = _cmd(g, "switch", cmd_account_switch, "set the default account")
    p.add_argument("alias")
    p = _cmd(g, "show", cmd_account_show, "show account details")
    p.add_argument("alias", nargs="?")
    p = _cmd(g, "rename", cmd_account_rename, "change an account alias")
    p.add_argument("old")
    p.add_argument("new")

    g = _group(sub, "auth", "log in and out, inspect tokens")
    p = _cmd(g, "login", cmd_auth_login, "authenticate (adds the account if new)")
    p.add_argument("--scopes", "-s", action="append", help="scopes to request")
    p.add_argument("--no-browser", action="store_true", help="print the URL instead of opening a browser")
    p.add_argument("--port", type=int, default=0, help="local redirect port")
    _cmd(g, "logout", cmd_auth_logout, "delete the stored credential, keep the account")
    p = _cmd(g, "status", cmd_auth_status, "show token status")
    p.add_argument("--all", action="store_true", help="all accounts")
    _cmd(g, "refresh", cmd_auth_refresh, "force an access token refresh")

    g = _group(sub, "config", "show and change settings")
    _cmd(g, "show", cmd_config_show, "show all settings")
    p = _cmd(g, "get", cmd_config_get, "show one setting")
    p.add_argument("key", choices=Config.KEYS)
    p = _cmd(g, "set", cmd_config_set, "change a setting")
    p.add_argument("key", choices=Config.KEYS)
    p.add_argument("value")
    _cmd(g, "path", cmd_config_path, "show the config file path")

    g = _group(sub, "mail", "Gmail messages")
    p = _cmd(g, "list", cmd_mail_list, "list messages")
    p.add_argument("--label", "-l", action="append", help="label name or id (default: mail.default_label)")
    p.add_argument("--query", "-q", help="Gmail search query")
    p.add_argument("--max", "-n", type=int, help="page size (default: mail.page_size)")
    p.add_argument("--page-token", help="continue from a previous page")
    p = _cmd(g, "read", cmd_mail_read, "show a message")
    p.add_argument("id")
    p = _cmd(g, "search", cmd_mail_search, "search with Gmail query syntax")
    p.add_argument("query", nargs="+")
    p.add_argument("--max", "-n", type=int)
    p.add_argument("--page-token")
    p = _cmd(g, "send", cmd_mail_send, "send a message")
    p.add_argument("--to", "-t", action="append", required=True)
    p.add_argument("--cc", action="append")
    p.add_argument("--bcc", action="append")
    p.add_argument("--subject", "-s")
    body = p.add_mutually_exclusive_group()
    body.add_argument("--body", "-b")
    body.add_argument("--body-file", help="read the body from a file, '-' for stdin")
    p = _cmd(g, "reply", cmd_mail_reply, "reply in the same thread")
    p.add_argument("id")
    p.add_argument("--all", action="store_true", help="reply to all recipients")
    body = p.add_mutually_exclusive_group(required=True)
    body.add_argument("--body", "-b")
    body.add_argument("--body-file", help="read the body from a file, '-' for stdin")
    p = _cmd(g, "forward", cmd_mail_forward, "forward a message")
    p.add_argument("id")
    p.add_argument("--to", "-t", action="append", required=True)
    body = p.add_mutually_exclusive_group()
    body.add_argument("--body", "-b", help="note above the forwarded message")
    body.add_argument("--body-file", help="read the note from a file, '-' for stdin")
    for name, func, help in (("trash", cmd_mail_trash, "move messages to the trash"),
                             ("untrash", cmd_mail_untrash, "restore messages from the trash"),
                             ("delete", cmd_mail_delete, "permanently delete messages"),
                             ("archive", cmd_mail_archive, "remove messages from the inbox")):
        p = _cmd(g, name, func, help)
        p.add_argument("ids", nargs="+", metavar="id")
    p = _cmd(g, "modify", cmd_mail_modify, "add or remove labels")
    p.add_argument("ids", nargs="+", metavar="id")
    p.add_argument("--add", action="append")
    p.add_argument("--remove", action="append")
    p = _cmd(g, "mark", cmd_mail_mark, "mark read, unread, starred or unstarred")
    p.add_argument("how", choices=list(mail.MARKS))
    p.add_argument("ids", nargs="+", metavar="id")

    g = _group(sub, "label", "Gmail labels")
    _cmd(g, "list", cmd_label_list, "list labels")
    p = _cmd(g, "create", cmd_label_create, "create a label")
    p.add_argument("name")
    p = _cmd(g, "delete", cmd_label_delete, "delete a label")
    p.add_argument("label", help="label name or id")

    g = _group(sub, "thread", "Gmail threads")
    p = _cmd(g, "list", cmd_thread_list, "list threads")
    p.add_argument("--label", "-l", action="append")
    p.add_argument("--query", "-q")
    p.add_argument("--max", "-n", type=int)
    p = _cmd(g, "show", cmd_thread_show, "show all messages in a thread")
    p.add_argument("id")

    g = _group(sub, "cal", "Google Calendar events")
    p = _cmd(g, "list", cmd_cal_list, "list upcoming events")
    p.add_argument("--calendar", "-c", help="calendar id (default: calendar.default_calendar)")
    _add_range(p, "event")
    p.add_argument("--query", "-q")
    p.add_argument("--max", "-n", type=int)
    for name, func, help in (("today", cmd_cal_today, "list today's events"),
                             ("week", cmd_cal_week, "list this week's events, Monday to Sunday")):
        p = _cmd(g, name, func, help)
        p.add_argument("--calendar", "-c")
        p.add_argument("--max", "-n", type=int)
    p = _cmd(g, "show", cmd_cal_show, "show an event")
    p.add_argument("id")
    p.add_argument("--calendar", "-c")
    p = _cmd(g, "create", cmd_cal_create, "create an event")
    p.add_argument("summary")
    p.add_argument("--start", required=True, help="YYYY-MM-DD for all day, or an ISO datetime")
    p.add_argument("--end")
    p.add_argument("--duration", type=int, help="minutes, when --end is not given")
    p.add_argument("--location")
    p.add_argument("--description")
    p.add_argument("--attendee", action="append")
    p.add_argument("--calendar", "-c")
    p.add_argument("--send-updates", choices=gcal.SEND_UPDATES)
    p = _cmd(g, "update", cmd_cal_update, "change an event")
    p.add_argument("id")
    p.add_argument("--summary")
    p.add_argument("--start", help="YYYY-MM-DD for all day, or an ISO datetime")
    p.add_argument("--end")
    p.add_argument("--location")
    p.add_argument("--description")
    p.add_argument("--attendee", action="append", help="replaces the attendee list")
    p.add_argument("--calendar", "-c")
    p.add_argument("--send-updates", choices=gcal.SEND_UPDATES)
    p = _cmd(g, "rsvp", cmd_cal_rsvp, "respond to an invitation")
    p.add_argument("id")
    answer = p.add_mutually_exclusive_group(required=True)
    answer.add_argument("--accept", dest="response", action="store_const", const="accepted")
    answer.add_argument("--decline", dest="response", action="store_const", const="declined")
    answer.add_argument("--tentative", dest="response", action="store_const", const="tentative")
    p.add_argument("--calendar", "-c")
    p.add_argument("--send-updates", choices=gcal.SEND_UPDATES)
    p = _cmd(g, "instances", cmd_cal_instances, "list occurrences of a recurring event")
    p.add_argument("id")
    p.add_argument("--from", dest="start")
    p.add_argument("--to", dest="end")
    p.add_argument("--max", "-n", type=int)
    p.add_argument("--calendar", "-c")
    p = _cmd(g, "delete", cmd_cal_delete, "delete an event")
    p.add_argument("id")
    p.add_argument("--calendar", "-c")
    p.add_argument("--send-updates", choices=gcal.SEND_UPDATES, default="all")
    p = _cmd(g, "quick", cmd_cal_quick, "create an event from text, e.g. 'Lunch tomorrow 1pm'")
    p.add_argument("text", nargs="+")
    p.add_argument("--calendar", "-c")
    p = _cmd(g, "freebusy", cmd_cal_freebusy, "show busy periods")
    p.add_argument("calendars", nargs="*", help="calendar ids (default: calendar.default_calendar)")
    _add_range(p, "free/busy")
    p = _cmd(g, "calendars", cmd_cal_calendars, "list calendars")
    p.add_argument("--min-role", choices=gcal.MIN_ACCESS_ROLES)
    p.add_argument("--hidden", action="store_true", help="include hidden calendars")

    g = _group(sub, "acl", "calendar sharing")
    p = _cmd(g, "list", cmd_acl_list, "list access rules")
    p.add_argument("--calendar", "-c")
    p = _cmd(g, "add", cmd_acl_add, "share a calendar")
    p.add_argument("--role", "-r", choices=gcal.ACL_ROLES, required=True)
    p.add_argument("--type", "-t", choices=gcal.ACL_SCOPE_TYPES, default="user")
    p.add_argument("value", nargs="?", help="email, group or domain")
    p.add_argument("--calendar", "-c")
    p.add_argument("--no-notify", action="store_true")
    p = _cmd(g, "remove", cmd_acl_remove, "remove an access rule")
    p.add_argument("rule_id")
    p.add_argument("--calendar", "-c")

    return parser


def setup_logging(verbosity: int = 0) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    if verbosity < 2:
        logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def main(argv: list[str]|None = None,
         context_factory: Callable[[argparse.Namespace], AppContext] = build_context) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        ctx = context_factory(args)
        args.func(ctx, args)
    except GwsError as e:
        print(f"error: {e.message}", file=sys.stderr)
        if e.hint:
            print(f"hint: {e.hint}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130
    return 0
