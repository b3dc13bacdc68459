"""
Gmail v1 wrappers.

https://developers.google.com/gmail/api/reference/rest
Functions take the gmail service resource first and always work on the
authenticated user ('me').
"""

from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import format_datetime, formataddr, getaddresses, parseaddr, parsedate_to_datetime
from typing import Iterable, List
import base64
import datetime
import logging

from googleapiclient.discovery import Resource

from .errors import NotFoundError
from .resources import ResourceBase
from .services import api_errors

logger = logging.getLogger(__name__)

USER = "me"

LABEL_INBOX = "INBOX"
LABEL_UNREAD = "UNREAD"
LABEL_STARRED = "STARRED"
LABEL_TRASH = "TRASH"

MARKS = {
    "read": ([], [LABEL_UNREAD]),
    "unread": ([LABEL_UNREAD], []),
    "starred": ([LABEL_STARRED], []),
    "unstarred": ([], [LABEL_STARRED]),
}

LABEL_LIST_VISIBILITY = ["labelShow", "labelShowIfUnread", "labelHide"]
MESSAGE_LIST_VISIBILITY = ["show", "hide"]


def b64decode(data: str) -> bytes:
    """Gmail hands out base64url without padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _headers(payload: dict) -> dict[str, str]:
    # first occurrence wins, header names are case insensitive
    h = {}
    for header in payload.get("headers", []) or []:
        name = header.get("name", "").lower()
        if name and name not in h:
            h[name] = header.get("value", "")
    return h


def _find_body(part: dict, mime_type: str) -> str:
    """
    Depth first search of the MIME tree for the first part of the given type.
    """
    if part.get("mimeType", "") == mime_type:
        data = (part.get("body") or {}).get("data")
        if data:
            return b64decode(data).decode("utf-8", errors="replace")
    for sub in part.get("parts", []) or []:
        body = _find_body(sub, mime_type)
        if body:
            return body
    return ""


def _parse_date(value: str) -> datetime.datetime|None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("unparseable Date header: %s", value)
        return None


@dataclass
class Label(ResourceBase):
    """
    https://developers.google.com/gmail/api/reference/rest/v1/users.labels#Label
    """
    id: str|None = field(default=None)
    name: str|None = field(default=None)
    type: str|None = field(default=None)
    messageListVisibility: str|None = field(default=None)
    labelListVisibility: str|None = field(default=None)
    messagesTotal: int|None = field(default=None)
    messagesUnread: int|None = field(default=None)
    threadsTotal: int|None = field(default=None)
    threadsUnread: int|None = field(default=None)
    color: dict|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        return f"{self.name}<{self.id}>" if self else "<empty>"

    @property
    def system(self) -> bool:
        return self.type == "system"


@dataclass
class Message(ResourceBase):
    """
    Flattened view of a users.messages resource: the headers we care about
    pulled out and the text and html bodies decoded.
    """
    id: str|None = field(default=None)
    threadId: str|None = field(default=None)
    labelIds: List[str] = field(default_factory=list)
    snippet: str = ""
    historyId: str|None = field(default=None)
    internalDate: str|None = field(default=None)
    sizeEstimate: int|None = field(default=None)
    sender: str = ""
    to: str = ""
    cc: str = ""
    subject: str = ""
    date: datetime.datetime|None = field(default=None)
    body: str = ""
    html_body: str = ""
    reply_to: str = ""
    message_id: str = ""
    references: str = ""

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        return f"{self.subject}<{self.id}>" if self else "<empty>"

    @property
    def read(self) -> bool:
        return LABEL_UNREAD not in self.labelIds

    @property
    def starred(self) -> bool:
        return LABEL_STARRED in self.labelIds

    def recipients(self) -> List[str]:
        return [addr for _, addr in getaddresses([self.to, self.cc]) if addr]

    @classmethod
    def from_api(cls, d: dict|None) -> "Message":
        msg = cls()
        if not d:
            return msg
        msg.update_fields(**{k: v for k, v in d.items() if k != "payload"})
        payload = d.get("payload") or {}
        h = _headers(payload)
        msg.sender = h.get("from", "")
        msg.to = h.get("to", "")
        msg.cc = h.get("cc", "")
        msg.subject = h.get("subject", "")
        msg.date = _parse_date(h.get("date", ""))
        msg.reply_to = h.get("reply-to", "")
        msg.message_id = h.get("message-id", "")
        msg.references = h.get("references", "")
        msg.body = _find_body(payload, "text/plain")
        msg.html_body = _find_body(payload, "text/html")
        return msg


@dataclass
class MessagePage:
    messages: List[Message] = field(default_factory=list)
    next_page_token: str = ""
    result_size_estimate: int = 0

    def __iter__(self):
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)


@dataclass
class Thread(ResourceBase):
    id: str|None = field(default=None)
    snippet: str = ""
    historyId: str|None = field(default=None)
    messages: List[Message] = field(default_factory=list)

    def fixup(self) -> None:
        self.messages = [m if isinstance(m, Message) else Message.from_api(m) for m in self.messages or []]

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        return f"{self.subject}<{self.id}>({len(self.messages)})" if self else "<empty>"

    @property
    def subject(self) -> str:
        return self.messages[0].subject if self.messages else ""


@api_errors("message")
def get_message(service: Resource, message_id: str, format: str = "full") -> Message:
    """
    https://developers.google.com/gmail/api/reference/rest/v1/users.messages/get
    """
    response = service.users().messages().get(userId=USER, id=message_id, format=format).execute()
    return Message.from_api(response)


@api_errors("message")
def list_messages(service: Resource, query: str = "", labels: Iterable[str]|None = None,
                  max_results: int = 20, page_token: str = "",
                  include_spam_trash: bool = False) -> MessagePage:
    """
    https://developers.google.com/gmail/api/reference/rest/v1/users.messages/list
    The list call only returns ids so each message is fetched with its headers.
    One page per call, pass next_page_token back in to continue.
    """
    if max_results <= 0:
        raise ValueError("max_results must be positive")
    args = {"userId": USER, "maxResults": max_results, "includeSpamTrash": include_spam_trash}
    if query:
        args["q"] = query
    if labels:
        args["labelIds"] = list(labels)
    if page_token:
        args["pageToken"] = page_token
    response = service.users().messages().list(**args).execute()
    page = MessagePage(next_page_token=response.get("nextPageToken", ""),
                       result_size_estimate=response.get("resultSizeEstimate", 0))
    for m in response.get("messages", []) or []:
        page.messages.append(get_message(service, m["id"], format="metadata"))
    return page


def search(service: Resource, query: str, max_results: int = 20, page_token: str = "") -> MessagePage:
    """Gmail search syntax, e.g. 'from:alice has:attachment newer_than:7d'."""
    if not query.strip():
        raise ValueError("search query cannot be empty")
    return list_messages(service, query=query, max_results=max_results, page_token=page_token)


def build_message(to: str|List[str], subject: str, body: str, sender: str = "",
                  cc: str|List[str]|None = None, bcc: str|List[str]|None = None,
                  html: str = "", reply_to: str = "") -> EmailMessage:
    def _join(v) -> str:
        return v if isinstance(v, str) else ", ".join(v)

    if not to:
        raise ValueError("message needs at least one recipient")
    msg = EmailMessage()
    msg["To"] = _join(to)
    if sender:
        msg["From"] = sender
    if cc:
        msg["Cc"] = _join(cc)
    if bcc:
        msg["Bcc"] = _join(bcc)
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["Subject"] = subject
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _addresses(*headers: str) -> List[str]:
    return [formataddr((name, addr)) for name, addr in getaddresses([h for h in headers if h]) if addr]


def _prefixed(prefix: str, subject: str) -> str:
    if subject.lower().startswith(prefix.lower()):
        return subject
    return f"{prefix} {subject}".strip()


def build_reply(original: Message, body: str, sender: str = "", reply_all: bool = False) -> EmailMessage:
    """
    Reply to the original's Reply-To or From.  With reply_all the original
    To and Cc recipients are kept, minus the sender's own address.
    In-Reply-To and References carry the conversation for other clients.
    """
    me = parseaddr(sender)[1].lower()
    seen = set()

    def _keep(addrs: List[str]) -> List[str]:
        kept = []
        for a in addrs:
            addr = parseaddr(a)[1].lower()
            if addr in seen or (addr == me and reply_all):
                continue
            seen.add(addr)
            kept.append(a)
        return kept

    to = _keep(_addresses(original.reply_to or original.sender))
    cc = []
    if reply_all:
        to += _keep(_addresses(original.to))
        cc = _keep(_addresses(original.cc))
    if not to:
        to, cc = cc, []
    msg = build_message(to, _prefixed("Re:", original.subject), body, sender=sender, cc=cc)
    if original.message_id:
        msg["In-Reply-To"] = original.message_id
        msg["References"] = " ".join(r for r in (original.references, original.message_id) if r)
    return msg


def build_forward(original: Message, to: str|List[str], body: str = "", sender: str = "") -> EmailMessage:
    """The original's text body quoted below an optional note."""
    quoted = "\n".join([
        "---------- Forwarded message ---------",
        f"From: {original.sender}",
        f"Date: {format_datetime(original.date) if original.date else ''}",
        f"Subject: {original.subject}",
        f"To: {original.to}",
        "",
        original.body or original.snippet,
    ])
    text = f"{body}\n\n{quoted}" if body else quoted
    return build_message(to, _prefixed("Fwd:", original.subject), text, sender=sender)


@api_errors("message")
def send_message(service: Resource, message: EmailMessage, thread_id: str = "") -> Message:
    """
    https://developers.google.com/gmail/api/reference/rest/v1/users.messages/send
    """
    body = {"raw": b64encode(message.as_bytes())}
    if thread_id:
        body["threadId"] = thread_id
    response = service.users().messages().send(userId=USER, body=body).execute()
    logger.info("sent message %s", response.get("id"))
    return Message.from_api(response)


def reply(service: Resource, message_id: str, body: str, sender: str = "",
          reply_all: bool = False) -> Message:
    """Send a reply into the original's thread."""
    original = get_message(service, message_id)
    message = build_reply(original, body, sender=sender, reply_all=reply_all)
    return send_message(service, message, thread_id=original.threadId or "")


def forward(service: Resource, message_id: str, to: str|List[str], body: str = "",
            sender: str = "") -> Message:
    original = get_message(service, message_id)
    return send_message(service, build_forward(original, to, body, sender=sender))


@api_errors("message")
def trash(service: Resource, message_id: str) -> Message:
    return Message.from_api(service.users().messages().trash(userId=USER, id=message_id).execute())


@api_errors("message")
def untrash(service: Resource, message_id: str) -> Message:
    return Message.from_api(service.users().messages().untrash(userId=USER, id=message_id).execute())


@api_errors("message")
def delete(service: Resource, message_id: str) -> None:
    """Permanent, skips the trash."""
    service.users().messages().delete(userId=USER, id=message_id).execute()


@api_errors("message")
def modify(service: Resource, message_id: str, add: Iterable[str]|None = None,
           remove: Iterable[str]|None = None) -> Message:
    """
    https://developers.google.com/gmail/api/reference/rest/v1/users.messages/modify
    """
    add = list(add or [])
    remove = list(remove or [])
    if not add and not remove:
        raise ValueError("nothing to modify, give labels to add or remove")
    body = {"addLabelIds": add, "removeLabelIds": remove}
    response = service.users().messages().modify(userId=USER, id=message_id, body=body).execute()
    return Message.from_api(response)


def archive(service: Resource, message_id: str) -> Message:
    return modify(service, message_id, remove=[LABEL_INBOX])


def mark(service: Resource, message_id: str, how: str) -> Message:
    if how not in MARKS:
        raise ValueError(f"Invalid mark: {how}, expected one of {', '.join(MARKS)}")
    add, remove = MARKS[how]
    return modify(service, message_id, add=add, remove=remove)


@api_errors("label")
def list_labels(service: Resource) -> List[Label]:
    response = service.users().labels().list(userId=USER).execute()
    return [Label.from_api(label) for label in response.get("labels", []) or []]


@api_errors("label")
def create_label(service: Resource, name: str, label_list_visibility: str = "labelShow",
                 message_list_visibility: str = "show") -> Label:
    if not name.strip():
        raise ValueError("label name cannot be empty")
    if label_list_visibility not in LABEL_LIST_VISIBILITY:
        raise ValueError(f"Invalid labelListVisibility: {label_list_visibility}")
    if message_list_visibility not in MESSAGE_LIST_VISIBILITY:
        raise ValueError(f"Invalid messageListVisibility: {message_list_visibility}")
    label = Label(name=name, labelListVisibility=label_list_visibility,
                  messageListVisibility=message_list_visibility)
    response = service.users().labels().create(userId=USER, body=label.trim()).execute()
    label.update_fields(**response)
    return label


@api_errors("label")
def delete_label(service: Resource, label_id: str) -> None:
    service.users().labels().delete(userId=USER, id=label_id).execute()


def find_label(service: Resource, name_or_id: str) -> Label:
    """
    Look a label up by id, or by name ignoring case.
    """
    labels = list_labels(service)
    for label in labels:
        if label.id == name_or_id:
            return label
    for label in labels:
        if (label.name or "").lower() == name_or_id.lower():
            return label
    raise NotFoundError(f"label not found: {name_or_id}", 404)


def resolve_labels(service: Resource, names: Iterable[str]) -> List[str]:
    """
    Label names or ids to ids, with a single labels.list call.
    System labels (INBOX, UNREAD, ...) match by id without a lookup.
    """
    names = [n for n in names or [] if n]
    if not names:
        return []
    ids = []
    labels = None
    for n in names:
        if n.upper() in (LABEL_INBOX, LABEL_UNREAD, LABEL_STARRED, LABEL_TRASH, "SPAM", "IMPORTANT", "SENT", "DRAFT"):
            ids.append(n.upper())
            continue
        if labels is None:
            labels = list_labels(service)
        match = [l for l in labels if l.id == n] or [l for l in labels if (l.name or "").lower() == n.lower()]
        if not match:
            raise NotFoundError(f"label not found: {n}", 404)
        ids.append(match[0].id)
    return ids


@api_errors("thread")
def list_threads(service: Resource, query: str = "", labels: Iterable[str]|None = None,
                 max_results: int = 20) -> List[Thread]:
    """
    Thread ids and snippets only, use get_thread for the messages.
    """
    args = {"userId": USER, "maxResults": max_results}
    if query:
        args["q"] = query
    if labels:
        args["labelIds"] = list(labels)
    response = service.users().threads().list(**args).execute()
    return [Thread.from_api(t) for t in response.get("threads", []) or []]


@api_errors("thread")
def get_thread(service: Resource, thread_id: str) -> Thread:
    response = service.users().threads().get(userId=USER, id=thread_id, format="full").execute()
    return Thread.from_api(response)
