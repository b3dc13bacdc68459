"""
Google Calendar v3 wrappers.

https://developers.google.com/calendar/api/v3/reference
Dataclasses mirror the API resources (camelCase field names so the raw dicts
map straight across) and the module functions take the calendar service
resource as the first argument.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Tuple
import datetime
from zoneinfo import ZoneInfo

from googleapiclient.discovery import Resource

from .resources import ResourceBase, parse_datetime, to_rfc3339
from .services import api_errors

SEND_UPDATES = ["all", "externalOnly", "none"]
ACL_ROLES = ["none", "freeBusyReader", "reader", "writer", "owner"]
ACL_SCOPE_TYPES = ["default", "user", "group", "domain"]
MIN_ACCESS_ROLES = ["freeBusyReader", "owner", "reader", "writer"]
RESPONSE_STATUSES = ["needsAction", "declined", "tentative", "accepted"]


def _check_send_updates(value: str, op: str) -> None:
    if value and value not in SEND_UPDATES:
        raise ValueError(f"Invalid {op} sendUpdates value: {value}")


@dataclass
class CalendarListEntry(ResourceBase):
    """
    https://developers.google.com/calendar/api/v3/reference/calendarList#resource-representations
    """
    kind: str|None = field(default=None)
    etag: str|None = field(default=None)
    id: str|None = field(default=None)
    summary: str|None = field(default=None)
    description: str|None = field(default=None)
    timeZone: str|None = field(default=None)
    summaryOverride: str|None = field(default=None)
    accessRole: str|None = field(default=None)
    primary: bool|None = field(default=None)
    hidden: bool|None = field(default=None)
    selected: bool|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        if self:
            return f"{self.id}:{self.title}"
        return "<empty>"

    @property
    def title(self) -> str:
        return self.summaryOverride or self.summary or ""


@dataclass
class EventDateTime(ResourceBase):
    """
    Event start/end.  The API uses distinct fields to signal all-day ('date')
    vs specific time ('dateTime') so carry both and work out at runtime what
    is needed.  dateTime wins if both are somehow set.
    """
    date: datetime.date|str|None = field(default=None)
    dateTime: datetime.datetime|str|None = field(default=None)
    timeZone: ZoneInfo|str|None = field(default=None)

    def __post_init__(self) -> None:
        self.fixup()

    def __bool__(self) -> bool:
        return bool(self.date) or bool(self.dateTime)

    def __str__(self) -> str:
        if self.dateTime:
            return self.dateTime.isoformat()
        if self.date:
            return self.date.isoformat()
        return "<empty>"

    def fixup(self) -> None:
        if self.date is not None and not isinstance(self.date, datetime.date):
            self.date = datetime.date.fromisoformat(str(self.date))
        if self.dateTime is not None and not isinstance(self.dateTime, datetime.datetime):
            self.dateTime = parse_datetime(self.dateTime)
        if self.timeZone is not None and not isinstance(self.timeZone, ZoneInfo):
            self.timeZone = ZoneInfo(str(self.timeZone))
        if self.dateTime and self.date:
            self.date = None

    @property
    def all_day(self) -> bool:
        return self.dateTime is None and self.date is not None

    def value(self) -> datetime.date|datetime.datetime|None:
        return self.dateTime if self.dateTime else self.date

    def to_base(self) -> dict|None:
        """
        The API wants the 'T' separator, and exactly one of date/dateTime.
        """
        self.fixup()
        base = {'date': self.date.isoformat() if self.date else None,
                'dateTime': self.dateTime.isoformat() if self.dateTime else None,
                'timeZone': str(self.timeZone) if self.timeZone else None}
        base = {k: v for k, v in base.items() if v is not None}
        return base or None

    @classmethod
    def of(cls, value: str|datetime.date|datetime.datetime,
           tz: str|ZoneInfo|None = None) -> "EventDateTime":
        """
        Build from a date (all-day) or a datetime.  Strings are parsed, a bare
        YYYY-MM-DD is taken as a date.
        """
        v = value
        if isinstance(v, str):
            v = v.strip()
            v = datetime.date.fromisoformat(v) if len(v) == 10 else parse_datetime(v)
        t = ZoneInfo(str(tz)) if tz is not None and not isinstance(tz, ZoneInfo) else tz
        if isinstance(v, datetime.datetime):
            if v.tzinfo is None and t is not None:
                v = v.replace(tzinfo=t)
            return cls(dateTime=v, timeZone=t)
        return cls(date=v, timeZone=t)


@dataclass
class Event(ResourceBase):
    """
    https://developers.google.com/calendar/api/v3/reference/events#resource-representations
    Only the fields this tool shows or edits are modelled.
    """
    kind: str|None = field(default=None)
    etag: str|None = field(default=None)
    id: str|None = field(default=None)
    status: str|None = field(default=None)
    htmlLink: str|None = field(default=None)
    created: datetime.datetime|str|None = field(default=None)
    updated: datetime.datetime|str|None = field(default=None)
    summary: str|None = field(default=None)
    description: str|None = field(default=None)
    location: str|None = field(default=None)
    creator: dict|None = field(default=None)
    organizer: dict|None = field(default=None)
    start: EventDateTime|dict|None = field(default=None)
    end: EventDateTime|dict|None = field(default=None)
    recurrence: List[str]|None = field(default=None)
    recurringEventId: str|None = field(default=None)
    transparency: str|None = field(default=None)
    visibility: str|None = field(default=None)
    attendees: List[dict]|None = field(default=None)
    hangoutLink: str|None = field(default=None)
    reminders: dict|None = field(default=None)
    eventType: str|None = field(default=None)

    def __post_init__(self) -> None:
        self.fixup()

    def fixup(self) -> None:
        if self.created is not None and not isinstance(self.created, datetime.datetime):
            self.created = parse_datetime(self.created)
        if self.updated is not None and not isinstance(self.updated, datetime.datetime):
            self.updated = parse_datetime(self.updated)
        if self.start is not None and not isinstance(self.start, EventDateTime):
            self.start = EventDateTime(**dict(self.start))
        if self.end is not None and not isinstance(self.end, EventDateTime):
            self.end = EventDateTime(**dict(self.end))

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        ret = "<empty>"
        if self:
            ret = f"{self.summary}<{self.id}>"
            if self.start:
                ret += f"({self.start}-->{self.end})"
        return ret

    @property
    def all_day(self) -> bool:
        return bool(self.start) and self.start.all_day

    def duration(self) -> Tuple[datetime.date|datetime.datetime|None, datetime.date|datetime.datetime|None]:
        return (self.start.value() if self.start else None, self.end.value() if self.end else None)

    def set_duration(self, start: str|datetime.date|datetime.datetime,
                     end: str|datetime.date|datetime.datetime|None = None,
                     tz: str|ZoneInfo|None = None) -> None:
        """
        Set start and end.  A date means an all-day event; mixing a date with a
        datetime collapses both to dates.  With no end, a timed event lasts an
        hour and an all-day event one day.
        """
        s = EventDateTime.of(start, tz)
        if end is None:
            v = s.value()
            e = EventDateTime.of(v + (datetime.timedelta(days=1) if s.all_day else datetime.timedelta(hours=1)), tz)
        else:
            e = EventDateTime.of(end, tz)
        if s.all_day != e.all_day:
            s = EventDateTime(date=s.value() if s.all_day else s.dateTime.date(), timeZone=s.timeZone)
            e = EventDateTime(date=e.value() if e.all_day else e.dateTime.date(), timeZone=e.timeZone)
        if e.value() < s.value():
            raise ValueError("event end must not be before its start")
        self.start = s
        self.end = e

    @property
    def my_response(self) -> str|None:
        """Our own responseStatus when we are on the attendee list."""
        for a in self.attendees or []:
            if a.get("self"):
                return a.get("responseStatus")
        return None

    def to_base(self) -> dict:
        self.fixup()
        b = asdict(self)
        b['start'] = self.start.to_base() if self.start else None
        b['end'] = self.end.to_base() if self.end else None
        b['created'] = self.created.isoformat() if self.created else None
        b['updated'] = self.updated.isoformat() if self.updated else None
        return b


@dataclass
class AclRule(ResourceBase):
    """
    https://developers.google.com/calendar/api/v3/reference/acl#resource-representations
    scope is {'type': ..., 'value': ...}
    """
    kind: str|None = field(default=None)
    etag: str|None = field(default=None)
    id: str|None = field(default=None)
    scope: dict|None = field(default=None)
    role: str|None = field(default=None)

    def __bool__(self) -> bool:
        return bool(self.id)

    def __str__(self) -> str:
        return f"{self.id}:{self.role}" if self else "<empty>"

    @property
    def scope_type(self) -> str:
        return (self.scope or {}).get("type", "")

    @property
    def scope_value(self) -> str:
        return (self.scope or {}).get("value", "")

    @classmethod
    def new(cls, role: str, scope_type: str, scope_value: str = "") -> "AclRule":
        if role not in ACL_ROLES:
            raise ValueError(f"Invalid ACL role: {role}")
        if scope_type not in ACL_SCOPE_TYPES:
            raise ValueError(f"Invalid ACL scope type: {scope_type}")
        if scope_type != "default" and not scope_value:
            raise ValueError(f"ACL scope type {scope_type} needs a value")
        scope = {"type": scope_type}
        if scope_value:
            scope["value"] = scope_value
        return cls(role=role, scope=scope)


@dataclass
class BusyPeriod:
    start: datetime.datetime
    end: datetime.datetime


@dataclass
class FreeBusyResponse:
    time_min: datetime.datetime|None = None
    time_max: datetime.datetime|None = None
    calendars: dict[str, List[BusyPeriod]] = field(default_factory=dict)
    errors: dict[str, List[dict]] = field(default_factory=dict)


@api_errors("calendar")
def list_calendars(service: Resource, min_access_role: str = "",
                   show_hidden: bool = False) -> List[CalendarListEntry]:
    """
    https://developers.google.com/calendar/api/v3/reference/calendarList/list
    Start here to find calendar IDs.
    """
    args = {"showHidden": show_hidden}
    if min_access_role:
        if min_access_role not in MIN_ACCESS_ROLES:
            raise ValueError(f"Invalid calendarList minAccessRole: {min_access_role}")
        args["minAccessRole"] = min_access_role
    method = service.calendarList().list
    clist = []
    page_token = None
    while True:
        response = method(pageToken=page_token, **args).execute()
        for entry in response.get('items', []):
            clist.append(CalendarListEntry.from_api(entry))
        page_token = response.get('nextPageToken', None)
        if not page_token:
            break
    return clist


def _range_args(time_min, time_max, tz: datetime.tzinfo|None) -> dict:
    if time_min is not None and time_max is not None and parse_datetime(time_max) <= parse_datetime(time_min):
        raise ValueError("time range end must be after its start")
    args = {}
    if time_min is not None:
        args["timeMin"] = to_rfc3339(time_min, tz)
    if time_max is not None:
        args["timeMax"] = to_rfc3339(time_max, tz)
    return args


def _collect_events(method, args: dict, max_results: int) -> List[Event]:
    events = []
    page_token = None
    while True:
        response = method(pageToken=page_token, **args).execute()
        for e in response.get('items', []):
            events.append(Event.from_api(e))
            if max_results and len(events) >= max_results:
                return events
        page_token = response.get('nextPageToken', None)
        if not page_token:
            break
    return events


@api_errors("event")
def list_events(service: Resource, calendar_id: str = "primary",
                time_min: datetime.datetime|str|None = None,
                time_max: datetime.datetime|str|None = None,
                query: str = "", max_results: int = 0,
                tz: datetime.tzinfo|None = None) -> List[Event]:
    """
    https://developers.google.com/calendar/api/v3/reference/events/list
    Recurring events are expanded and the result is ordered by start time.
    """
    args = {"calendarId": calendar_id, "singleEvents": True, "orderBy": "startTime"}
    args.update(_range_args(time_min, time_max, tz))
    if query:
        args["q"] = query
    return _collect_events(service.events().list, args, max_results)


@api_errors("event")
def list_instances(service: Resource, calendar_id: str, event_id: str,
                   time_min: datetime.datetime|str|None = None,
                   time_max: datetime.datetime|str|None = None,
                   max_results: int = 0,
                   tz: datetime.tzinfo|None = None) -> List[Event]:
    """
    https://developers.google.com/calendar/api/v3/reference/events/instances
    Occurrences of one recurring event.
    """
    args = {"calendarId": calendar_id, "eventId": event_id}
    args.update(_range_args(time_min, time_max, tz))
    return _collect_events(service.events().instances, args, max_results)


@api_errors("event")
def get_event(service: Resource, calendar_id: str, event_id: str) -> Event:
    response = service.events().get(calendarId=calendar_id, eventId=event_id).execute()
    return Event.from_api(response)


@api_errors("event")
def insert_event(service: Resource, calendar_id: str, event: Event|dict,
                 send_updates: str = "") -> Event:
    """
    https://developers.google.com/calendar/api/v3/reference/events/insert
    If an Event was passed in it is filled out from the response.
    """
    _check_send_updates(send_updates, "events.insert")
    request = {"calendarId": calendar_id,
               "body": event.trim() if isinstance(event, Event) else event}
    if send_updates:
        request['sendUpdates'] = send_updates
    response = service.events().insert(**request).execute()
    if isinstance(event, Event):
        event.update_fields(**response)
        return event
    return Event.from_api(response)


@api_errors("event")
def update_event(service: Resource, calendar_id: str, event: Event,
                 send_updates: str = "") -> Event:
    """
    https://developers.google.com/calendar/api/v3/reference/events/patch
    Only the filled-in fields are sent.
    """
    if not event.id:
        raise ValueError("events.patch needs an event with an id")
    _check_send_updates(send_updates, "events.patch")
    request = {"calendarId": calendar_id, "eventId": event.id, "body": event.trim()}
    if send_updates:
        request['sendUpdates'] = send_updates
    response = service.events().patch(**request).execute()
    event.update_fields(**response)
    return event


@api_errors("event")
def rsvp(service: Resource, calendar_id: str, event_id: str, status: str,
         send_updates: str = "") -> Event:
    """
    Set the responseStatus of our own entry in the attendee list, the one
    the API flags with self.  The whole list goes back in the patch.
    """
    if status not in RESPONSE_STATUSES:
        raise ValueError(f"Invalid attendee responseStatus: {status}")
    _check_send_updates(send_updates, "events.patch")
    event = get_event(service, calendar_id, event_id)
    attendees = [dict(a) for a in event.attendees or []]
    me = [a for a in attendees if a.get("self")]
    if not me:
        raise ValueError(f"not an attendee of event {event_id}")
    me[0]["responseStatus"] = status
    request = {"calendarId": calendar_id, "eventId": event_id, "body": {"attendees": attendees}}
    if send_updates:
        request['sendUpdates'] = send_updates
    return Event.from_api(service.events().patch(**request).execute())


@api_errors("event")
def delete_event(service: Resource, calendar_id: str, event_id: str,
                 send_updates: str = "all") -> None:
    _check_send_updates(send_updates, "events.delete")
    service.events().delete(calendarId=calendar_id, eventId=event_id,
                            sendUpdates=send_updates).execute()


@api_errors("event")
def quick_add(service: Resource, calendar_id: str, text: str) -> Event:
    """
    https://developers.google.com/calendar/api/v3/reference/events/quickAdd
    Let Google parse something like 'Lunch with Sam tomorrow 1pm'.
    """
    if not text.strip():
        raise ValueError("quick add text cannot be empty")
    response = service.events().quickAdd(calendarId=calendar_id, text=text).execute()
    return Event.from_api(response)


@api_errors("acl")
def list_acl(service: Resource, calendar_id: str) -> List[AclRule]:
    method = service.acl().list
    rules = []
    page_token = None
    while True:
        response = method(calendarId=calendar_id, pageToken=page_token).execute()
        for r in response.get('items', []):
            rules.append(AclRule.from_api(r))
        page_token = response.get('nextPageToken', None)
        if not page_token:
            break
    return rules


@api_errors("acl")
def insert_acl(service: Resource, calendar_id: str, rule: AclRule,
               send_notifications: bool = True) -> AclRule:
    response = service.acl().insert(calendarId=calendar_id, body=rule.trim(),
                                    sendNotifications=send_notifications).execute()
    rule.update_fields(**response)
    return rule


@api_errors("acl")
def delete_acl(service: Resource, calendar_id: str, rule_id: str) -> None:
    service.acl().delete(calendarId=calendar_id, ruleId=rule_id).execute()


@api_errors("freebusy")
def query_freebusy(service: Resource, calendar_ids: List[str],
                   time_min: datetime.datetime|str, time_max: datetime.datetime|str,
                   tz: datetime.tzinfo|None = None) -> FreeBusyResponse:
    """
    https://developers.google.com/calendar/api/v3/reference/freebusy/query
    """
    if not calendar_ids:
        raise ValueError("freebusy needs at least one calendar")
    tmin = to_rfc3339(time_min, tz)
    tmax = to_rfc3339(time_max, tz)
    if parse_datetime(tmax) <= parse_datetime(tmin):
        raise ValueError("time range end must be after its start")
    body = {"timeMin": tmin, "timeMax": tmax, "items": [{"id": c} for c in calendar_ids]}
    response = service.freebusy().query(body=body).execute()
    fb = FreeBusyResponse(time_min=parse_datetime(response.get("timeMin", tmin)),
                          time_max=parse_datetime(response.get("timeMax", tmax)))
    for cid, info in (response.get("calendars") or {}).items():
        fb.calendars[cid] = [BusyPeriod(parse_datetime(b["start"]), parse_datetime(b["end"]))
                             for b in info.get("busy", [])]
        if info.get("errors"):
            fb.errors[cid] = info["errors"]
    return fb
