import datetime
from zoneinfo import ZoneInfo

import pytest

from gwscli import calendar as gcal
from gwscli.errors import BadRequestError, NotFoundError, RateLimitedError, TemporaryError

from conftest import FakeService, http_error

UTC = datetime.timezone.utc

EVENT = {
    "kind": "calendar#event",
    "id": "ev1",
    "status": "confirmed",
    "summary": "Standup",
    "location": "Room 1",
    "created": "2024-04-01T09:00:00.000Z",
    "start": {"dateTime": "2024-05-01T09:00:00+02:00", "timeZone": "Europe/Berlin"},
    "end": {"dateTime": "2024-05-01T09:15:00+02:00", "timeZone": "Europe/Berlin"},
    "attendees": [{"email": "a@example.com", "responseStatus": "accepted"}],
    "conferenceData": {"entryPoints": []},
}

ALL_DAY = {
    "id": "ev2",
    "summary": "Holiday",
    "start": {"date": "2024-05-01"},
    "end": {"date": "2024-05-02"},
}


def test_event_from_api():
    e = gcal.Event.from_api(EVENT)
    assert(e)
    assert(e.id == "ev1")
    assert(isinstance(e.start, gcal.EventDateTime))
    assert(e.start.dateTime == datetime.datetime(2024, 5, 1, 7, 0, tzinfo=UTC))
    assert(e.start.timeZone == ZoneInfo("Europe/Berlin"))
    assert(e.created == datetime.datetime(2024, 4, 1, 9, 0, tzinfo=UTC))
    assert(not e.all_day)
    # unmodelled fields are dropped
    assert(not hasattr(e, "conferenceData"))


def test_all_day_event():
    e = gcal.Event.from_api(ALL_DAY)
    assert(e.all_day)
    assert(e.duration() == (datetime.date(2024, 5, 1), datetime.date(2024, 5, 2)))
    assert(e.trim()["start"] == {"date": "2024-05-01"})


def test_event_trim():
    e = gcal.Event(summary="Lunch")
    e.set_duration(datetime.datetime(2024, 5, 1, 12, 0, tzinfo=UTC))
    b = e.trim()
    assert(b == {"summary": "Lunch",
                 "start": {"dateTime": "2024-05-01T12:00:00+00:00"},
                 "end": {"dateTime": "2024-05-01T13:00:00+00:00"}})


def test_set_duration():
    e = gcal.Event()
    e.set_duration("2024-05-01")
    assert(e.all_day)
    assert(e.end.date == datetime.date(2024, 5, 2))
    e.set_duration("2024-05-01", datetime.datetime(2024, 5, 3, 10, 0, tzinfo=UTC))
    assert(e.all_day)
    assert(e.end.date == datetime.date(2024, 5, 3))
    e.set_duration("2024-05-01T10:00:00", "2024-05-01T11:30:00", tz="Europe/Berlin")
    assert(e.start.dateTime.tzinfo == ZoneInfo("Europe/Berlin"))
    assert(e.start.to_base() == {"dateTime": "2024-05-01T10:00:00+02:00", "timeZone": "Europe/Berlin"})
    with pytest.raises(ValueError):
        e.set_duration("2024-05-02", "2024-05-01")


def test_list_events_paginates():
    service = FakeService({"events.list": [
        {"items": [EVENT], "nextPageToken": "p2"},
        {"items": [ALL_DAY]},
    ]})
    events = gcal.list_events(service, "primary",
                              time_min=datetime.datetime(2024, 5, 1, tzinfo=UTC),
                              time_max=datetime.datetime(2024, 5, 8, tzinfo=UTC))
    assert([e.id for e in events] == ["ev1", "ev2"])
    calls = service.called("events.list")
    assert(len(calls) == 2)
    assert(calls[0]["singleEvents"] is True)
    assert(calls[0]["orderBy"] == "startTime")
    assert(calls[0]["timeMin"] == "2024-05-01T00:00:00+00:00")
    assert(calls[0]["pageToken"] is None)
    assert(calls[1]["pageToken"] == "p2")


def test_list_events_max_results():
    service = FakeService({"events.list": {"items": [EVENT, ALL_DAY], "nextPageToken": "p2"}})
    events = gcal.list_events(service, max_results=1)
    assert(len(events) == 1)
    assert(len(service.calls) == 1)


def test_list_events_bad_range():
    with pytest.raises(ValueError):
        gcal.list_events(FakeService(), time_min="2024-05-02T00:00:00Z", time_max="2024-05-01T00:00:00Z")


def test_insert_event_updates_in_place():
    service = FakeService({"events.insert": lambda **kw: dict(kw["body"], id="new1", htmlLink="https://x")})
    e = gcal.Event(summary="Review")
    e.set_duration("2024-05-01T10:00:00+00:00")
    result = gcal.insert_event(service, "primary", e, send_updates="none")
    assert(result is e)
    assert(e.id == "new1")
    call = service.called("events.insert")[0]
    assert(call["calendarId"] == "primary")
    assert(call["sendUpdates"] == "none")
    assert("id" not in call["body"])
    with pytest.raises(ValueError):
        gcal.insert_event(service, "primary", e, send_updates="everyone")


def test_update_event_patches():
    service = FakeService({"events.patch": lambda **kw: dict(EVENT, summary=kw["body"]["summary"])})
    e = gcal.Event.from_api(EVENT)
    e.summary = "Standup (moved)"
    gcal.update_event(service, "primary", e)
    call = service.called("events.patch")[0]
    assert(call["eventId"] == "ev1")
    assert(e.summary == "Standup (moved)")
    with pytest.raises(ValueError):
        gcal.update_event(service, "primary", gcal.Event(summary="no id"))


def test_get_and_delete_event():
    service = FakeService({"events.get": EVENT, "events.delete": ""})
    assert(gcal.get_event(service, "primary", "ev1").summary == "Standup")
    gcal.delete_event(service, "primary", "ev1")
    assert(service.called("events.delete")[0] == {"calendarId": "primary", "eventId": "ev1", "sendUpdates": "all"})


def test_quick_add():
    service = FakeService({"events.quickAdd": dict(EVENT, summary="Lunch with Sam")})
    assert(gcal.quick_add(service, "primary", "Lunch with Sam tomorrow 1pm").summary == "Lunch with Sam")
    with pytest.raises(ValueError):
        gcal.quick_add(service, "primary", "  ")


def test_list_calendars():
    service = FakeService({"calendarList.list": {"items": [
        {"id": "primary@example.com", "summary": "Me", "primary": True, "accessRole": "owner"},
        {"id": "team@example.com", "summary": "Team", "summaryOverride": "The Team", "accessRole": "reader"},
    ]}})
    cals = gcal.list_calendars(service, min_access_role="reader")
    assert([c.title for c in cals] == ["Me", "The Team"])
    assert(cals[0].primary)
    assert(service.called("calendarList.list")[0]["minAccessRole"] == "reader")
    with pytest.raises(ValueError):
        gcal.list_calendars(service, min_access_role="boss")


def test_acl():
    service = FakeService({
        "acl.list": {"items": [{"id": "user:a@example.com", "role": "reader",
                                "scope": {"type": "user", "value": "a@example.com"}}]},
        "acl.insert": lambda **kw: dict(kw["body"], id="user:b@example.com"),
        "acl.delete": "",
    })
    rules = gcal.list_acl(service, "primary")
    assert(rules[0].scope_value == "a@example.com")
    rule = gcal.insert_acl(service, "primary", gcal.AclRule.new("writer", "user", "b@example.com"))
    assert(rule.id == "user:b@example.com")
    assert(service.called("acl.insert")[0]["body"] == {"scope": {"type": "user", "value": "b@example.com"},
                                                       "role": "writer"})
    gcal.delete_acl(service, "primary", rule.id)
    assert(service.called("acl.delete")[0]["ruleId"] == "user:b@example.com")
    with pytest.raises(ValueError):
        gcal.AclRule.new("admin", "user", "x@example.com")
    with pytest.raises(ValueError):
        gcal.AclRule.new("reader", "user")
    assert(gcal.AclRule.new("freeBusyReader", "default").scope == {"type": "default"})


def test_freebusy():
    service = FakeService({"freebusy.query": {
        "timeMin": "2024-05-01T00:00:00.000Z",
        "timeMax": "2024-05-02T00:00:00.000Z",
        "calendars": {
            "primary": {"busy": [{"start": "2024-05-01T09:00:00Z", "end": "2024-05-01T10:00:00Z"}]},
            "nobody@example.com": {"busy": [], "errors": [{"domain": "global", "reason": "notFound"}]},
        },
    }})
    fb = gcal.query_freebusy(service, ["primary", "nobody@example.com"],
                             "2024-05-01T00:00:00Z", "2024-05-02T00:00:00Z")
    body = service.called("freebusy.query")[0]["body"]
    assert(body["items"] == [{"id": "primary"}, {"id": "nobody@example.com"}])
    assert(body["timeMin"] == "2024-05-01T00:00:00+00:00")
    assert(fb.calendars["primary"][0].start == datetime.datetime(2024, 5, 1, 9, 0, tzinfo=UTC))
    assert(fb.errors["nobody@example.com"][0]["reason"] == "notFound")
    with pytest.raises(ValueError):
        gcal.query_freebusy(service, [], "2024-05-01T00:00:00Z", "2024-05-02T00:00:00Z")


@pytest.mark.parametrize("status,error", [(404, NotFoundError), (400, BadRequestError),
                                          (429, RateLimitedError), (503, TemporaryError)])
def test_http_errors_mapped(status, error):
    service = FakeService({"events.get": http_error(status)})
    with pytest.raises(error) as e:
        gcal.get_event(service, "primary", "ev1")
    assert(e.value.status == status)


def test_list_instances():
    service = FakeService({"events.instances": [
        {"items": [dict(EVENT, id="ev1_20240501", recurringEventId="ev1")], "nextPageToken": "p2"},
        {"items": [dict(EVENT, id="ev1_20240508", recurringEventId="ev1")]},
    ]})
    events = gcal.list_instances(service, "primary", "ev1",
                                 time_min=datetime.datetime(2024, 5, 1, tzinfo=UTC))
    assert([e.id for e in events] == ["ev1_20240501", "ev1_20240508"])
    assert(events[0].recurringEventId == "ev1")
    call = service.called("events.instances")[0]
    assert(call["eventId"] == "ev1")
    assert(call["timeMin"] == "2024-05-01T00:00:00+00:00")
    assert("timeMax" not in call)
    with pytest.raises(ValueError):
        gcal.list_instances(service, "primary", "ev1", time_min="2024-05-02T00:00:00Z",
                            time_max="2024-05-01T00:00:00Z")


INVITE = dict(EVENT, attendees=[
    {"email": "alice@example.com", "organizer": True, "responseStatus": "accepted"},
    {"email": "me@example.com", "self": True, "responseStatus": "needsAction"},
])


def test_rsvp_patches_own_attendee_entry():
    service = FakeService({"events.get": INVITE,
                           "events.patch": lambda **kw: dict(INVITE, attendees=kw["body"]["attendees"])})
    event = gcal.rsvp(service, "primary", "ev1", "tentative")
    assert(event.my_response == "tentative")
    attendees = service.called("events.patch")[0]["body"]["attendees"]
    assert(attendees[0]["responseStatus"] == "accepted")
    assert(attendees[1]["responseStatus"] == "tentative")
    with pytest.raises(ValueError):
        gcal.rsvp(service, "primary", "ev1", "maybe")


def test_rsvp_not_invited():
    service = FakeService({"events.get": EVENT})
    with pytest.raises(ValueError):
        gcal.rsvp(service, "primary", "ev1", "accepted")
    assert(service.called("events.patch") == [])


def test_trim_keeps_false_flags():
    c = gcal.CalendarListEntry(id="team@group.calendar.google.com", hidden=False, selected=True)
    b = c.trim()
    assert(b == {"id": "team@group.calendar.google.com", "hidden": False, "selected": True})
