from dataclasses import asdict,fields,is_dataclass
from typing import List
import datetime

# values where falsy still means something to Gmail and Calendar
_KEEP_FALSY = (int, bool, float)


class ResourceBase():
    """
    Mixin for the Gmail and Calendar dataclasses (Message, Event, AclRule...).
    Subclasses are dataclasses whose field names match the API's JSON keys.
    """
    def to_base(self) -> dict:
        """Request body for the API, after fixup()."""
        self.fixup()
        return asdict(self)

    def trim(self) -> dict:
        """to_base() without unset top level fields, for patch and insert bodies."""
        return {k: v for k, v in self.to_base().items()
                if v is not None and (isinstance(v, _KEEP_FALSY) or v)}

    def fixup(self) -> None:
        """Normalise fields after they change, e.g. nested dicts to dataclasses."""

    def update_fields(self, **kwargs) -> List[str]:
        """
        Set the given fields, skipping None and keys the dataclass doesn't
        have.  Returns the names that were set.
        """
        if not is_dataclass(self):
            return []
        names = {f.name for f in fields(self)}
        updated = [k for k, v in kwargs.items() if v is not None and k in names]
        for k in updated:
            setattr(self, k, kwargs[k])
        self.fixup()
        return updated

    @classmethod
    def from_api(cls, d: dict|None):
        obj = cls()
        if d:
            obj.update_fields(**d)
        return obj


def parse_datetime(value) -> datetime.datetime|None:
    """
    RFC3339 from the APIs to a datetime, seconds precision.  A trailing 'Z'
    is rewritten to +00:00.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    s = str(value)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(s).replace(microsecond=0)


def to_rfc3339(value: datetime.datetime|str, tz: datetime.tzinfo|None = None) -> str:
    """
    timeMin/timeMax and friends MUST have an offset so apply one if missing.
    """
    dt = parse_datetime(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()
    return dt.isoformat()
