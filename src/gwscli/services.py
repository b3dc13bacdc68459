"""
Building Google API client resources for an account.

Each command builds the resources it needs from a TokenSource.  The token is
pulled (and refreshed if needed) right before building, and the resulting
google-auth Credentials carry only the access token so the API client never
tries to refresh on its own: refresh is the TokenManager's job.
"""

from functools import wraps
import logging

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build, Resource
from googleapiclient.errors import HttpError

from .errors import ApiError, BadRequestError, NotFoundError, RateLimitedError, TemporaryError
from .tokens import TokenSource

logger = logging.getLogger(__name__)

GMAIL = ("gmail", "v1")
CALENDAR = ("calendar", "v3")


class ServiceFactory():
    """
    Builds and caches API resources for the lifetime of one command.
    """

    def __init__(self, token_source: TokenSource, developer_key: str|None = None) -> None:
        self.token_source = token_source
        self.developer_key = developer_key
        self.__services: dict[str, Resource] = {}

    def credentials(self) -> Credentials:
        token = self.token_source.token()
        return Credentials(token=token.value, expiry=token.expiry.replace(tzinfo=None) if token.expiry else None)

    def get_service(self, name: str, version: str) -> Resource:
        id = f"{name}:{version}"
        s = self.__services.get(id, None)
        if s is None:
            logger.debug("building %s service for %s", id, self.token_source.alias)
            s = build(name, version, credentials=self.credentials(),
                      developerKey=self.developer_key, cache_discovery=False)
            self.__services[id] = s
        return s

    def gmail(self) -> Resource:
        return self.get_service(*GMAIL)

    def calendar(self) -> Resource:
        return self.get_service(*CALENDAR)


def map_http_error(e: HttpError, resource: str = "resource") -> ApiError:
    """Translate the API client's HttpError into our error types."""
    status = int(getattr(e.resp, "status", 0) or 0)
    reason = getattr(e, "reason", "") or str(e)
    msg = f"{resource}: {reason}"
    if status == 404:
        return NotFoundError(f"{resource} not found: {reason}", status)
    if status == 400:
        return BadRequestError(msg, status)
    if status == 429:
        return RateLimitedError(msg, status)
    if status in (401, 403):
        return ApiError(msg, status, hint="the account may be missing a required scope, "
                                          "run 'gws auth login --scopes ...' to grant it")
    if status >= 500:
        return TemporaryError(msg, status)
    return ApiError(f"{resource}: API error (status {status}): {reason}", status)


def api_errors(resource: str):
    """
    Decorator for wrapper functions: HttpError escapes as an ApiError subclass
    named after the resource being worked on.
    """
    def _inner_decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except HttpError as e:
                raise map_http_error(e, resource) from e
        return wrapped
    return _inner_decorator
