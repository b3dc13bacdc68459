"""
Exception hierarchy for gwscli.

Everything raised on purpose derives from GwsError so the command line layer
can catch one type and print a message plus a hint on what to do next,
rather than a raw traceback from google-auth or the API client.
"""

class GwsError(Exception):
    """
    Base for all gwscli errors.
    hint is a short actionable suggestion shown to the user under the message.
    """
    hint: str = ""

    def __init__(self, message: str = "", hint: str|None = None) -> None:
        super().__init__(message or self.__class__.__doc__.strip().splitlines()[0])
        if hint is not None:
            self.hint = hint

    @property
    def message(self) -> str:
        return str(self)


class AccountNotFoundError(GwsError):
    """Account not found"""
    hint = "run 'gws account list' to see configured accounts"

    def __init__(self, alias: str = "", hint: str|None = None) -> None:
        self.alias = alias
        super().__init__(f"account not found: {alias}" if alias else "", hint)


class DuplicateAliasError(GwsError):
    """Account alias already exists"""
    hint = "pick a different alias or remove the existing account first"

    def __init__(self, alias: str = "", hint: str|None = None) -> None:
        self.alias = alias
        super().__init__(f"account already exists: {alias}" if alias else "", hint)


class NoAccountError(GwsError):
    """No account specified and no default account configured"""
    hint = "pass --account, or run 'gws account switch <alias>' to set a default"


class InvalidAliasError(GwsError):
    """Invalid alias"""


class InvalidEmailError(GwsError):
    """Invalid email address"""


class CredentialNotFoundError(GwsError):
    """No stored credential"""
    hint = "run 'gws auth login' to authenticate"

    def __init__(self, alias: str = "", hint: str|None = None) -> None:
        self.alias = alias
        super().__init__(f"no stored credential for account: {alias}" if alias else "", hint)


class NoCredentialError(CredentialNotFoundError):
    """Not authenticated"""

    def __init__(self, alias: str = "", hint: str|None = None) -> None:
        self.alias = alias
        if hint is None and alias:
            hint = f"run 'gws auth login --account {alias}' to authenticate"
        GwsError.__init__(self, f"not authenticated: {alias}" if alias else "", hint)


class TokenRefreshError(GwsError):
    """Failed to refresh access token"""
    hint = "the stored grant may be revoked or expired, run 'gws auth login' to re-authenticate"


class CredentialStoreError(GwsError):
    """Credential storage failure"""


class ConfigError(GwsError):
    """Invalid configuration"""
    hint = "run 'gws config show' to inspect the current settings"


class OAuthConfigError(ConfigError):
    """OAuth client is not configured"""
    hint = ("set GWSCLI_CLIENT_ID and GWSCLI_CLIENT_SECRET, or point 'client_secrets' "
            "at a client secrets file with 'gws config set client_secrets <path>'")


class LoginError(GwsError):
    """Authentication failed"""
    hint = "try 'gws auth login' again"


class ApiError(GwsError):
    """Google API request failed"""

    def __init__(self, message: str = "", status: int = 0, hint: str|None = None) -> None:
        self.status = status
        super().__init__(message, hint)


class NotFoundError(ApiError):
    """Resource not found"""


class BadRequestError(ApiError):
    """Bad request"""


class RateLimitedError(ApiError):
    """Rate limited"""
    hint = "wait a little and try again"


class TemporaryError(ApiError):
    """Temporary server error"""
    hint = "the service had a transient failure, try again"
