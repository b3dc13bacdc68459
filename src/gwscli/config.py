"""
Settings for the command line tool.

Configuration lives in a YAML file in a per-user directory alongside the
account registry.  The precedence is defaults, then the file, then a few
environment variables.  The Config object is plain data: the CLI builds one
per invocation and hands it to whatever needs it.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
import logging
import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "gwscli"
CONFIG_FILE = "config.yaml"

ENV_CONFIG_DIR = "GWSCLI_CONFIG_DIR"
ENV_ACCOUNT = "GWSCLI_ACCOUNT"
ENV_FORMAT = "GWSCLI_FORMAT"
ENV_CREDENTIAL_BACKEND = "GWSCLI_CREDENTIAL_BACKEND"

FORMATS = ("table", "json", "plain")
CREDENTIAL_BACKENDS = ("auto", "keyring", "file")


def config_dir() -> Path:
    """
    Platform specific configuration directory.
    GWSCLI_CONFIG_DIR wins over everything, then XDG_CONFIG_HOME on unix-likes.
    """
    env = os.environ.get(ENV_CONFIG_DIR)
    if env:
        return Path(env).expanduser()
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / APP_NAME
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / APP_NAME


def ensure_private_dir(path: Path) -> Path:
    """Create a directory readable only by the owner."""
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


def write_private_file(path: Path, text: str) -> None:
    """
    Write text to a file created with 0600 permissions from the start,
    so there is no window where the content is world readable.
    """
    ensure_private_dir(path.parent)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)


@dataclass
class MailConfig:
    default_label: str = "INBOX"
    page_size: int = 20


@dataclass
class CalendarConfig:
    default_calendar: str = "primary"


@dataclass
class Config:
    """
    Application settings.  path is where it was loaded from and where save()
    writes back to, it is not itself persisted.
    """
    default_format: str = "table"
    timezone: str = "Local"
    credential_backend: str = "auto"
    client_secrets: str = ""
    mail: MailConfig = field(default_factory=MailConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    path: Path|None = field(default=None, repr=False, compare=False)
    # file values of settings currently replaced by the environment
    _shadowed: dict = field(default_factory=dict, repr=False, compare=False)

    KEYS = ("default_format", "timezone", "credential_backend", "client_secrets",
            "mail.default_label", "mail.page_size", "calendar.default_calendar")

    @property
    def directory(self) -> Path:
        return self.path.parent if self.path is not None else config_dir()

    @classmethod
    def load(cls, directory: Path|str|None = None, env: dict|None = None) -> "Config":
        """
        Load settings from <directory>/config.yaml, creating nothing if absent.
        Environment overrides are applied after the file but are not saved back.
        """
        d = Path(directory) if directory is not None else config_dir()
        env = os.environ if env is None else env
        cfg = cls(path=d / CONFIG_FILE)
        if cfg.path.is_file():
            try:
                with open(cfg.path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"failed to parse {cfg.path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg.path} must contain a mapping")
            cfg.update(data)
        for key, name in (("default_format", ENV_FORMAT), ("credential_backend", ENV_CREDENTIAL_BACKEND)):
            value = env.get(name)
            if value:
                cfg.override(key, value)
        return cfg

    def override(self, key: str, value: str) -> None:
        """Set a value for this run only, save() keeps writing the file value."""
        previous = self.get_value(key)
        self.set_value(key, value)
        self._shadowed.setdefault(key, previous)

    def update(self, data: dict) -> None:
        """Apply a (possibly nested) mapping as read from the YAML file."""
        flat = {}
        for k, v in data.items():
            if isinstance(v, dict) and k in ("mail", "calendar"):
                for sk, sv in v.items():
                    flat[f"{k}.{sk}"] = sv
            else:
                flat[k] = v
        for k, v in flat.items():
            if k not in self.KEYS:
                logger.warning("ignoring unknown config key %s in %s", k, self.path)
                continue
            self.set_value(k, "" if v is None else str(v))

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("path", None)
        d.pop("_shadowed", None)
        return d

    def save(self) -> Path:
        path = self.path if self.path is not None else config_dir() / CONFIG_FILE
        data = self.to_dict()
        data.update(self._shadowed)
        write_private_file(path, yaml.safe_dump(data, sort_keys=False))
        self.path = path
        logger.debug("saved config to %s", path)
        return path

    def get_value(self, key: str) -> str:
        if key not in self.KEYS:
            raise ConfigError(f"unknown config key: {key}",
                              hint=f"valid keys: {', '.join(self.KEYS)}")
        obj = self
        for part in key.split("."):
            obj = getattr(obj, part)
        return str(obj)

    def set_value(self, key: str, value: str) -> None:
        """Set a setting by dotted key, validating the value."""
        match key:
            case "default_format":
                if value not in FORMATS:
                    raise ConfigError(f"invalid format {value!r}: must be one of {', '.join(FORMATS)}")
                self.default_format = value
            case "timezone":
                if value and value != "Local":
                    try:
                        ZoneInfo(value)
                    except (ZoneInfoNotFoundError, ValueError) as e:
                        raise ConfigError(f"invalid timezone {value!r}") from e
                self.timezone = value or "Local"
            case "credential_backend":
                if value not in CREDENTIAL_BACKENDS:
                    raise ConfigError(f"invalid credential backend {value!r}: "
                                      f"must be one of {', '.join(CREDENTIAL_BACKENDS)}")
                self.credential_backend = value
            case "client_secrets":
                self.client_secrets = str(Path(value).expanduser()) if value else ""
            case "mail.default_label":
                self.mail.default_label = value
            case "mail.page_size":
                try:
                    size = int(value)
                except ValueError as e:
                    raise ConfigError(f"invalid page_size {value!r}") from e
                if size <= 0:
                    raise ConfigError(f"invalid page_size {value!r}: must be positive")
                self.mail.page_size = size
            case "calendar.default_calendar":
                self.calendar.default_calendar = value or "primary"
            case _:
                raise ConfigError(f"unknown config key: {key}",
                                  hint=f"valid keys: {', '.join(self.KEYS)}")
        self._shadowed.pop(key, None)

    @property
    def tzinfo(self) -> ZoneInfo|None:
        """Configured display timezone, None meaning the local system zone."""
        if not self.timezone or self.timezone == "Local":
            return None
        return ZoneInfo(self.timezone)
