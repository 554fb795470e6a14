"""Configuration loading for the sync job.

Values are looked up, in order, in an optional YAML file, in environment
variables, and (for secrets only) in the system keyring. Every missing
required value is reported at once; the job never starts partially
configured.
"""

import logging
import os
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import keyring
import yaml
from keyring.errors import KeyringError
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .utils.datetime import get_timezone


logger = logging.getLogger(__name__)

KEYRING_SERVICE = "board_sync"


class ConfigError(Exception):
    """Configuration is missing or invalid."""
    pass


class TrelloSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str = Field(min_length=1)
    token: str = Field(min_length=1)
    board: str = Field(min_length=1)


class AirtableSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1)
    database_id: str = Field(min_length=1)
    table_name: str = Field(min_length=1)


class GoogleSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Path to a service-account key file, or the key JSON itself
    service_account: str = Field(min_length=1)


class CalendarSource(BaseModel):
    """A calendar whose accepted events become cards."""

    model_config = ConfigDict(frozen=True)

    calendar_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    list_name: str = Field(default="Today", min_length=1)
    labels: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("calendar_id"):
            data = {**data, "name": data["calendar_id"]}
        return data

    @field_validator("calendar_id", "name", "list_name")
    @classmethod
    def _normalize_non_empty(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return normalized

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            raise ValueError("labels must be a list of label names")
        return value


class SyncConfig(BaseModel):
    """Complete configuration of a sync run."""

    model_config = ConfigDict(frozen=True)

    trello: TrelloSettings
    airtable: AirtableSettings
    google: Optional[GoogleSettings] = None
    calendars: Tuple[CalendarSource, ...] = ()
    display_timezone: str = "UTC"
    done_list: str = Field(default="Done", min_length=1)
    today_list: str = Field(default="Today", min_length=1)
    lookahead_days: int = Field(default=1, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("lookahead_days", "timeout_seconds", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, bool):
            raise ValueError(f"{info.field_name} must be a number")
        return value

    @field_validator("display_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        get_timezone(value)
        return value

    @model_validator(mode="after")
    def _unique_calendar_names(self) -> "SyncConfig":
        names = [c.name for c in self.calendars]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Calendar names must be unique: {', '.join(duplicates)}")
        return self

    @property
    def tz(self) -> tzinfo:
        return get_timezone(self.display_timezone)

    def masked(self) -> Dict[str, Any]:
        """Summary safe to print, with secrets shortened."""
        return {
            "trello.app_id": _mask(self.trello.app_id),
            "trello.token": _mask(self.trello.token),
            "trello.board": self.trello.board,
            "airtable.api_key": _mask(self.airtable.api_key),
            "airtable.database_id": self.airtable.database_id,
            "airtable.table_name": self.airtable.table_name,
            "google.service_account": "set" if self.google else "not set",
            "calendars": ", ".join(c.name for c in self.calendars) or "none",
            "display_timezone": self.display_timezone,
            "done_list": self.done_list,
            "today_list": self.today_list,
        }


# (section, key) -> environment variable
ENV_VARS = {
    ("trello", "app_id"): "TRELLO_APP_ID",
    ("trello", "token"): "TRELLO_TOKEN",
    ("trello", "board"): "TRELLO_BOARD",
    ("airtable", "api_key"): "AIRTABLE_API_KEY",
    ("airtable", "database_id"): "AIRTABLE_DATABASE_ID",
    ("airtable", "table_name"): "AIRTABLE_TABLE_NAME",
    ("google", "service_account"): "GOOGLE_SERVICE_ACCOUNT",
}

SECRETS = {
    ("trello", "token"),
    ("airtable", "api_key"),
    ("google", "service_account"),
}

# Top-level YAML keys passed straight to SyncConfig
PLAIN_KEYS = ("done_list", "today_list", "lookahead_days", "timeout_seconds")


def _mask(value: str) -> str:
    if len(value) <= 4:
        return "****"
    return f"{value[:4]}****"


def describe_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as "location: message" pairs."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


class _Resolver:
    """Looks values up across the configured sources and collects misses."""

    def __init__(self, data: Mapping[str, Any], environ: Mapping[str, str], use_keyring: bool):
        self.data = data
        self.environ = environ
        self.use_keyring = use_keyring
        self.missing: List[str] = []

    def lookup(self, section: str, key: str) -> Optional[str]:
        section_data = self.data.get(section) or {}
        if not isinstance(section_data, Mapping):
            raise ConfigError(f"'{section}' must be a mapping")
        value = section_data.get(key)
        if value:
            return str(value)

        env_var = ENV_VARS[(section, key)]
        value = self.environ.get(env_var)
        if value:
            return value

        if self.use_keyring and (section, key) in SECRETS:
            try:
                value = keyring.get_password(KEYRING_SERVICE, f"{section}_{key}")
            except KeyringError as e:
                logger.debug(f"Keyring lookup for {section}.{key} failed: {e}")
                value = None
            if value:
                return value
        return None

    def section(self, section: str, keys: Tuple[str, ...]) -> Dict[str, str]:
        values = {}
        for key in keys:
            value = self.lookup(section, key)
            if value is None:
                self.missing.append(ENV_VARS[(section, key)])
            else:
                values[key] = value
        return values


def _parse_calendar_ids(value: str, list_name: str) -> List[Dict[str, Any]]:
    """Parse "id[=label],..." as used by GOOGLE_CALENDAR_IDS."""
    entries = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        calendar_id, _, label = entry.partition("=")
        label = label.strip()
        entries.append({
            "calendar_id": calendar_id,
            "name": label,
            "list_name": list_name,
            "labels": [label] if label else [],
        })
    return entries


def _parse_calendar_entries(entries: Any, list_name: str) -> List[Any]:
    if not isinstance(entries, list):
        raise ConfigError("'calendars' must be a list")

    parsed = []
    for entry in entries:
        if isinstance(entry, str):
            parsed.extend(_parse_calendar_ids(entry, list_name))
        elif isinstance(entry, dict):
            item = {k: v for k, v in entry.items() if k != "list"}
            item["list_name"] = entry.get("list") or list_name
            parsed.append(item)
        else:
            # Left for validation to reject
            parsed.append(entry)
    return parsed


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """Read a YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Failed to read config from {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_config(config_path: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None,
                use_keyring: bool = True) -> SyncConfig:
    """Load and validate the configuration.

    Args:
        config_path: Optional YAML file
        environ: Environment to read, defaults to os.environ
        use_keyring: Whether to look secrets up in the system keyring

    Raises:
        ConfigError: If a required value is missing or a value is invalid
    """
    data = read_config_file(config_path) if config_path else {}
    environ = os.environ if environ is None else environ
    resolver = _Resolver(data, environ, use_keyring)

    values: Dict[str, Any] = {
        "trello": resolver.section("trello", ("app_id", "token", "board")),
        "airtable": resolver.section("airtable", ("api_key", "database_id", "table_name")),
    }
    for key in PLAIN_KEYS:
        if data.get(key) is not None:
            values[key] = data[key]

    today_list = data.get("today_list") or "Today"
    if "calendars" in data:
        calendars = _parse_calendar_entries(data["calendars"], today_list)
    else:
        calendars = _parse_calendar_ids(environ.get("GOOGLE_CALENDAR_IDS", ""), today_list)
    values["calendars"] = calendars
    if calendars:
        values["google"] = resolver.section("google", ("service_account",))

    if resolver.missing:
        raise ConfigError(f"Missing required configuration: {', '.join(resolver.missing)}")

    values["display_timezone"] = (
        data.get("display_timezone") or environ.get("BOARD_SYNC_TIMEZONE") or "UTC"
    )

    try:
        config = SyncConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {describe_validation_error(e)}") from e

    for source in config.calendars:
        if source.list_name != config.today_list:
            logger.info(
                f"Calendar {source.name} promotes into '{source.list_name}'; "
                f"that list is also checked for already promoted events"
            )

    logger.debug(f"Loaded configuration with {len(config.calendars)} calendars")
    return config
