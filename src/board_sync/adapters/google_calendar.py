"""Google Calendar adapter authenticated with a service account."""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from ..utils.datetime import to_rfc3339
from .base import AuthenticationError, CalendarService, ServiceClient


CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME = 3600


class ServiceAccount(BaseModel):
    """The parts of a service-account key file the adapter needs."""

    model_config = ConfigDict(frozen=True)

    client_email: str = Field(min_length=1)
    private_key: str = Field(min_length=1)
    token_uri: str = DEFAULT_TOKEN_URI

    @field_validator("client_email", "private_key")
    @classmethod
    def _normalize_non_empty(cls, value: str, info: ValidationInfo) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return value

    @field_validator("token_uri", mode="before")
    @classmethod
    def _default_token_uri(cls, value: Any) -> Any:
        return value or DEFAULT_TOKEN_URI

    @classmethod
    def from_info(cls, info: Any) -> "ServiceAccount":
        """Create from a parsed key file.

        Raises:
            AuthenticationError: If required keys are missing or invalid
        """
        try:
            return cls.model_validate(info)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in item['loc']) or 'key'}: {item['msg']}"
                for item in e.errors()
            )
            raise AuthenticationError(f"Invalid service account key: {problems}") from e

    @classmethod
    def load(cls, value: str) -> "ServiceAccount":
        """Load from inline JSON or from the path of a key file."""
        text = value.strip()
        if not text.startswith("{"):
            text = Path(text).expanduser().read_text()
        try:
            info = json.loads(text)
        except ValueError as e:
            raise AuthenticationError(f"Service account key is not valid JSON: {e}")
        return cls.from_info(info)


class GoogleCalendarClient(ServiceClient, CalendarService):
    """Calendar API v3 client using the JWT bearer grant."""

    BASE_URL = "https://www.googleapis.com/calendar/v3/"
    SERVICE_NAME = "Google Calendar"

    def __init__(self, account: ServiceAccount, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(timeout=timeout, client=client)
        self.account = account
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    def _build_assertion(self, issued_at: int) -> str:
        claims = {
            "iss": self.account.client_email,
            "scope": CALENDAR_SCOPE,
            "aud": self.account.token_uri,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME,
        }
        return jwt.encode(claims, self.account.private_key, algorithm="RS256")

    async def _get_access_token(self) -> str:
        # Refresh a minute early so a token never expires mid-request
        if self._access_token and time.time() < self._token_expires_at - 60:
            return self._access_token

        issued_at = int(time.time())
        payload = await self._make_request(
            "POST",
            self.account.token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": self._build_assertion(issued_at)},
            authenticated=False,
        )
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Token endpoint did not return an access token")

        self._access_token = token
        self._token_expires_at = issued_at + int(payload.get("expires_in", TOKEN_LIFETIME))
        self.logger.debug(f"Obtained access token for {self.account.client_email}")
        return token

    async def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self._get_access_token()}"}

    async def get_events(self, calendar_id: str, time_min: datetime, time_max: datetime,
                         single_events: bool = True,
                         show_deleted: bool = False) -> List[Dict[str, Any]]:
        """Fetch all events in a time window, following pagination."""
        events: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params = {
                "timeMin": to_rfc3339(time_min),
                "timeMax": to_rfc3339(time_max),
                "singleEvents": "true" if single_events else "false",
                "showDeleted": "true" if show_deleted else "false",
            }
            if page_token:
                params["pageToken"] = page_token
            page = await self._make_request(
                "GET", f"calendars/{quote(calendar_id, safe='')}/events", params=params
            )
            events.extend(page.get("items", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                break

        self.logger.info(f"Fetched {len(events)} events from calendar {calendar_id}")
        return events
