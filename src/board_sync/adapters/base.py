"""Base classes for the service adapters.

Each external service (board, records table, calendar) is reached through an
adapter implementing one of the abstract interfaces below. The concrete
adapters share ServiceClient for HTTP plumbing and error mapping.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx


logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base exception for service adapter operations."""
    pass


class AuthenticationError(AdapterError):
    """Authentication failed with the external service."""
    pass


class RateLimitError(AdapterError):
    """Rate limit exceeded."""
    pass


class NetworkError(AdapterError):
    """Network connectivity issues or an error response."""
    pass


class ValidationError(AdapterError):
    """Request data was rejected before being sent."""
    pass


class BoardService(ABC):
    """Kanban board holding the cards."""

    @abstractmethod
    async def get_cards(self, board_id: str) -> List[Dict[str, Any]]:
        """Fetch all open cards on a board, each with its list and labels."""
        pass

    @abstractmethod
    async def add_card(self, board_id: str, name: str, description: str,
                       list_name: str, labels: Sequence[str]) -> Dict[str, Any]:
        """Create a card and return it."""
        pass

    @abstractmethod
    async def archive_cards(self, board_id: str, card_ids: Sequence[str]) -> Dict[str, Any]:
        """Archive cards by ID. Archiving an archived card is a no-op."""
        pass


class RecordStore(ABC):
    """Table of records for finished cards."""

    @abstractmethod
    async def get_records(self, formula: str) -> List[Dict[str, Any]]:
        """Fetch records matching a filter formula."""
        pass

    @abstractmethod
    async def add_records(self, records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Create records and return {"records": [...]} with assigned IDs."""
        pass


class CalendarService(ABC):
    """Calendar providing events to promote."""

    @abstractmethod
    async def get_events(self, calendar_id: str, time_min: datetime, time_max: datetime,
                         single_events: bool = True,
                         show_deleted: bool = False) -> List[Dict[str, Any]]:
        """Fetch events starting inside [time_min, time_max)."""
        pass


class ServiceClient:
    """Async HTTP client with the error mapping shared by all adapters."""

    BASE_URL = ""
    SERVICE_NAME = "service"

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize the client.

        Args:
            timeout: Request timeout in seconds
            client: Preconfigured httpx client, mostly for tests
        """
        self.client = client or httpx.AsyncClient(base_url=self.BASE_URL, timeout=timeout)
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    async def _headers(self) -> Dict[str, str]:
        """Headers added to every request."""
        return {}

    def _auth_params(self) -> Dict[str, str]:
        """Query parameters added to every request."""
        return {}

    async def _make_request(self, method: str, url: str, params: Optional[Dict] = None,
                            json: Optional[Any] = None, data: Optional[Dict] = None,
                            authenticated: bool = True) -> Any:
        """Make an HTTP request and decode the JSON response.

        Raises:
            AuthenticationError: If authentication fails
            RateLimitError: If rate limit is exceeded
            NetworkError: If the request fails or returns an error
        """
        headers = await self._headers() if authenticated else {}
        query = dict(self._auth_params()) if authenticated else {}
        if params:
            query.update(params)

        try:
            response = await self.client.request(
                method, url, params=query or None, json=json, data=data, headers=headers
            )
        except httpx.TimeoutException:
            raise NetworkError(f"{self.SERVICE_NAME} request timed out")
        except httpx.RequestError as e:
            raise NetworkError(f"{self.SERVICE_NAME} request failed: {e}")

        if response.status_code == 401:
            raise AuthenticationError(f"Invalid {self.SERVICE_NAME} credentials")
        elif response.status_code == 403:
            raise AuthenticationError(f"{self.SERVICE_NAME} access forbidden")
        elif response.status_code == 429:
            raise RateLimitError(f"{self.SERVICE_NAME} rate limit exceeded")
        elif response.status_code >= 400:
            raise NetworkError(
                f"{self.SERVICE_NAME} error {response.status_code}: {response.text}"
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{self.SERVICE_NAME} returned invalid JSON: {e}")
