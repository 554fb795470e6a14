"""Adapters for the services the sync job talks to.

This package contains the abstract service interfaces and their concrete
implementations for Trello, Airtable and Google Calendar.
"""

from .base import (
    AdapterError,
    AuthenticationError,
    BoardService,
    CalendarService,
    NetworkError,
    RateLimitError,
    RecordStore,
    ValidationError,
)
from .airtable import AirtableAuth, AirtableClient
from .google_calendar import GoogleCalendarClient, ServiceAccount
from .trello import TrelloAuth, TrelloClient

__all__ = [
    'AdapterError',
    'AuthenticationError',
    'BoardService',
    'CalendarService',
    'NetworkError',
    'RateLimitError',
    'RecordStore',
    'ValidationError',
    'AirtableAuth',
    'AirtableClient',
    'GoogleCalendarClient',
    'ServiceAccount',
    'TrelloAuth',
    'TrelloClient',
]
