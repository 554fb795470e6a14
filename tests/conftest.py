"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def fixed_now():
    """A fixed 'current time' for deterministic timestamps."""
    return datetime(2024, 3, 5, 8, 0, tzinfo=timezone.utc)


def card_dict(card_id, name="Card", list_name="Done", labels=None, desc="", url=None):
    """Card in the board service's transport form."""
    return {
        "id": card_id,
        "name": name,
        "desc": desc,
        "url": url or f"https://trello.com/c/{card_id}",
        "idList": f"list-{list_name}",
        "list": {"id": f"list-{list_name}", "name": list_name},
        "labels": [{"id": f"label-{n}", "name": n} for n in (labels or [])],
    }


def record_dict(external_id=None, record_id="rec1", **fields):
    """Record in the table's transport form."""
    data = dict(fields)
    if external_id is not None:
        data["ExternalID"] = external_id
    return {"id": record_id, "fields": data}


def event_dict(event_id, summary="Meeting", start="2024-03-05T09:30:00+00:00",
               response_status="accepted", attendee_self=True, creator_self=False,
               description=None, html_link=None):
    """Event in the calendar service's transport form."""
    event = {
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": start} if start else {"date": "2024-03-05"},
        "attendees": [
            {"email": "me@example.com", "self": attendee_self, "responseStatus": response_status},
            {"email": "other@example.com", "responseStatus": "accepted"},
        ],
        "creator": {"email": "creator@example.com", "self": creator_self},
    }
    if description is not None:
        event["description"] = description
    if html_link is not None:
        event["htmlLink"] = html_link
    return event


@pytest.fixture
def make_card():
    return card_dict


@pytest.fixture
def make_record():
    return record_dict


@pytest.fixture
def make_event():
    return event_dict
