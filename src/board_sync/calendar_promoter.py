"""Promotion of accepted calendar events into board cards.

An event is promoted once: the event ID is written as the last line of the
card description, and later runs skip any event whose ID already appears in
the description of a card on the "Today" list or on the list the
calendar promotes into.
"""

import logging
from datetime import datetime, tzinfo
from typing import Collection, Dict, Iterable, List, Optional, Sequence

from .models import BoardCard, CalendarEvent, CandidateCard
from .utils.datetime import (
    CLOCK_FORMAT,
    RECORD_TIME_FORMAT,
    format_local,
    now_utc,
    parse_rfc3339,
)


logger = logging.getLogger(__name__)

TODAY_LIST = "Today"


def is_accepted(event: CalendarEvent) -> bool:
    """Check whether the calendar owner accepted (or created) an event."""
    for attendee in event.attendees:
        if attendee.is_self and attendee.accepted:
            return True
    return event.creator.is_self


def already_promoted(event_id: str, cards: Iterable[BoardCard],
                     lists: Collection[str] = (TODAY_LIST,)) -> bool:
    """Check whether a card in one of `lists` already references the event."""
    for card in cards:
        if card.list_name in lists and event_id in card.desc:
            return True
    return False


def _decode_start(event: CalendarEvent, now: datetime) -> datetime:
    try:
        return parse_rfc3339(event.start)
    except ValueError as e:
        logger.warning(f"Failed to parse start of event {event.id}, using current time: {e}")
        return now


def build_description(event: CalendarEvent, start: Optional[datetime], display_tz: tzinfo) -> str:
    """Compose a card description for an event.

    The event ID is always the last line; already_promoted looks for it.
    """
    lines = []
    if event.description:
        lines.append(event.description)
    if event.html_link:
        lines.append(f"URL: {event.html_link}")
    if start is not None:
        lines.append(f"Start At: {format_local(start, display_tz, RECORD_TIME_FORMAT)}")
    lines.append(event.id)
    return "\n".join(lines)


def promote_events(
    cards: Sequence[BoardCard],
    events: Sequence[CalendarEvent],
    list_name: str,
    labels: Sequence[str],
    display_tz: tzinfo,
    now: Optional[datetime] = None,
    today_list: str = TODAY_LIST,
) -> List[CandidateCard]:
    """Build cards for accepted events that were not promoted yet.

    Args:
        cards: Card snapshot of the current run
        events: Event snapshot of one calendar
        list_name: List new cards are created in
        labels: Labels marking cards from this calendar
        display_tz: Timezone used to render start times
        now: Current time, defaults to the wall clock
        today_list: List checked for previously promoted events, besides list_name

    Returns:
        One candidate per promotable event ID, in no particular order
    """
    now = now or now_utc()

    watched = {today_list, list_name}

    accepted: Dict[str, CalendarEvent] = {}
    for event in events:
        if is_accepted(event):
            accepted[event.id] = event

    for event_id in list(accepted):
        if already_promoted(event_id, cards, watched):
            logger.debug(f"Event {event_id} already on the board")
            del accepted[event_id]

    candidates: Dict[str, CandidateCard] = {}
    for event_id, event in accepted.items():
        if event.start is None:
            continue
        start = _decode_start(event, now)
        candidates[event_id] = CandidateCard(
            name=f"{event.summary} [{format_local(start, display_tz, CLOCK_FORMAT)}]",
            description=build_description(event, start, display_tz),
            list_name=list_name,
            labels=tuple(labels),
            event_id=event_id,
        )

    return list(candidates.values())
