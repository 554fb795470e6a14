"""The stages of a sync run and how they are wired together.

    fetch-cards ──> fetch-records ──> write-records ──> archive-cards
         │
         └──────┐
                v
    fetch-events[cal] ──> create-cards[cal]     (one pair per calendar)

create-cards[cal] waits for both fetch-events[cal] and fetch-cards.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .adapters.base import BoardService, CalendarService, RecordStore
from .calendar_promoter import promote_events
from .config import CalendarSource, SyncConfig
from .models import decode_cards, decode_events, decode_records
from .pipeline import Pipeline, Stage, StageArguments
from .transformers import build_completion_records, build_records_formula, select_archived_card_ids
from .utils.datetime import day_window, now_utc


logger = logging.getLogger(__name__)

FETCH_CARDS = "fetch-cards"
FETCH_RECORDS = "fetch-records"
WRITE_RECORDS = "write-records"
ARCHIVE_CARDS = "archive-cards"


def fetch_events_stage(calendar: CalendarSource) -> str:
    return f"fetch-events[{calendar.name}]"


def create_cards_stage(calendar: CalendarSource) -> str:
    return f"create-cards[{calendar.name}]"


class SyncStages:
    """Stage actions bound to the configured services.

    Base arguments for each service are fixed here; every call extends them
    into a new StageArguments value.
    """

    def __init__(self, config: SyncConfig, board: BoardService, store: RecordStore,
                 calendar: Optional[CalendarService] = None, dry_run: bool = False,
                 clock: Callable[[], datetime] = now_utc):
        self.config = config
        self.board = board
        self.store = store
        self.calendar = calendar
        self.dry_run = dry_run
        self.clock = clock
        self.board_args = StageArguments(board_id=config.trello.board)
        self.store_args = StageArguments()
        self.calendar_args = StageArguments(single_events=True, show_deleted=False)

    async def fetch_cards(self, outputs: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return await self.board.get_cards(**self.board_args)

    async def fetch_records(self, outputs: Mapping[str, Any]) -> List[Dict[str, Any]]:
        cards = decode_cards(outputs[FETCH_CARDS])
        args = self.store_args.extend(formula=build_records_formula(cards))
        return await self.store.get_records(**args)

    async def write_records(self, outputs: Mapping[str, Any]) -> Dict[str, Any]:
        cards = decode_cards(outputs[FETCH_CARDS])
        records = decode_records(outputs[FETCH_RECORDS])
        drafts = build_completion_records(
            cards, records, display_tz=self.config.tz, now=self.clock(),
            done_list=self.config.done_list,
        )
        payload = [draft.to_dict() for draft in drafts]

        if not payload:
            logger.info("No finished cards to record")
            return {"records": []}
        if self.dry_run:
            for draft in drafts:
                logger.info(f"[dry-run] Would record card {draft.external_id}: {draft.name}")
            return {"records": payload}

        args = self.store_args.extend(records=payload)
        return await self.store.add_records(**args)

    async def archive_cards(self, outputs: Mapping[str, Any]) -> Dict[str, Any]:
        card_ids = select_archived_card_ids(outputs[WRITE_RECORDS])
        if not card_ids:
            return {"archived": []}
        if self.dry_run:
            logger.info(f"[dry-run] Would archive cards: {', '.join(card_ids)}")
            return {"archived": card_ids}

        args = self.board_args.extend(card_ids=card_ids)
        return await self.board.archive_cards(**args)

    def fetch_events(self, source: CalendarSource):
        async def action(outputs: Mapping[str, Any]) -> List[Dict[str, Any]]:
            time_min, time_max = day_window(self.clock(), self.config.tz, self.config.lookahead_days)
            args = self.calendar_args.extend(
                calendar_id=source.calendar_id, time_min=time_min, time_max=time_max,
            )
            return await self.calendar.get_events(**args)
        return action

    def create_cards(self, source: CalendarSource):
        async def action(outputs: Mapping[str, Any]) -> List[Dict[str, Any]]:
            cards = decode_cards(outputs[FETCH_CARDS])
            events = decode_events(outputs[fetch_events_stage(source)])
            candidates = promote_events(
                cards, events, list_name=source.list_name, labels=source.labels,
                display_tz=self.config.tz, now=self.clock(),
                today_list=self.config.today_list,
            )

            created = []
            for candidate in candidates:
                if self.dry_run:
                    logger.info(f"[dry-run] Would create card: {candidate.name}")
                    created.append({"name": candidate.name, "desc": candidate.description})
                    continue
                args = self.board_args.extend(
                    name=candidate.name,
                    description=candidate.description,
                    list_name=candidate.list_name,
                    labels=list(candidate.labels),
                )
                created.append(await self.board.add_card(**args))

            logger.info(f"Promoted {len(created)} events from {source.name}")
            return created
        return action

    def stages(self) -> List[Stage]:
        """All stages of a run, in declaration order."""
        stages = [
            Stage(FETCH_CARDS, self.fetch_cards),
            Stage(FETCH_RECORDS, self.fetch_records, after=(FETCH_CARDS,)),
            Stage(WRITE_RECORDS, self.write_records, after=(FETCH_RECORDS,)),
            Stage(ARCHIVE_CARDS, self.archive_cards, after=(WRITE_RECORDS,)),
        ]
        if self.calendar is None:
            if self.config.calendars:
                logger.warning("Calendars are configured but no calendar service was given")
            return stages

        for source in self.config.calendars:
            fetch_name = fetch_events_stage(source)
            stages.append(Stage(fetch_name, self.fetch_events(source)))
            stages.append(Stage(
                create_cards_stage(source), self.create_cards(source),
                after=(fetch_name, FETCH_CARDS),
            ))
        return stages


def build_pipeline(config: SyncConfig, board: BoardService, store: RecordStore,
                   calendar: Optional[CalendarService] = None, dry_run: bool = False,
                   clock: Callable[[], datetime] = now_utc) -> Pipeline:
    """Build the stage graph of a sync run."""
    sync_stages = SyncStages(config, board, store, calendar=calendar, dry_run=dry_run, clock=clock)
    return Pipeline(sync_stages.stages())
