"""Card/record reconciliation transformers.

These functions are pure: they take decoded snapshots and return fresh
values without touching their inputs.
"""

import logging
from datetime import datetime, tzinfo
from typing import Any, Iterable, List, Optional, Sequence

from .models import BoardCard, DatabaseRecord, EXTERNAL_ID, decode_write_result
from .reconcile import difference
from .timestamps import id_to_time_or_now
from .utils.datetime import format_record_time, now_utc


logger = logging.getLogger(__name__)

DONE_LIST = "Done"


def build_records_formula(cards: Iterable[BoardCard]) -> str:
    """Build a table filter matching records linked to any of the given cards."""
    clauses = []
    for card in cards:
        escaped = card.id.replace("\\", "\\\\").replace("'", "\\'")
        clauses.append(f"{EXTERNAL_ID}='{escaped}'")
    if not clauses:
        return "FALSE()"
    return f"OR({','.join(clauses)})"


def build_completion_records(
    cards: Sequence[BoardCard],
    records: Sequence[DatabaseRecord],
    display_tz: tzinfo,
    now: Optional[datetime] = None,
    done_list: str = DONE_LIST,
) -> List[DatabaseRecord]:
    """Build records for finished cards that have no record yet.

    Args:
        cards: Card snapshot of the current run
        records: Record snapshot of the current run
        display_tz: Timezone the table's timestamps are rendered in
        now: Current time, defaults to the wall clock
        done_list: Name of the list holding finished cards

    Returns:
        Record drafts, in the order their cards were matched
    """
    now = now or now_utc()

    candidate_ids = [card.id for card in cards if card.list_name == done_list]
    actual_ids = [record.external_id for record in records if record.external_id]
    missing = difference(candidate_ids, actual_ids)

    drafts = []
    for card_id in missing:
        for card in cards:
            if card.id != card_id:
                continue
            # The card may have been moved since the candidates were selected
            if card.list_name != done_list:
                continue

            created = id_to_time_or_now(card.id, now=now)
            drafts.append(DatabaseRecord(
                name=card.name,
                tags=tuple(label for label in card.labels if label),
                summary=card.desc,
                project="",
                link=card.url,
                external_id=card.id,
                created_at=format_record_time(created, display_tz),
                closed_at=format_record_time(now, display_tz),
            ))

    logger.debug(
        f"{len(candidate_ids)} finished cards, {len(actual_ids)} recorded, "
        f"{len(drafts)} new records"
    )
    return drafts


def select_archived_card_ids(write_result: Any) -> List[str]:
    """Return the card IDs linked to records echoed back by a write.

    Records without an ExternalID are ignored; the store may return rows the
    job did not ask for. Duplicates are passed through.

    Raises:
        SnapshotDecodeError: If the write result cannot be decoded
    """
    written = decode_write_result(write_result)
    return [record.external_id for record in written if record.external_id]
