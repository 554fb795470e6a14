"""Airtable records adapter."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .base import RecordStore, ServiceClient


# Airtable accepts at most this many records per create request
MAX_RECORDS_PER_REQUEST = 10


@dataclass(frozen=True)
class AirtableAuth:
    """Airtable API key and the table records are written to."""
    api_key: str
    database_id: str
    table_name: str


class AirtableClient(ServiceClient, RecordStore):
    """Airtable REST API client bound to one table."""

    BASE_URL = "https://api.airtable.com/v0/"
    SERVICE_NAME = "Airtable"

    def __init__(self, auth: AirtableAuth, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(timeout=timeout, client=client)
        self.auth = auth

    async def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.auth.api_key}"}

    @property
    def table_path(self) -> str:
        return f"{self.auth.database_id}/{quote(self.auth.table_name, safe='')}"

    async def get_records(self, formula: str) -> List[Dict[str, Any]]:
        """Fetch all records matching a formula, following pagination.

        The formula goes in a POST body since it can be longer than a URL
        allows.
        """
        records: List[Dict[str, Any]] = []
        offset = None
        while True:
            body: Dict[str, Any] = {"filterByFormula": formula}
            if offset:
                body["offset"] = offset
            page = await self._make_request("POST", f"{self.table_path}/listRecords", json=body)
            records.extend(page.get("records", []))
            offset = page.get("offset")
            if not offset:
                break

        self.logger.info(f"Fetched {len(records)} records from {self.auth.table_name}")
        return records

    async def add_records(self, records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Create records in batches and return everything the table echoed back."""
        created: List[Dict[str, Any]] = []
        for start in range(0, len(records), MAX_RECORDS_PER_REQUEST):
            batch = [
                {"fields": record.get("fields", {})}
                for record in records[start:start + MAX_RECORDS_PER_REQUEST]
            ]
            result = await self._make_request(
                "POST", self.table_path, json={"records": batch, "typecast": True}
            )
            created.extend(result.get("records", []))

        self.logger.info(f"Created {len(created)} records in {self.auth.table_name}")
        return {"records": created}
