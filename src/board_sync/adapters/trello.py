"""Trello board adapter."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .base import BoardService, ServiceClient, ValidationError


@dataclass(frozen=True)
class TrelloAuth:
    """Trello API key and user token."""
    app_id: str
    token: str


class TrelloClient(ServiceClient, BoardService):
    """Trello REST API client."""

    BASE_URL = "https://api.trello.com/1/"
    SERVICE_NAME = "Trello"

    def __init__(self, auth: TrelloAuth, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(timeout=timeout, client=client)
        self.auth = auth

    def _auth_params(self) -> Dict[str, str]:
        return {"key": self.auth.app_id, "token": self.auth.token}

    async def get_lists(self, board_id: str) -> List[Dict[str, Any]]:
        """Get the open lists of a board."""
        return await self._make_request("GET", f"boards/{board_id}/lists")

    async def get_labels(self, board_id: str) -> List[Dict[str, Any]]:
        """Get the labels defined on a board."""
        return await self._make_request("GET", f"boards/{board_id}/labels")

    async def get_cards(self, board_id: str) -> List[Dict[str, Any]]:
        """Get open cards, each annotated with its list as {"id", "name"}."""
        lists = await self.get_lists(board_id)
        names = {item["id"]: item.get("name", "") for item in lists}

        cards = await self._make_request("GET", f"boards/{board_id}/cards")
        for card in cards:
            list_id = card.get("idList")
            card["list"] = {"id": list_id, "name": names.get(list_id, "")}

        self.logger.info(f"Fetched {len(cards)} cards from board {board_id}")
        return cards

    async def add_card(self, board_id: str, name: str, description: str,
                       list_name: str, labels: Sequence[str]) -> Dict[str, Any]:
        """Create a card in the named list.

        Raises:
            ValidationError: If the board has no list with that name
        """
        lists = await self.get_lists(board_id)
        list_id = next((item["id"] for item in lists if item.get("name") == list_name), None)
        if list_id is None:
            raise ValidationError(f"Board {board_id} has no list named '{list_name}'")

        label_ids = []
        if labels:
            board_labels = await self.get_labels(board_id)
            by_name = {label.get("name"): label["id"] for label in board_labels}
            for label in labels:
                if label in by_name:
                    label_ids.append(by_name[label])
                else:
                    self.logger.warning(f"Board {board_id} has no label named '{label}'")

        params = {"idList": list_id, "name": name, "desc": description}
        if label_ids:
            params["idLabels"] = ",".join(label_ids)

        card = await self._make_request("POST", "cards", params=params)
        self.logger.info(f"Created card {card.get('id')}: {name}")
        return card

    async def archive_cards(self, board_id: str, card_ids: Sequence[str]) -> Dict[str, Any]:
        """Archive cards by closing them."""
        archived = []
        for card_id in card_ids:
            await self._make_request("PUT", f"cards/{card_id}", params={"closed": "true"})
            archived.append(card_id)

        self.logger.info(f"Archived {len(archived)} cards on board {board_id}")
        return {"archived": archived}
