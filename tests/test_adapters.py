"""Tests for the service adapters, against mocked HTTP transports."""

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from board_sync.adapters import (
    AirtableAuth,
    AirtableClient,
    AuthenticationError,
    GoogleCalendarClient,
    NetworkError,
    RateLimitError,
    ServiceAccount,
    TrelloAuth,
    TrelloClient,
    ValidationError,
)
from board_sync.adapters.airtable import MAX_RECORDS_PER_REQUEST


def mock_client(client_class, handler):
    return httpx.AsyncClient(base_url=client_class.BASE_URL, transport=httpx.MockTransport(handler))


class TrelloBoard:
    """Minimal in-memory Trello API."""

    def __init__(self):
        self.lists = [{"id": "l1", "name": "Today"}, {"id": "l2", "name": "Done"}]
        self.labels = [{"id": "lab1", "name": "Work"}]
        self.cards = [
            {"id": "c1", "name": "Ship", "idList": "l2", "labels": []},
            {"id": "c2", "name": "Plan", "idList": "l1", "labels": []},
        ]
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/1/boards/b1/lists":
            return httpx.Response(200, json=self.lists)
        if path == "/1/boards/b1/labels":
            return httpx.Response(200, json=self.labels)
        if path == "/1/boards/b1/cards":
            return httpx.Response(200, json=self.cards)
        if path == "/1/cards" and request.method == "POST":
            params = request.url.params
            return httpx.Response(200, json={"id": "c9", "name": params["name"],
                                             "idList": params["idList"]})
        if path.startswith("/1/cards/") and request.method == "PUT":
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[1], "closed": True})
        return httpx.Response(404, text="not found")


@pytest.fixture
def trello_api():
    return TrelloBoard()


@pytest.fixture
def trello(trello_api):
    return TrelloClient(TrelloAuth(app_id="app", token="tok"),
                        client=mock_client(TrelloClient, trello_api))


class TestTrelloClient:

    async def test_get_cards_annotates_list(self, trello, trello_api):
        cards = await trello.get_cards("b1")

        assert [(c["id"], c["list"]["name"]) for c in cards] == [("c1", "Done"), ("c2", "Today")]
        params = trello_api.requests[0].url.params
        assert params["key"] == "app"
        assert params["token"] == "tok"

    async def test_add_card(self, trello, trello_api):
        card = await trello.add_card("b1", "Dentist [09:30]", "evt1", "Today", ["Work", "Unknown"])

        assert card["id"] == "c9"
        params = trello_api.requests[-1].url.params
        assert params["idList"] == "l1"
        assert params["desc"] == "evt1"
        assert params["idLabels"] == "lab1"

    async def test_add_card_without_labels_skips_label_lookup(self, trello, trello_api):
        await trello.add_card("b1", "Plain", "", "Today", [])

        paths = [r.url.path for r in trello_api.requests]
        assert "/1/boards/b1/labels" not in paths
        assert "idLabels" not in trello_api.requests[-1].url.params

    async def test_add_card_unknown_list(self, trello):
        with pytest.raises(ValidationError):
            await trello.add_card("b1", "x", "", "Someday", [])

    async def test_archive_cards(self, trello, trello_api):
        result = await trello.archive_cards("b1", ["c1", "c2"])

        assert result == {"archived": ["c1", "c2"]}
        puts = [r for r in trello_api.requests if r.method == "PUT"]
        assert [r.url.path for r in puts] == ["/1/cards/c1", "/1/cards/c2"]
        assert all(r.url.params["closed"] == "true" for r in puts)


class TestAirtableClient:

    @pytest.fixture
    def auth(self):
        return AirtableAuth(api_key="key", database_id="app1", table_name="Done Cards")

    async def test_get_records_follows_pagination(self, auth):
        bodies = []

        def handler(request):
            body = json.loads(request.content)
            bodies.append(body)
            assert request.headers["Authorization"] == "Bearer key"
            assert request.url.path == "/v0/app1/Done Cards/listRecords"
            if "offset" not in body:
                return httpx.Response(200, json={"records": [{"id": "r1", "fields": {}}],
                                                 "offset": "page2"})
            return httpx.Response(200, json={"records": [{"id": "r2", "fields": {}}]})

        store = AirtableClient(auth, client=mock_client(AirtableClient, handler))
        records = await store.get_records("OR(ExternalID='c1')")

        assert [r["id"] for r in records] == ["r1", "r2"]
        assert bodies[0] == {"filterByFormula": "OR(ExternalID='c1')"}
        assert bodies[1]["offset"] == "page2"

    async def test_add_records_in_batches(self, auth):
        batches = []

        def handler(request):
            body = json.loads(request.content)
            batches.append(body)
            created = [{"id": f"rec{len(batches)}-{i}", "fields": r["fields"]}
                       for i, r in enumerate(body["records"])]
            return httpx.Response(200, json={"records": created})

        store = AirtableClient(auth, client=mock_client(AirtableClient, handler))
        records = [{"fields": {"ExternalID": f"c{i}"}} for i in range(MAX_RECORDS_PER_REQUEST + 2)]

        result = await store.add_records(records)

        assert [len(b["records"]) for b in batches] == [MAX_RECORDS_PER_REQUEST, 2]
        assert all(b["typecast"] is True for b in batches)
        assert len(result["records"]) == MAX_RECORDS_PER_REQUEST + 2
        assert result["records"][-1]["fields"]["ExternalID"] == f"c{MAX_RECORDS_PER_REQUEST + 1}"

    async def test_add_no_records_makes_no_request(self, auth):
        def handler(request):
            raise AssertionError("unexpected request")

        store = AirtableClient(auth, client=mock_client(AirtableClient, handler))
        assert await store.add_records([]) == {"records": []}


@pytest.fixture(scope="module")
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


class GoogleApi:
    """Token endpoint plus a paginated events endpoint."""

    TOKEN_URI = "https://oauth2.example.com/token"

    def __init__(self, public_pem):
        self.public_pem = public_pem
        self.token_requests = 0
        self.event_requests = []

    def __call__(self, request):
        if str(request.url) == self.TOKEN_URI:
            self.token_requests += 1
            form = parse_qs(request.content.decode())
            claims = jwt.decode(form["assertion"][0], self.public_pem,
                                algorithms=["RS256"], audience=self.TOKEN_URI)
            assert claims["iss"] == "sync@project.iam.gserviceaccount.com"
            assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:jwt-bearer"]
            return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3600})

        assert request.headers["Authorization"] == "Bearer ya29.token"
        self.event_requests.append(request)
        if "pageToken" not in request.url.params:
            return httpx.Response(200, json={"items": [{"id": "e1"}], "nextPageToken": "p2"})
        return httpx.Response(200, json={"items": [{"id": "e2"}]})


class TestGoogleCalendarClient:

    @pytest.fixture
    def api(self, rsa_keys):
        return GoogleApi(rsa_keys[1])

    @pytest.fixture
    def calendar(self, api, rsa_keys):
        account = ServiceAccount(client_email="sync@project.iam.gserviceaccount.com",
                                 private_key=rsa_keys[0], token_uri=GoogleApi.TOKEN_URI)
        return GoogleCalendarClient(account, client=mock_client(GoogleCalendarClient, api))

    async def test_get_events(self, calendar, api):
        start = datetime(2024, 3, 5, tzinfo=timezone.utc)
        events = await calendar.get_events("me@example.com", start, start + timedelta(days=1))

        assert [e["id"] for e in events] == ["e1", "e2"]
        params = api.event_requests[0].url.params
        assert params["timeMin"] == "2024-03-05T00:00:00+00:00"
        assert params["timeMax"] == "2024-03-06T00:00:00+00:00"
        assert params["singleEvents"] == "true"
        assert params["showDeleted"] == "false"
        assert api.event_requests[0].url.path.endswith("/calendars/me@example.com/events")

    async def test_access_token_reused(self, calendar, api):
        start = datetime(2024, 3, 5, tzinfo=timezone.utc)
        await calendar.get_events("a@example.com", start, start + timedelta(days=1))
        await calendar.get_events("b@example.com", start, start + timedelta(days=1))

        assert api.token_requests == 1

    def test_service_account_from_inline_json(self, rsa_keys):
        info = {"client_email": "sa@example.com", "private_key": rsa_keys[0]}
        account = ServiceAccount.load(json.dumps(info))

        assert account.client_email == "sa@example.com"
        assert account.token_uri == "https://oauth2.googleapis.com/token"

    def test_service_account_from_file(self, rsa_keys, tmp_path):
        key_file = tmp_path / "sa.json"
        key_file.write_text(json.dumps({"client_email": "sa@example.com",
                                        "private_key": rsa_keys[0],
                                        "token_uri": "https://token.example.com"}))

        assert ServiceAccount.load(str(key_file)).token_uri == "https://token.example.com"

    def test_service_account_missing_keys(self):
        with pytest.raises(AuthenticationError, match="private_key"):
            ServiceAccount.load('{"client_email": "sa@example.com"}')

    def test_service_account_blank_email(self, rsa_keys):
        with pytest.raises(AuthenticationError, match="client_email"):
            ServiceAccount.from_info({"client_email": "  ", "private_key": rsa_keys[0]})

    def test_service_account_must_be_object(self):
        with pytest.raises(AuthenticationError):
            ServiceAccount.load('["not", "a", "key"]')

    def test_service_account_null_token_uri_uses_default(self, rsa_keys):
        account = ServiceAccount.from_info({"client_email": "sa@example.com",
                                            "private_key": rsa_keys[0], "token_uri": None})
        assert account.token_uri == "https://oauth2.googleapis.com/token"


class TestErrorMapping:

    @pytest.mark.parametrize("status, error", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, RateLimitError),
        (500, NetworkError),
        (404, NetworkError),
    ])
    async def test_status_codes(self, status, error):
        client = TrelloClient(TrelloAuth("app", "tok"),
                              client=mock_client(TrelloClient, lambda r: httpx.Response(status)))
        with pytest.raises(error):
            await client.get_lists("b1")

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = TrelloClient(TrelloAuth("app", "tok"), client=mock_client(TrelloClient, handler))
        with pytest.raises(NetworkError):
            await client.get_lists("b1")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = TrelloClient(TrelloAuth("app", "tok"), client=mock_client(TrelloClient, handler))
        with pytest.raises(NetworkError, match="timed out"):
            await client.get_lists("b1")

    async def test_empty_body(self):
        client = TrelloClient(TrelloAuth("app", "tok"),
                              client=mock_client(TrelloClient, lambda r: httpx.Response(204)))
        assert await client.get_lists("b1") == {}
