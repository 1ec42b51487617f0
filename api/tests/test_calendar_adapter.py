"""Google Calendar client and adapter tests against an httpx mock transport."""

import json
from dataclasses import replace
from datetime import date, time
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from venuebook.core.config import Settings
from venuebook.services.booking_rules import END_OF_DAY
from venuebook.services.calendar_adapter import (
    CALENDAR_SCOPE,
    JWT_BEARER_GRANT,
    CalendarError,
    CalendarEvent,
    EventIds,
    ExternalCalendarAdapter,
    GoogleCalendarClient,
    Visibility,
    build_calendar_adapter,
)

TOKEN_URI = "https://oauth2.example.com/token"
API_BASE = "https://calendar.example.com/v3"

EVENT = CalendarEvent(
    reservation_id=42,
    court_id=1,
    court_name="Solo Court",
    booking_date=date(2026, 3, 16),
    start_time=time(10, 0),
    end_time=time(11, 0),
    participants=2,
    status="confirmed",
    user_id=7,
    user_name="Member",
    user_email="member@example.com",
    user_phone="+852 5555 0001",
    timezone="Asia/Hong_Kong",
)


class FakeGoogle:
    """Token endpoint plus an in-memory events collection per calendar."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.events: dict[str, dict[str, dict]] = {}
        self.token_requests = 0
        self.fail: dict[tuple[str, str], int] = {}  # (method, calendar) -> status
        self._next_id = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URI:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600})

        parts = request.url.path.split("/")  # /v3/calendars/{cal}/events[/{id}]
        calendar_id = parts[3]
        status = self.fail.get((request.method, calendar_id))
        if status:
            return httpx.Response(status, json={"error": {"code": status}})

        events = self.events.setdefault(calendar_id, {})
        if request.method == "POST":
            self._next_id += 1
            event_id = f"{calendar_id}-{self._next_id}"
            events[event_id] = json.loads(request.content)
            return httpx.Response(200, json={"id": event_id})

        event_id = parts[5]
        if event_id not in events:
            return httpx.Response(404, json={"error": {"code": 404}})
        if request.method == "PUT":
            events[event_id] = json.loads(request.content)
            return httpx.Response(200, json={"id": event_id})
        del events[event_id]
        return httpx.Response(204)


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def now():
    return [1_773_622_800.0]


@pytest.fixture
def client(google, now, monkeypatch):
    client = GoogleCalendarClient(
        client_email="sync@venue.iam.example.com",
        private_key="unused",
        token_uri=TOKEN_URI,
        api_base=API_BASE,
        http=httpx.AsyncClient(transport=httpx.MockTransport(google)),
        clock=lambda: now[0],
    )
    monkeypatch.setattr(client, "_assertion", lambda issued_at: "signed-assertion")
    return client


@pytest.fixture
def adapter(client):
    return ExternalCalendarAdapter(client, {Visibility.PUBLIC: "public", Visibility.PRIVATE: "private"})


class TestEventBody:
    def test_public_hides_the_booker(self):
        body = EVENT.body(Visibility.PUBLIC)
        assert body["summary"] == "Court booking - Solo Court"
        assert "Member" not in body["description"]
        assert "extendedProperties" not in body
        assert body["start"] == {"dateTime": "2026-03-16T10:00:00+08:00", "timeZone": "Asia/Hong_Kong"}
        assert body["end"]["dateTime"] == "2026-03-16T11:00:00+08:00"

    def test_private_carries_booker_details(self):
        body = EVENT.body(Visibility.PRIVATE)
        assert body["summary"] == "Court booking - Solo Court (Member)"
        assert "member@example.com" in body["description"]
        assert body["extendedProperties"]["private"] == {"reservationId": "42", "userId": "7", "courtId": "1"}

    def test_booking_until_midnight_ends_next_day(self):
        late = replace(EVENT, start_time=time(23, 0), end_time=END_OF_DAY)
        body = late.body(Visibility.PUBLIC)
        assert body["end"]["dateTime"] == "2026-03-17T00:00:00+08:00"
        assert "23:00-24:00" in body["description"]

    def test_event_ids(self):
        assert not EventIds()
        assert EventIds(None, "priv-1")
        assert EventIds("pub-1", "priv-1").get(Visibility.PRIVATE) == "priv-1"


class TestClient:
    async def test_token_cached_until_close_to_expiry(self, client, google, now):
        await client.insert_event("public", {"summary": "a"})
        await client.insert_event("public", {"summary": "b"})
        assert google.token_requests == 1

        now[0] += 3600 - 30
        await client.insert_event("public", {"summary": "c"})
        assert google.token_requests == 2

    async def test_bearer_token_and_grant(self, client, google):
        await client.insert_event("public", {"summary": "a"})

        token_request, insert_request = google.requests
        form = parse_qs(token_request.content.decode())
        assert form["grant_type"] == [JWT_BEARER_GRANT]
        assert form["assertion"] == ["signed-assertion"]
        assert insert_request.headers["Authorization"] == "Bearer token-1"
        assert insert_request.url.path == "/v3/calendars/public/events"

    async def test_token_rejected(self, client):
        client.http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401, text="invalid_grant")))
        with pytest.raises(CalendarError) as exc:
            await client.insert_event("public", {})
        assert exc.value.status_code == 401

    async def test_delete_missing_event_counts_as_deleted(self, client):
        assert await client.delete_event("public", "gone") is True

    async def test_server_error(self, client, google):
        google.fail[("POST", "public")] = 500
        with pytest.raises(CalendarError) as exc:
            await client.insert_event("public", {})
        assert exc.value.status_code == 500

    async def test_transport_error(self, client):
        def boom(request):
            if str(request.url) == TOKEN_URI:
                return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            raise httpx.ConnectError("connection refused")

        client.http = httpx.AsyncClient(transport=httpx.MockTransport(boom))
        with pytest.raises(CalendarError):
            await client.insert_event("public", {})


def test_assertion_is_signed_service_account_jwt():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()
    client = GoogleCalendarClient("sync@venue.iam.example.com", pem, TOKEN_URI, API_BASE)

    claims = jwt.decode(client._assertion(1_773_622_800), public_pem, algorithms=["RS256"], audience=TOKEN_URI, options={"verify_exp": False})

    assert claims["iss"] == "sync@venue.iam.example.com"
    assert claims["scope"] == CALENDAR_SCOPE
    assert claims["exp"] - claims["iat"] == 3600


class TestAdapter:
    async def test_create_writes_both_visibilities(self, adapter, google):
        ids = await adapter.create(EVENT)

        assert ids.public_event_id in google.events["public"]
        assert ids.private_event_id in google.events["private"]
        assert google.events["private"][ids.private_event_id]["summary"].endswith("(Member)")
        assert "extendedProperties" not in google.events["public"][ids.public_event_id]

    async def test_partial_create_rolled_back(self, adapter, google):
        google.fail[("POST", "private")] = 500

        with pytest.raises(CalendarError):
            await adapter.create(EVENT)

        assert google.events["public"] == {}
        assert [r.method for r in google.requests[1:]] == ["POST", "POST", "DELETE"]

    async def test_update_rewrites_and_fills_missing(self, adapter, google):
        created = await adapter.create(EVENT)
        del google.events["private"][created.private_event_id]

        ids = await adapter.update(EventIds(created.public_event_id, None), EVENT)

        assert ids.public_event_id == created.public_event_id
        assert ids.private_event_id in google.events["private"]
        assert ids.private_event_id != created.private_event_id

    async def test_update_rolls_back_events_it_created(self, adapter, google):
        created = await adapter.create(EVENT)
        del google.events["public"][created.public_event_id]
        google.fail[("PUT", "private")] = 500

        with pytest.raises(CalendarError):
            await adapter.update(EventIds(None, created.private_event_id), EVENT)

        # The replacement public event is gone again, so a retry cannot duplicate it
        assert google.events["public"] == {}
        assert list(google.events["private"]) == [created.private_event_id]

    async def test_delete_both(self, adapter, google):
        ids = await adapter.create(EVENT)
        assert await adapter.delete(ids) is True
        assert google.events == {"public": {}, "private": {}}
        # Deleting again hits 404s, still a success
        assert await adapter.delete(ids) is True

    async def test_delete_failure_raises(self, adapter, google):
        ids = await adapter.create(EVENT)
        google.fail[("DELETE", "private")] = 503
        with pytest.raises(CalendarError):
            await adapter.delete(ids)

    async def test_public_only_calendar(self, client, google):
        adapter = ExternalCalendarAdapter(client, {Visibility.PUBLIC: "public"})

        ids = await adapter.create(EVENT)

        assert ids.private_event_id is None
        assert "private" not in google.events
        # A private id stored earlier cannot be deleted without its calendar
        assert await adapter.delete(EventIds(ids.public_event_id, "private-9")) is False


def test_build_adapter_from_settings():
    config = Settings(calendar_public_id="pub@group", calendar_private_id=None, calendar_private_key="a\\nb")
    adapter = build_calendar_adapter(config)
    assert adapter.calendars == {Visibility.PUBLIC: "pub@group"}
    assert adapter.client.private_key == "a\nb"

    config = Settings(calendar_public_id="pub@group", calendar_private_id="priv@group")
    assert build_calendar_adapter(config).calendars[Visibility.PRIVATE] == "priv@group"
