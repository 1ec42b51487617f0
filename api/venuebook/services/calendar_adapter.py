"""External calendar mirror of confirmed reservations (Google Calendar v3).

Each reservation is mirrored as up to two events: a public one carrying only
court and time, and a private one that adds the booker's details. Both are
written through one visibility-aware path so the two representations cannot
drift apart. The private calendar is optional; without it only public events
are written and the private event id stays empty.

Authentication uses a service account: a JWT assertion signed with the
account's RSA key is exchanged for an access token at the token endpoint.
"""

import enum
import logging
import time as _time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import httpx
from jose import jwt

from venuebook.core.config import Settings
from venuebook.models.reservation import Reservation
from venuebook.services.booking_rules import end_datetime, fmt_time

logger = logging.getLogger(__name__)

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

REMINDERS = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 24 * 60},
        {"method": "popup", "minutes": 30},
    ],
}


class CalendarError(Exception):
    """A calendar API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class Visibility(enum.StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class EventIds:
    public_event_id: str | None = None
    private_event_id: str | None = None

    @classmethod
    def of(cls, reservation: Reservation) -> "EventIds":
        return cls(reservation.external_public_event_id, reservation.external_private_event_id)

    def get(self, visibility: Visibility) -> str | None:
        return self.public_event_id if visibility == Visibility.PUBLIC else self.private_event_id

    def __bool__(self) -> bool:
        return bool(self.public_event_id or self.private_event_id)


@dataclass(frozen=True)
class CalendarEvent:
    """What the calendar needs to know about one reservation."""

    reservation_id: int
    court_id: int
    court_name: str
    booking_date: date
    start_time: time
    end_time: time
    participants: int
    status: str
    user_id: int
    user_name: str
    user_email: str
    user_phone: str | None
    timezone: str

    @classmethod
    def from_reservation(cls, reservation: Reservation, timezone: str) -> "CalendarEvent":
        """Build from a reservation with its court and user loaded."""
        return cls(
            reservation_id=reservation.id,
            court_id=reservation.court_id,
            court_name=reservation.court.name,
            booking_date=reservation.booking_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            participants=reservation.participants,
            status=reservation.status.value,
            user_id=reservation.user_id,
            user_name=reservation.user.name,
            user_email=reservation.user.email,
            user_phone=reservation.user.phone,
            timezone=timezone,
        )

    def _when(self, wall_clock: datetime) -> dict:
        moment = wall_clock.replace(tzinfo=ZoneInfo(self.timezone))
        return {"dateTime": moment.isoformat(), "timeZone": self.timezone}

    def body(self, visibility: Visibility) -> dict:
        """Event resource for the calendar of the given visibility."""
        slot = f"{self.booking_date.isoformat()} {fmt_time(self.start_time)}-{fmt_time(self.end_time)}"
        lines = [
            "Booking details:",
            f"- Court: {self.court_name}",
            f"- Time: {slot}",
        ]
        summary = f"Court booking - {self.court_name}"

        resource = {
            "start": self._when(datetime.combine(self.booking_date, self.start_time)),
            "end": self._when(end_datetime(self.booking_date, self.end_time)),
            "reminders": REMINDERS,
        }
        if visibility == Visibility.PRIVATE:
            summary += f" ({self.user_name})"
            lines += [
                f"- Booked by: {self.user_name}",
                f"- Contact: {self.user_email} / {self.user_phone or '-'}",
                f"- Participants: {self.participants}",
                f"- Reservation: {self.reservation_id}",
                f"- Status: {self.status}",
            ]
            resource["extendedProperties"] = {
                "private": {
                    "reservationId": str(self.reservation_id),
                    "userId": str(self.user_id),
                    "courtId": str(self.court_id),
                }
            }

        resource["summary"] = summary
        resource["description"] = "\n".join(lines)
        return resource


class GoogleCalendarClient:
    """Minimal Calendar v3 REST client: insert, update and delete events."""

    def __init__(
        self,
        client_email: str,
        private_key: str,
        token_uri: str,
        api_base: str,
        timeout: float | None = 30.0,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = _time.time,
    ):
        self.client_email = client_email
        self.private_key = private_key
        self.token_uri = token_uri
        self.api_base = api_base.rstrip("/")
        self.http = http or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _assertion(self, now: int) -> str:
        claims = {
            "iss": self.client_email,
            "scope": CALENDAR_SCOPE,
            "aud": self.token_uri,
            "iat": now,
            "exp": now + 3600,
        }
        return jwt.encode(claims, self.private_key, algorithm="RS256")

    async def _access_token(self) -> str:
        now = int(self._clock())
        # Refresh a minute early so a token never expires mid-request
        if self._token and now < self._token_expires_at - 60:
            return self._token

        try:
            response = await self.http.post(
                self.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self._assertion(now)},
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"Token request failed: {e}") from e
        if response.status_code != 200:
            raise CalendarError(f"Token request rejected: {response.text}", response.status_code)

        payload = response.json()
        self._token = payload["access_token"]
        self._token_expires_at = now + int(payload.get("expires_in", 3600))
        return self._token

    async def _request(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        token = await self._access_token()
        try:
            return await self.http.request(
                method,
                f"{self.api_base}{path}",
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for(response: httpx.Response, action: str) -> None:
        if response.is_error:
            raise CalendarError(f"Calendar {action} failed ({response.status_code}): {response.text}", response.status_code)

    async def insert_event(self, calendar_id: str, body: dict) -> str:
        response = await self._request("POST", f"/calendars/{calendar_id}/events", json=body)
        self._raise_for(response, "insert")
        return response.json()["id"]

    async def update_event(self, calendar_id: str, event_id: str, body: dict) -> str:
        response = await self._request("PUT", f"/calendars/{calendar_id}/events/{event_id}", json=body)
        self._raise_for(response, "update")
        return response.json()["id"]

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        response = await self._request("DELETE", f"/calendars/{calendar_id}/events/{event_id}")
        if response.status_code in (404, 410):
            logger.info("Event %s already gone from calendar %s", event_id, calendar_id)
            return True
        self._raise_for(response, "delete")
        return True

    async def aclose(self) -> None:
        await self.http.aclose()


class ExternalCalendarAdapter:
    """Create, update and delete the mirror of one reservation across visibilities."""

    def __init__(self, client: GoogleCalendarClient, calendars: dict[Visibility, str]):
        self.client = client
        self.calendars = calendars

    def _visibilities(self) -> list[Visibility]:
        return [v for v in Visibility if self.calendars.get(v)]

    async def create_one(self, event: CalendarEvent, visibility: Visibility) -> str:
        return await self.client.insert_event(self.calendars[visibility], event.body(visibility))

    async def _roll_back(self, created: dict[Visibility, str]) -> None:
        for visibility, event_id in created.items():
            try:
                await self.client.delete_event(self.calendars[visibility], event_id)
            except CalendarError:
                logger.warning("Could not roll back %s event %s", visibility.value, event_id)

    async def create(self, event: CalendarEvent) -> EventIds:
        """Create every configured representation. Partial creates are rolled back on failure."""
        created: dict[Visibility, str] = {}
        try:
            for visibility in self._visibilities():
                created[visibility] = await self.create_one(event, visibility)
        except Exception:
            await self._roll_back(created)
            raise
        return EventIds(created.get(Visibility.PUBLIC), created.get(Visibility.PRIVATE))

    async def update(self, ids: EventIds, event: CalendarEvent) -> EventIds:
        """Rewrite existing events; a representation that was never created is created now.

        Events created here are deleted again if a later write fails.
        """
        result: dict[Visibility, str] = {}
        created: dict[Visibility, str] = {}
        try:
            for visibility in self._visibilities():
                event_id = ids.get(visibility)
                calendar_id = self.calendars[visibility]
                if event_id:
                    result[visibility] = await self.client.update_event(calendar_id, event_id, event.body(visibility))
                else:
                    result[visibility] = created[visibility] = await self.create_one(event, visibility)
        except Exception:
            await self._roll_back(created)
            raise
        return EventIds(result.get(Visibility.PUBLIC), result.get(Visibility.PRIVATE))

    async def delete(self, ids: EventIds) -> bool:
        """Delete every stored representation. Already-deleted events count as success."""
        ok = True
        for visibility in Visibility:
            event_id = ids.get(visibility)
            if not event_id:
                continue
            calendar_id = self.calendars.get(visibility)
            if not calendar_id:
                logger.warning("No %s calendar configured, cannot delete event %s", visibility.value, event_id)
                ok = False
                continue
            ok = await self.client.delete_event(calendar_id, event_id) and ok
        return ok

    async def aclose(self) -> None:
        await self.client.aclose()


def build_calendar_adapter(config: Settings, http: httpx.AsyncClient | None = None) -> ExternalCalendarAdapter:
    client = GoogleCalendarClient(
        client_email=config.calendar_client_email,
        private_key=config.calendar_private_key.replace("\\n", "\n"),
        token_uri=config.calendar_token_uri,
        api_base=config.calendar_api_base,
        timeout=config.calendar_request_timeout,
        http=http,
    )
    calendars = {Visibility.PUBLIC: config.calendar_public_id}
    if config.calendar_private_id:
        calendars[Visibility.PRIVATE] = config.calendar_private_id
    return ExternalCalendarAdapter(client, calendars)
