from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable

import caldav
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from timboard.models import CalDAVConfig, ExternalEvent, parse_task_start, serialize_provider_time


def _normalize_calendar_id(value: str) -> str:
    return str(value or "").strip().rstrip("/")


def _first_vevent(calendar_obj: ICalendar) -> ICEvent | None:
    for component in calendar_obj.walk():
        if component.name == "VEVENT":
            return component
    return None


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _decoded(vevent: ICEvent, key: str) -> Any:
    if vevent.get(key) is None:
        return None
    return vevent.decoded(key)


def _instance_id(uid: str, recurrence_id: Any) -> str:
    # Expanded recurring instances share a UID; suffix the occurrence.
    if isinstance(recurrence_id, datetime):
        return f"{uid}_{recurrence_id.strftime('%Y%m%dT%H%M%S')}"
    if isinstance(recurrence_id, date):
        return f"{uid}_{recurrence_id.strftime('%Y%m%d')}"
    return uid


def _start_key(event: ExternalEvent) -> tuple[int, float]:
    start = parse_task_start(event.start)
    if start is None:
        return (1, 0.0)
    return (0, start.timestamp())


def parse_ical_event(raw_ical: str, calendar_id: str = "") -> ExternalEvent | None:
    calendar_obj = ICalendar.from_ical(raw_ical)
    vevent = _first_vevent(calendar_obj)
    if vevent is None:
        return None
    uid = str(vevent.get("UID", "")).strip()
    if not uid:
        return None
    dtstart = _decoded(vevent, "DTSTART")
    dtend = _decoded(vevent, "DTEND")
    return ExternalEvent(
        external_id=_instance_id(uid, _decoded(vevent, "RECURRENCE-ID")),
        title=str(vevent.get("SUMMARY", "")).strip(),
        description=str(vevent.get("DESCRIPTION", "")).strip(),
        start=serialize_provider_time(dtstart) if isinstance(dtstart, date) else "",
        end=serialize_provider_time(dtend) if isinstance(dtend, date) else None,
        all_day=isinstance(dtstart, date) and not isinstance(dtstart, datetime),
        calendar_id=calendar_id,
    )


class CalDAVService:
    """Read-only provider fetch. Errors propagate to the sync pass."""

    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar_cache: dict[str, Any] = {}

    def _connect(self) -> None:
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise RuntimeError("CalDAV config is incomplete.")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        self._principal = self._client.principal()

    def list_calendars(self) -> list[dict[str, str]]:
        self._connect()
        self._calendar_cache = {}
        calendars: list[dict[str, str]] = []
        for calendar in self._principal.calendars():
            calendar_id = _normalize_calendar_id(str(calendar.url))
            self._calendar_cache[calendar_id] = calendar
            calendars.append({"calendar_id": calendar_id, "name": getattr(calendar, "name", "") or calendar_id})
        return calendars

    def _get_calendar(self, calendar_id: str) -> Any:
        calendar_id = _normalize_calendar_id(calendar_id)
        if calendar_id not in self._calendar_cache:
            self.list_calendars()
        if calendar_id not in self._calendar_cache:
            raise RuntimeError(f"Calendar not found: {calendar_id}")
        return self._calendar_cache[calendar_id]

    def fetch_events(self, calendar_id: str, start: datetime, end: datetime) -> list[ExternalEvent]:
        self._connect()
        calendar = self._get_calendar(calendar_id)
        resources = calendar.search(start=start, end=end, event=True, expand=True)
        events: list[ExternalEvent] = []
        for item in resources:
            event = parse_ical_event(_decode_raw_ical(item.data), calendar_id)
            if event is not None:
                events.append(event)
        return events

    def fetch_window(self, calendar_ids: Iterable[str], start: datetime, end: datetime) -> list[ExternalEvent]:
        """Fetch every configured calendar (all of them when none are set).

        Any failure aborts the whole fetch so a partial batch never reaches
        the reconciler.
        """
        selected = [_normalize_calendar_id(cid) for cid in calendar_ids if _normalize_calendar_id(cid)]
        if not selected:
            selected = [item["calendar_id"] for item in self.list_calendars()]
        events: list[ExternalEvent] = []
        for calendar_id in selected:
            events.extend(self.fetch_events(calendar_id, start, end))
        events.sort(key=_start_key)
        return events
