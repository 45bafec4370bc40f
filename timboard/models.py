from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, ClassVar, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


URGENT = "URGENT"
WEEKLY = "WEEKLY"
COLLAB = "COLLAB"
HOLD_FIX = "HOLD_FIX"
PERSONAL = "PERSONAL"
STOCK = "STOCK"

# Internal "generic music work" bucket; never stored on a task.
MUSIC = "MUSIC"

TASK_CATEGORIES = (URGENT, WEEKLY, COLLAB, HOLD_FIX, PERSONAL, STOCK)
PERSONAL_SUB_CATEGORIES = ("YOUTUBE", "AUTOMATION", "GENERAL")

COLLAB_STATUSES = ("REQUESTED", "IN_PROGRESS", "COMPLETED")
HOLD_FIX_TYPES = ("HOLD", "FIX", "RELEASE")
PITCHING_GRADES = ("S", "A", "A_JPN")

PLACEHOLDER = "TBD"
NO_TITLE = "(No Title)"
EXTERNAL_TASK_PREFIX = "gcal-"

DEFAULT_AI_BASE_URL = "https://api.openai.com/v1"


def _ensure_tz(dt: datetime, tz: tzinfo = timezone.utc) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt


def parse_iso_datetime(value: str | datetime | None, tz: tzinfo = timezone.utc) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value, tz)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed, tz)


def parse_task_start(value: str | datetime | None, tz: tzinfo = timezone.utc) -> datetime | None:
    """Lenient variant of :func:`parse_iso_datetime`.

    Empty or unparseable values yield ``None`` instead of raising. Date-only
    strings resolve to midnight in ``tz``.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        return parse_iso_datetime(value, tz)
    except (TypeError, ValueError):
        return None


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def serialize_provider_time(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value).isoformat()
    return value.isoformat()


def resolve_timezone(name: str) -> tzinfo:
    text = str(name or "").strip()
    if not text or text.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {"start": serialize_datetime(self.start), "end": serialize_datetime(self.end)}


def sync_window(now: datetime, past_days: int = 5, future_days: int = 14) -> SyncWindow:
    local_now = _ensure_tz(now)
    first_day = (local_now - timedelta(days=max(0, past_days))).date()
    last_day = (local_now + timedelta(days=max(0, future_days))).date()
    return SyncWindow(
        start=datetime.combine(first_day, time.min, tzinfo=local_now.tzinfo),
        end=datetime.combine(last_day, time.max, tzinfo=local_now.tzinfo),
    )


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""
    calendar_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        raw_ids = data.get("calendar_ids") or []
        if not isinstance(raw_ids, list):
            raw_ids = [raw_ids]
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
            calendar_ids=[str(x).strip() for x in raw_ids if str(x).strip()],
        )


@dataclass
class AIConfig:
    base_url: str = DEFAULT_AI_BASE_URL
    api_key: str = ""
    model: str = "gpt-4o-mini"
    timeout_seconds: int = 30
    max_workers: int = 4

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AIConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip() or DEFAULT_AI_BASE_URL,
            api_key=str(data.get("api_key", "")).strip(),
            model=str(data.get("model", "gpt-4o-mini")).strip() or "gpt-4o-mini",
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
            max_workers=max(1, int(data.get("max_workers", 4))),
        )


@dataclass
class SyncConfig:
    window_past_days: int = 5
    window_future_days: int = 14
    interval_seconds: int = 300
    timezone: str = "UTC"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            window_past_days=max(0, int(data.get("window_past_days", 5))),
            window_future_days=max(1, int(data.get("window_future_days", 14))),
            interval_seconds=max(30, int(data.get("interval_seconds", 300))),
            timezone=str(data.get("timezone", "UTC")).strip() or "UTC",
        )


@dataclass
class AppConfig:
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            ai=AIConfig.from_dict(data.get("ai")),
            sync=SyncConfig.from_dict(data.get("sync")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class CollabDetails:
    kind: ClassVar[str] = COLLAB

    track_name: str = ""
    song_name: str = ""
    track_producer: str = PLACEHOLDER
    top_liner: str = PLACEHOLDER
    target_artist: str = PLACEHOLDER
    deadline: str = ""
    requested_date: str = ""
    status: str = "REQUESTED"
    notes: str = ""
    publishing_info: str = ""
    mix_monitor_sent: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CollabDetails":
        status = str(data.get("status", "REQUESTED")).strip().upper()
        return cls(
            track_name=str(data.get("track_name", "") or ""),
            song_name=str(data.get("song_name", "") or ""),
            track_producer=str(data.get("track_producer", PLACEHOLDER) or PLACEHOLDER),
            top_liner=str(data.get("top_liner", PLACEHOLDER) or PLACEHOLDER),
            target_artist=str(data.get("target_artist", PLACEHOLDER) or PLACEHOLDER),
            deadline=str(data.get("deadline", "") or ""),
            requested_date=str(data.get("requested_date", "") or ""),
            status=status if status in COLLAB_STATUSES else "REQUESTED",
            notes=str(data.get("notes", "") or ""),
            publishing_info=str(data.get("publishing_info", "") or ""),
            mix_monitor_sent=bool(data.get("mix_monitor_sent", False)),
        )


@dataclass
class HoldFixDetails:
    kind: ClassVar[str] = HOLD_FIX

    type: str = "HOLD"
    demo_name: str = ""
    writers: list[str] = field(default_factory=list)
    splits: dict[str, float] = field(default_factory=dict)
    publishing_info: str = ""
    email: str = ""
    hold_requested_date: str = ""
    target_artist: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HoldFixDetails":
        hold_type = str(data.get("type", "HOLD")).strip().upper()
        raw_splits = data.get("splits") or {}
        splits: dict[str, float] = {}
        if isinstance(raw_splits, dict):
            for name, value in raw_splits.items():
                try:
                    splits[str(name)] = float(value)
                except (TypeError, ValueError):
                    continue
        return cls(
            type=hold_type if hold_type in HOLD_FIX_TYPES else "HOLD",
            demo_name=str(data.get("demo_name", "") or ""),
            writers=[str(x) for x in data.get("writers") or [] if str(x).strip()],
            splits=splits,
            publishing_info=str(data.get("publishing_info", "") or ""),
            email=str(data.get("email", "") or ""),
            hold_requested_date=str(data.get("hold_requested_date", "") or ""),
            target_artist=str(data.get("target_artist", "") or ""),
            notes=str(data.get("notes", "") or ""),
        )


@dataclass
class StockDetails:
    kind: ClassVar[str] = STOCK

    ticker: str = "STOCK"
    note: str = ""
    related_news_title: str = ""
    related_news_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StockDetails":
        return cls(
            ticker=str(data.get("ticker", "") or "STOCK"),
            note=str(data.get("note", "") or ""),
            related_news_title=str(data.get("related_news_title", "") or ""),
            related_news_url=str(data.get("related_news_url", "") or ""),
        )


TaskDetail = Union[CollabDetails, HoldFixDetails, StockDetails]

DETAIL_TYPES: dict[str, type] = {
    COLLAB: CollabDetails,
    HOLD_FIX: HoldFixDetails,
    STOCK: StockDetails,
}


def detail_to_dict(detail: TaskDetail | None) -> dict[str, Any] | None:
    if detail is None:
        return None
    payload = asdict(detail)
    payload["kind"] = detail.kind
    return payload


def detail_from_dict(data: dict[str, Any] | None) -> TaskDetail | None:
    if not isinstance(data, dict):
        return None
    detail_type = DETAIL_TYPES.get(str(data.get("kind", "")).strip().upper())
    if detail_type is None:
        return None
    return detail_type.from_dict(data)


def category_has_detail(category: str) -> bool:
    return category in DETAIL_TYPES


@dataclass
class Task:
    id: str
    title: str
    start_date: str
    category: str = WEEKLY
    description: str = ""
    end_date: str | None = None
    sub_category: str | None = None
    starred: bool = False
    detail: TaskDetail | None = None
    external_id: str | None = None
    last_synced_at: str | None = None
    user_edited: bool = False
    drift_flag: bool = False

    def clone(self) -> "Task":
        return replace(self, detail=copy.deepcopy(self.detail))

    def with_updates(self, **kwargs: Any) -> "Task":
        copied = self.clone()
        for key, value in kwargs.items():
            setattr(copied, key, value)
        return copied

    def content(self) -> tuple[Any, ...]:
        """Fields a user may edit; sync stamps and flags are excluded."""
        return (
            self.title,
            self.description,
            self.start_date,
            self.end_date,
            self.category,
            self.sub_category,
            detail_to_dict(self.detail),
        )

    def detail_matches_category(self) -> bool:
        if self.detail is None:
            return True
        return self.detail.kind == self.category

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "category": self.category,
            "sub_category": self.sub_category,
            "starred": self.starred,
            "detail": detail_to_dict(self.detail),
            "external_id": self.external_id,
            "last_synced_at": self.last_synced_at,
            "user_edited": self.user_edited,
            "drift_flag": self.drift_flag,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        category = str(data.get("category", WEEKLY)).strip().upper()
        if category not in TASK_CATEGORIES:
            category = WEEKLY
        sub_category = data.get("sub_category")
        if category != PERSONAL or sub_category not in PERSONAL_SUB_CATEGORIES:
            sub_category = None
        end_date = data.get("end_date")
        external_id = data.get("external_id")
        last_synced_at = data.get("last_synced_at")
        return cls(
            id=str(data.get("id", "")).strip(),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            start_date=str(data.get("start_date", "") or ""),
            end_date=str(end_date) if end_date else None,
            category=category,
            sub_category=sub_category,
            starred=bool(data.get("starred", False)),
            detail=detail_from_dict(data.get("detail")),
            external_id=str(external_id) if external_id else None,
            last_synced_at=str(last_synced_at) if last_synced_at else None,
            user_edited=bool(data.get("user_edited", False)),
            drift_flag=bool(data.get("drift_flag", False)),
        )


@dataclass
class PitchingIdea:
    id: str
    demo_name: str
    writers: list[str] = field(default_factory=list)
    publishing_info: str = ""
    grade: str = "A"
    source_collab_id: str | None = None
    created_at: str = ""
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PitchingIdea":
        grade = str(data.get("grade", "A")).strip().upper()
        raw_writers = data.get("writers") or []
        if isinstance(raw_writers, str):
            raw_writers = raw_writers.split(",")
        source_collab_id = data.get("source_collab_id")
        return cls(
            id=str(data.get("id", "")).strip(),
            demo_name=str(data.get("demo_name", "") or "").strip(),
            writers=[str(x).strip() for x in raw_writers if str(x).strip()],
            publishing_info=str(data.get("publishing_info", "") or ""),
            grade=grade if grade in PITCHING_GRADES else "A",
            source_collab_id=str(source_collab_id) if source_collab_id else None,
            created_at=str(data.get("created_at", "") or ""),
            notes=str(data.get("notes", "") or ""),
        )


def external_task_id(external_id: str) -> str:
    return f"{EXTERNAL_TASK_PREFIX}{external_id}"


@dataclass
class ExternalEvent:
    external_id: str
    title: str = NO_TITLE
    description: str = ""
    start: str = ""
    end: str | None = None
    all_day: bool = False
    calendar_id: str = ""

    def __post_init__(self) -> None:
        self.title = str(self.title or "").strip() or NO_TITLE
        self.description = str(self.description or "")
        self.start = str(self.start or "").strip()
        self.end = str(self.end).strip() if self.end else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Snapshot:
    title: str
    description: str
    start_date: str

    @classmethod
    def of(cls, event: ExternalEvent) -> "Snapshot":
        return cls(title=event.title, description=event.description, start_date=event.start)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        return cls(
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            start_date=str(data.get("start_date", "") or ""),
        )


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    trigger: str
    created: int = 0
    updated: int = 0
    dropped: int = 0
    drifted: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "trigger": self.trigger,
            "created": self.created,
            "updated": self.updated,
            "dropped": self.dropped,
            "drifted": self.drifted,
            "run_at": serialize_datetime(self.run_at),
        }
