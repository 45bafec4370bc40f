from __future__ import annotations

import logging
import threading
import traceback
from datetime import datetime, timezone, tzinfo
from typing import Any, Iterable

from timboard.ai_client import OpenAICompatibleClient
from timboard.caldav_client import CalDAVService
from timboard.classifier import Classifier
from timboard.config_manager import ConfigManager
from timboard.models import (
    ExternalEvent,
    SyncResult,
    SyncWindow,
    parse_task_start,
    resolve_timezone,
    sync_window,
)
from timboard.reconciler import ReconcileResult, reconcile
from timboard.snapshots import TombstoneSet
from timboard.state_store import StateStore

logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _classifiable(batch: Iterable[ExternalEvent], tombstones: TombstoneSet, tz: tzinfo) -> list[ExternalEvent]:
    """Events the reconciler would act on; skipped ones never reach the model."""
    return [
        event
        for event in batch
        if not tombstones.is_tombstoned(event.external_id) and parse_task_start(event.start, tz) is not None
    ]


def _audit_entries(result: ReconcileResult, classifications: dict[str, Any]) -> list[tuple[str, str, dict[str, Any]]]:
    entries: list[tuple[str, str, dict[str, Any]]] = []
    for external_id in result.created:
        entries.append((external_id, "create_task", {}))
    for external_id in result.updated:
        entries.append((external_id, "update_task", {}))
    for external_id in result.dropped:
        entries.append((external_id, "drop_task", {"reason": "absent_from_provider_window"}))
    for external_id in result.drifted:
        entries.append((external_id, "drift_detected", {}))
    for external_id in result.skipped_tombstoned:
        entries.append((external_id, "skip_tombstoned", {}))
    for external_id in result.skipped_invalid:
        entries.append((external_id, "skip_invalid_start", {}))
    for external_id, classification in classifications.items():
        if classification.error:
            entries.append((external_id, "classification_failed", {"error": classification.error}))
    return entries


class SyncEngine:
    """Runs one provider → local merge pass at a time."""

    def __init__(self, config_manager: ConfigManager, state_store: StateStore) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self._run_lock = threading.Lock()

    def run_once(
        self,
        trigger: str = "manual",
        window_start_override: datetime | None = None,
        window_end_override: datetime | None = None,
        now: datetime | None = None,
    ) -> SyncResult:
        with self._run_lock:
            return self._run(trigger, window_start_override, window_end_override, now)

    def _resolve_window(
        self,
        now: datetime,
        past_days: int,
        future_days: int,
        window_start_override: datetime | None,
        window_end_override: datetime | None,
    ) -> SyncWindow:
        if (window_start_override is None) ^ (window_end_override is None):
            raise ValueError("window_start_override and window_end_override must both be provided")
        if window_start_override is not None and window_end_override is not None:
            window = SyncWindow(
                start=window_start_override.astimezone(timezone.utc),
                end=window_end_override.astimezone(timezone.utc),
            )
            if window.end < window.start:
                raise ValueError("window_end_override must be later than window_start_override")
            return window
        return sync_window(now, past_days, future_days)

    def _run(
        self,
        trigger: str,
        window_start_override: datetime | None,
        window_end_override: datetime | None,
        now: datetime | None,
    ) -> SyncResult:
        started_at = datetime.now(timezone.utc)
        run_id = self.state_store.start_sync_run(trigger=trigger)
        try:
            config = self.config_manager.load()
            if not config.caldav.base_url or not config.caldav.username:
                message = "CalDAV config missing base_url/username. Sync skipped."
                duration_ms = _elapsed_ms(started_at)
                self.state_store.finish_sync_run(
                    run_id=run_id, status="skipped", message=message, duration_ms=duration_ms
                )
                return SyncResult(status="skipped", message=message, duration_ms=duration_ms, trigger=trigger)

            tz = resolve_timezone(config.sync.timezone)
            local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
            window = self._resolve_window(
                local_now,
                config.sync.window_past_days,
                config.sync.window_future_days,
                window_start_override,
                window_end_override,
            )

            caldav_service = CalDAVService(config.caldav)
            batch = caldav_service.fetch_window(config.caldav.calendar_ids, window.start, window.end)

            classifier = Classifier(OpenAICompatibleClient(config.ai), max_workers=config.ai.max_workers)
            classifications = classifier.classify_batch(
                _classifiable(batch, self.state_store.load_tombstones(), tz)
            )

            # Tasks are loaded after the fetch so local edits made meanwhile are merged, not lost.
            with self.state_store.lock:
                result = reconcile(
                    tasks=self.state_store.load_tasks(),
                    batch=batch,
                    snapshots=self.state_store.load_snapshots(),
                    tombstones=self.state_store.load_tombstones(),
                    window=window,
                    classifications=classifications,
                    now=now,
                    tz=tz,
                )
                self.state_store.commit_sync(result.tasks, result.snapshots)
            self.state_store.set_meta("last_sync_at", started_at.isoformat())

            for external_id, action, details in _audit_entries(result, classifications):
                details["trigger"] = trigger
                self.state_store.record_audit_event(
                    external_id=external_id,
                    action=action,
                    details=details,
                    run_id=run_id,
                )

            duration_ms = _elapsed_ms(started_at)
            message = (
                f"Processed {len(batch)} events: {len(result.created)} created, "
                f"{len(result.updated)} updated, {len(result.dropped)} dropped."
            )
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="success",
                message=message,
                duration_ms=duration_ms,
                created=len(result.created),
                updated=len(result.updated),
                dropped=len(result.dropped),
                drifted=len(result.drifted),
            )
            return SyncResult(
                status="success",
                message=f"{message} run_id={run_id}",
                duration_ms=duration_ms,
                trigger=trigger,
                created=len(result.created),
                updated=len(result.updated),
                dropped=len(result.dropped),
                drifted=len(result.drifted),
            )
        except Exception as exc:
            logger.exception("sync run %s failed", run_id)
            duration_ms = _elapsed_ms(started_at)
            error_message = f"{type(exc).__name__}: {exc}"
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="error",
                message=error_message,
                duration_ms=duration_ms,
            )
            self.state_store.record_audit_event(
                external_id="sync",
                action="run_error",
                details={
                    "trigger": trigger,
                    "error": error_message,
                    "traceback": traceback.format_exc(limit=5),
                },
                run_id=run_id,
            )
            return SyncResult(status="error", message=error_message, duration_ms=duration_ms, trigger=trigger)
