from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Iterable, Mapping

from timboard.classifier import ClassificationResult, Classifier
from timboard.hydrator import hydrate
from timboard.models import (
    ExternalEvent,
    Snapshot,
    SyncWindow,
    Task,
    external_task_id,
    parse_task_start,
    serialize_datetime,
)
from timboard.snapshots import SnapshotStore, TombstoneSet


@dataclass
class ReconcileResult:
    tasks: list[Task]
    snapshots: dict[str, Snapshot]
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    drifted: list[str] = field(default_factory=list)
    skipped_tombstoned: list[str] = field(default_factory=list)
    skipped_invalid: list[str] = field(default_factory=list)


def _in_window(task: Task, window: SyncWindow, tz: tzinfo) -> bool:
    start = parse_task_start(task.start_date, tz)
    return start is not None and window.contains(start)


def _should_drop(task: Task, batch_ids: set[str], window: SyncWindow, tz: tzinfo) -> bool:
    if not task.external_id or task.user_edited:
        return False
    return task.external_id not in batch_ids and _in_window(task, window, tz)


def _touch(task: Task, event: ExternalEvent, synced_at: str, *, fill_end_only: bool) -> Task:
    end_date = task.end_date
    if event.end and (not fill_end_only or not task.end_date):
        end_date = event.end
    return task.with_updates(last_synced_at=synced_at, end_date=end_date)


def _sort_key(task: Task, tz: tzinfo) -> tuple[int, float]:
    start = parse_task_start(task.start_date, tz)
    if start is None:
        return (1, 0.0)
    return (0, start.timestamp())


def reconcile(
    *,
    tasks: Iterable[Task],
    batch: Iterable[ExternalEvent],
    snapshots: SnapshotStore | Mapping[str, Snapshot],
    tombstones: TombstoneSet | Iterable[str],
    window: SyncWindow,
    classifications: Mapping[str, ClassificationResult] | None = None,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> ReconcileResult:
    """Fold one provider batch into the local task collection.

    Pure: inputs are never mutated and nothing is persisted. Events without a
    precomputed classification fall back to the keyword table.
    """
    events = list(batch)
    previous = snapshots if isinstance(snapshots, SnapshotStore) else SnapshotStore(snapshots)
    deleted = tombstones if isinstance(tombstones, TombstoneSet) else TombstoneSet(tombstones)
    classifications = classifications or {}
    keyword_classifier = Classifier()
    synced_at = serialize_datetime(now or datetime.now(timezone.utc))
    result = ReconcileResult(tasks=[], snapshots={})

    batch_ids = {event.external_id for event in events}
    working: list[Task] = []
    for task in tasks:
        if _should_drop(task, batch_ids, window, tz):
            result.dropped.append(task.external_id)
            continue
        working.append(task.clone())

    index: dict[str, int] = {}
    for position, task in enumerate(working):
        if task.external_id:
            index.setdefault(task.external_id, position)

    for event in events:
        external_id = event.external_id
        if deleted.is_tombstoned(external_id):
            result.skipped_tombstoned.append(external_id)
            continue
        if parse_task_start(event.start, tz) is None:
            result.skipped_invalid.append(external_id)
            continue

        classification = classifications.get(external_id) or keyword_classifier.classify(
            event.title, event.description
        )
        position = index.get(external_id)

        if position is not None:
            existing = working[position]
            if existing.user_edited:
                working[position] = _touch(existing, event, synced_at, fill_end_only=True)
            elif existing.detail is not None:
                working[position] = _touch(existing, event, synced_at, fill_end_only=False)
            else:
                changed = previous.diff(external_id, event.title, event.description, event.start)
                if changed:
                    result.drifted.append(external_id)
                working[position] = existing.with_updates(
                    title=event.title,
                    description=event.description,
                    start_date=event.start,
                    end_date=event.end,
                    category=classification.category,
                    sub_category=classification.sub_category,
                    detail=hydrate(
                        classification.category,
                        event.title,
                        event.start,
                        classification.hints,
                        event.description,
                    ),
                    last_synced_at=synced_at,
                    drift_flag=existing.drift_flag or changed,
                )
            result.updated.append(external_id)
            continue

        working.append(
            Task(
                id=external_task_id(external_id),
                title=event.title,
                description=event.description,
                start_date=event.start,
                end_date=event.end,
                category=classification.category,
                sub_category=classification.sub_category,
                detail=hydrate(
                    classification.category,
                    event.title,
                    event.start,
                    classification.hints,
                    event.description,
                ),
                external_id=external_id,
                last_synced_at=synced_at,
            )
        )
        index[external_id] = len(working) - 1
        result.created.append(external_id)

    result.tasks = sorted(working, key=lambda task: _sort_key(task, tz))
    result.snapshots = SnapshotStore.rebuild(events)
    return result
