from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from timboard.models import ExternalEvent, Snapshot


class SnapshotStore:
    """Last-seen (title, description, start) per external event id.

    Read-only during a pass; the next map is built from the batch with
    :meth:`rebuild` and replaces this one wholesale.
    """

    def __init__(self, snapshots: Mapping[str, Snapshot] | None = None) -> None:
        self._snapshots: dict[str, Snapshot] = dict(snapshots or {})

    def get(self, external_id: str) -> Snapshot | None:
        return self._snapshots.get(external_id)

    def diff(self, external_id: str, title: str, description: str, start: str) -> bool:
        previous = self._snapshots.get(external_id)
        if previous is None:
            return False
        return previous != Snapshot(title=title, description=description, start_date=start)

    @staticmethod
    def rebuild(batch: Iterable[ExternalEvent]) -> dict[str, Snapshot]:
        return {event.external_id: Snapshot.of(event) for event in batch}

    def as_dict(self) -> dict[str, Snapshot]:
        return dict(self._snapshots)

    def __len__(self) -> int:
        return len(self._snapshots)


class TombstoneSet:
    """External ids deleted locally. Append-only; cleared only by a reset."""

    def __init__(self, external_ids: Iterable[str] = ()) -> None:
        self._ids: list[str] = []
        self._seen: set[str] = set()
        for external_id in external_ids:
            self.record(external_id)

    def record(self, external_id: str) -> bool:
        external_id = str(external_id or "").strip()
        if not external_id or external_id in self._seen:
            return False
        self._seen.add(external_id)
        self._ids.append(external_id)
        return True

    def is_tombstoned(self, external_id: str | None) -> bool:
        return bool(external_id) and external_id in self._seen

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._seen

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)
