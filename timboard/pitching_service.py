from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from timboard.models import PITCHING_GRADES, PLACEHOLDER, CollabDetails, PitchingIdea
from timboard.state_store import StateStore
from timboard.task_service import TaskNotFoundError


EDITABLE_FIELDS = ("demo_name", "writers", "publishing_info", "grade", "notes")


class PitchingIdeaNotFoundError(KeyError):
    pass


def _new_id() -> str:
    return f"pitch-{uuid.uuid4().hex[:12]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _grade(value: Any) -> str:
    grade = str(value or "").strip().upper()
    if grade not in PITCHING_GRADES:
        raise ValueError(f"Unknown pitching grade: {value}")
    return grade


class PitchingService:
    """Pitching list actions, including promoting a board task into an idea."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def list_ideas(self, grade: str | None = None) -> list[PitchingIdea]:
        ideas = self.state_store.load_pitching_ideas()
        if grade:
            wanted = grade.strip().upper()
            ideas = [idea for idea in ideas if idea.grade == wanted]
        return ideas

    def add_idea(self, payload: dict[str, Any]) -> PitchingIdea:
        fields = {key: value for key, value in payload.items() if key in EDITABLE_FIELDS}
        idea = PitchingIdea.from_dict({**fields, "id": _new_id(), "created_at": _now()})
        if not idea.demo_name:
            raise ValueError("demo_name is required")
        idea.grade = _grade(payload.get("grade", "A"))
        with self.state_store.lock:
            ideas = self.state_store.load_pitching_ideas()
            ideas.append(idea)
            self.state_store.save_pitching_ideas(ideas)
        return idea

    def update_idea(self, idea_id: str, updates: dict[str, Any]) -> PitchingIdea:
        unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(unknown)}")
        if "grade" in updates:
            _grade(updates["grade"])
        with self.state_store.lock:
            ideas = self.state_store.load_pitching_ideas()
            for position, idea in enumerate(ideas):
                if idea.id != idea_id:
                    continue
                ideas[position] = PitchingIdea.from_dict({**idea.to_dict(), **updates})
                self.state_store.save_pitching_ideas(ideas)
                return ideas[position]
        raise PitchingIdeaNotFoundError(idea_id)

    def move_grade(self, idea_id: str, grade: str) -> PitchingIdea:
        return self.update_idea(idea_id, {"grade": grade})

    def delete_idea(self, idea_id: str) -> PitchingIdea:
        with self.state_store.lock:
            ideas = self.state_store.load_pitching_ideas()
            for position, idea in enumerate(ideas):
                if idea.id == idea_id:
                    del ideas[position]
                    self.state_store.save_pitching_ideas(ideas)
                    return idea
        raise PitchingIdeaNotFoundError(idea_id)

    def move_task_to_pitching(self, task_id: str, grade: str) -> PitchingIdea:
        """Turn a board task into a pitching idea and take it off the board.

        A task already promoted only has its idea's grade changed. Provider
        tasks are tombstoned so the next sync does not bring them back.
        """
        grade = _grade(grade)
        with self.state_store.lock:
            tasks = self.state_store.load_tasks()
            task = next((item for item in tasks if item.id == task_id), None)
            if task is None:
                raise TaskNotFoundError(task_id)

            ideas = self.state_store.load_pitching_ideas()
            idea = next((item for item in ideas if item.source_collab_id == task_id), None)
            if idea is not None:
                idea.grade = grade
            else:
                detail = task.detail if isinstance(task.detail, CollabDetails) else CollabDetails()
                writers = [name for name in (detail.track_producer, detail.top_liner) if name and name != PLACEHOLDER]
                idea = PitchingIdea(
                    id=_new_id(),
                    demo_name=detail.track_name or detail.song_name or task.title,
                    writers=writers,
                    publishing_info=detail.publishing_info,
                    grade=grade,
                    source_collab_id=task_id,
                    created_at=_now(),
                    notes=detail.notes,
                )
                ideas.append(idea)

            if task.external_id:
                self.state_store.record_tombstone(task.external_id)
            remaining = [item for item in tasks if item.id != task_id]
            self.state_store.commit_pitching_move(remaining, ideas)
        return idea
