from __future__ import annotations

import uuid
from typing import Any, Callable

from timboard.hydrator import hydrate
from timboard.models import (
    HOLD_FIX_TYPES,
    TASK_CATEGORIES,
    HoldFixDetails,
    Task,
    detail_from_dict,
)
from timboard.state_store import StateStore


EDITABLE_FIELDS = ("title", "description", "start_date", "end_date", "category", "sub_category", "starred", "detail")


class TaskNotFoundError(KeyError):
    pass


def _apply_updates(task: Task, updates: dict[str, Any]) -> Task:
    unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValueError(f"Fields not editable: {', '.join(unknown)}")
    merged = task.to_dict()
    merged.update(updates)
    category = str(merged.get("category", task.category)).strip().upper()
    if category not in TASK_CATEGORIES:
        raise ValueError(f"Unknown category: {category}")
    merged["category"] = category
    updated = Task.from_dict(merged)
    if "detail" in updates:
        raw_detail = updates["detail"]
        if isinstance(raw_detail, dict):
            raw_detail = {"kind": category, **raw_detail}
        updated.detail = detail_from_dict(raw_detail)
    elif category != task.category:
        updated.detail = hydrate(category, updated.title, updated.start_date)
    if updated.detail is not None and not updated.detail_matches_category():
        raise ValueError(f"Detail kind {updated.detail.kind} does not match category {category}")
    return updated


class TaskService:
    """Local task actions. Every edit marks the task as user-owned."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def list_tasks(self, category: str | None = None) -> list[Task]:
        tasks = self.state_store.load_tasks()
        if category:
            wanted = category.strip().upper()
            tasks = [task for task in tasks if task.category == wanted]
        return tasks

    def get_task(self, task_id: str) -> Task:
        for task in self.state_store.load_tasks():
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def add_task(self, payload: dict[str, Any]) -> Task:
        title = str(payload.get("title", "")).strip()
        start_date = str(payload.get("start_date", "")).strip()
        if not title or not start_date:
            raise ValueError("title and start_date are required")
        base = Task(id=f"local-{uuid.uuid4().hex[:12]}", title=title, start_date=start_date)
        fields = {key: value for key, value in payload.items() if key in EDITABLE_FIELDS}
        task = _apply_updates(base, fields)
        task.user_edited = True
        with self.state_store.lock:
            tasks = self.state_store.load_tasks()
            tasks.append(task)
            self.state_store.save_tasks(tasks)
        return task

    def _modify(self, task_id: str, change: Callable[[Task], Task]) -> Task:
        with self.state_store.lock:
            tasks = self.state_store.load_tasks()
            for position, task in enumerate(tasks):
                if task.id != task_id:
                    continue
                tasks[position] = change(task)
                self.state_store.save_tasks(tasks)
                return tasks[position]
        raise TaskNotFoundError(task_id)

    def update_task(self, task_id: str, updates: dict[str, Any]) -> Task:
        def change(task: Task) -> Task:
            updated = _apply_updates(task, updates)
            updated.user_edited = True
            updated.drift_flag = False
            return updated

        return self._modify(task_id, change)

    def toggle_star(self, task_id: str) -> Task:
        return self._modify(task_id, lambda task: task.with_updates(starred=not task.starred))

    def dismiss_drift(self, task_id: str) -> Task:
        return self._modify(task_id, lambda task: task.with_updates(drift_flag=False))

    def move_hold_fix_type(self, task_id: str, hold_fix_type: str) -> Task:
        new_type = str(hold_fix_type).strip().upper()
        if new_type not in HOLD_FIX_TYPES:
            raise ValueError(f"Unknown hold/fix type: {hold_fix_type}")

        def change(task: Task) -> Task:
            if not isinstance(task.detail, HoldFixDetails):
                return task
            updated = task.clone()
            updated.detail.type = new_type
            return updated

        return self._modify(task_id, change)

    def delete_task(self, task_id: str) -> Task:
        """Remove a task; provider-sourced ids are tombstoned first."""
        with self.state_store.lock:
            tasks = self.state_store.load_tasks()
            for position, task in enumerate(tasks):
                if task.id != task_id:
                    continue
                if task.external_id:
                    self.state_store.record_tombstone(task.external_id)
                del tasks[position]
                self.state_store.save_tasks(tasks)
                return task
        raise TaskNotFoundError(task_id)

    def reset(self) -> None:
        self.state_store.reset_local_state()
