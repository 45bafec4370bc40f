from __future__ import annotations

import os
from typing import Any, Callable

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from timboard.ai_client import OpenAICompatibleClient
from timboard.config_manager import ConfigManager
from timboard.models import HOLD_FIX_TYPES, PitchingIdea, Task, parse_iso_datetime
from timboard.pitching_service import PitchingIdeaNotFoundError, PitchingService
from timboard.scheduler import SyncScheduler
from timboard.state_store import StateStore
from timboard.sync_engine import SyncEngine
from timboard.task_service import TaskNotFoundError, TaskService


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    start_date: str = Field(min_length=1)
    description: str = ""
    end_date: str | None = None
    category: str = "WEEKLY"
    sub_category: str | None = None
    starred: bool = False
    detail: dict[str, Any] | None = None


class TaskUpdateRequest(BaseModel):
    updates: dict[str, Any] = Field(default_factory=dict)


class HoldFixTypeRequest(BaseModel):
    type: str


class PitchingCreateRequest(BaseModel):
    demo_name: str = Field(min_length=1, max_length=500)
    writers: list[str] = Field(default_factory=list)
    publishing_info: str = ""
    grade: str = "A"
    notes: str = ""


class PitchingUpdateRequest(BaseModel):
    updates: dict[str, Any] = Field(default_factory=dict)


class PitchingGradeRequest(BaseModel):
    grade: str


class CustomWindowSyncRequest(BaseModel):
    start: str
    end: str


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.task_service = TaskService(self.state_store)
        self.pitching_service = PitchingService(self.state_store)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def create_app() -> FastAPI:
    config_path = os.getenv("TIMBOARD_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("TIMBOARD_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="Timboard", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    def _task_action(action: Callable[..., Task], *args: Any) -> dict[str, Any]:
        try:
            task = action(*args)
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=404, detail="task not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"task": task.to_dict()}

    def _pitching_action(action: Callable[..., PitchingIdea], *args: Any) -> dict[str, Any]:
        try:
            idea = action(*args)
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=404, detail="task not found") from exc
        except PitchingIdeaNotFoundError as exc:
            raise HTTPException(status_code=404, detail="pitching idea not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"idea": idea.to_dict()}

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        app.state.context.config_manager.update(request.payload)
        return {"message": "config updated", "config": app.state.context.config_manager.masked()}

    @app.get("/api/tasks")
    def list_tasks(category: str | None = None) -> dict[str, Any]:
        tasks = app.state.context.task_service.list_tasks(category)
        return {
            "tasks": [task.to_dict() for task in tasks],
            "last_sync_at": app.state.context.state_store.get_meta("last_sync_at"),
        }

    @app.post("/api/tasks")
    def create_task(request: TaskCreateRequest) -> dict[str, Any]:
        return _task_action(app.state.context.task_service.add_task, request.model_dump(exclude_none=True))

    @app.patch("/api/tasks/{task_id}")
    def update_task(task_id: str, request: TaskUpdateRequest) -> dict[str, Any]:
        return _task_action(app.state.context.task_service.update_task, task_id, request.updates)

    @app.delete("/api/tasks/{task_id}")
    def delete_task(task_id: str) -> dict[str, Any]:
        return _task_action(app.state.context.task_service.delete_task, task_id)

    @app.post("/api/tasks/{task_id}/star")
    def toggle_star(task_id: str) -> dict[str, Any]:
        return _task_action(app.state.context.task_service.toggle_star, task_id)

    @app.post("/api/tasks/{task_id}/dismiss-drift")
    def dismiss_drift(task_id: str) -> dict[str, Any]:
        return _task_action(app.state.context.task_service.dismiss_drift, task_id)

    @app.post("/api/tasks/{task_id}/hold-fix-type")
    def move_hold_fix_type(task_id: str, request: HoldFixTypeRequest) -> dict[str, Any]:
        if request.type.strip().upper() not in HOLD_FIX_TYPES:
            raise HTTPException(status_code=400, detail="type must be HOLD, FIX or RELEASE")
        return _task_action(app.state.context.task_service.move_hold_fix_type, task_id, request.type)

    @app.post("/api/tasks/{task_id}/pitch")
    def move_to_pitching(task_id: str, request: PitchingGradeRequest) -> dict[str, Any]:
        return _pitching_action(app.state.context.pitching_service.move_task_to_pitching, task_id, request.grade)

    @app.get("/api/pitching")
    def list_pitching(grade: str | None = None) -> dict[str, Any]:
        return {"ideas": [idea.to_dict() for idea in app.state.context.pitching_service.list_ideas(grade)]}

    @app.post("/api/pitching")
    def add_pitching_idea(request: PitchingCreateRequest) -> dict[str, Any]:
        return _pitching_action(app.state.context.pitching_service.add_idea, request.model_dump())

    @app.patch("/api/pitching/{idea_id}")
    def update_pitching_idea(idea_id: str, request: PitchingUpdateRequest) -> dict[str, Any]:
        return _pitching_action(app.state.context.pitching_service.update_idea, idea_id, request.updates)

    @app.delete("/api/pitching/{idea_id}")
    def delete_pitching_idea(idea_id: str) -> dict[str, Any]:
        return _pitching_action(app.state.context.pitching_service.delete_idea, idea_id)

    @app.post("/api/pitching/{idea_id}/grade")
    def move_pitching_grade(idea_id: str, request: PitchingGradeRequest) -> dict[str, Any]:
        return _pitching_action(app.state.context.pitching_service.move_grade, idea_id, request.grade)

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.post("/api/sync/run-window")
    def trigger_sync_with_custom_window(request: CustomWindowSyncRequest) -> dict[str, Any]:
        try:
            start = parse_iso_datetime(request.start)
            end = parse_iso_datetime(request.end)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid start/end datetime") from exc
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="Invalid start/end datetime")
        if end < start:
            raise HTTPException(status_code=400, detail="end must be later than start")
        result = app.state.context.sync_engine.run_once(
            trigger="manual-window",
            window_start_override=start,
            window_end_override=end,
        )
        return {"message": "sync completed", "result": result.to_dict()}

    @app.get("/api/sync/runs")
    def sync_runs(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/audit")
    def audit_events(limit: int = 100, run_id: int | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    @app.post("/api/reset")
    def reset_local_state() -> dict[str, str]:
        app.state.context.task_service.reset()
        return {"message": "local tasks, snapshots and tombstones cleared"}

    @app.post("/api/ai/test")
    def test_ai() -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        ok, message = OpenAICompatibleClient(config.ai).test_connectivity()
        return {"ok": ok, "message": message}

    return app
