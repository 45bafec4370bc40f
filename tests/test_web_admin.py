import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from timboard.models import HOLD_FIX, HoldFixDetails, SyncResult, Task
from timboard.web_admin import create_app


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        env = {
            "TIMBOARD_CONFIG_PATH": str(Path(self.temp_dir.name) / "config.yaml"),
            "TIMBOARD_STATE_PATH": str(Path(self.temp_dir.name) / "state.db"),
        }
        with mock.patch.dict(os.environ, env):
            self.client = TestClient(create_app())
        self.context = self.client.app.state.context

        seed_payload = {
            "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "secret-pass"},
            "ai": {"base_url": "https://api.example.com/v1", "api_key": "secret-key", "model": "gpt-4o-mini"},
        }
        resp = self.client.put("/api/config", json={"payload": seed_payload})
        self.assertEqual(resp.status_code, 200)

        self.context.state_store.save_tasks(
            [
                Task(
                    id="gcal-e1",
                    title="홀드 요청",
                    start_date="2025-06-01",
                    category=HOLD_FIX,
                    detail=HoldFixDetails(),
                    external_id="e1",
                ),
                Task(id="gcal-e2", title="A&R 보고", start_date="2025-06-02", external_id="e2"),
            ]
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_config_secrets_are_masked_and_preserved(self) -> None:
        data = self.client.get("/api/config").json()
        self.assertEqual(data["caldav"]["password"], "***")
        self.assertEqual(data["ai"]["api_key"], "***")

        update = {"caldav": {"password": "***"}, "ai": {"api_key": "", "model": "gpt-4.1"}}
        resp = self.client.put("/api/config", json={"payload": update})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["config"]["ai"]["model"], "gpt-4.1")

        stored = self.context.config_manager.load()
        self.assertEqual(stored.caldav.password, "secret-pass")
        self.assertEqual(stored.ai.api_key, "secret-key")

    def test_list_tasks_with_category_filter(self) -> None:
        resp = self.client.get("/api/tasks", params={"category": "HOLD_FIX"})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual([task["id"] for task in data["tasks"]], ["gcal-e1"])
        self.assertEqual(data["tasks"][0]["detail"]["kind"], HOLD_FIX)
        self.assertIsNone(data["last_sync_at"])

    def test_create_and_update_task(self) -> None:
        resp = self.client.post("/api/tasks", json={"title": "Mix review", "start_date": "2025-06-04"})
        self.assertEqual(resp.status_code, 200)
        created = resp.json()["task"]
        self.assertTrue(created["user_edited"])
        self.assertIsNone(created["external_id"])

        resp = self.client.patch(f"/api/tasks/{created['id']}", json={"updates": {"category": "STOCK"}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["task"]["detail"]["kind"], "STOCK")

    def test_invalid_update_is_bad_request(self) -> None:
        resp = self.client.patch("/api/tasks/gcal-e2", json={"updates": {"category": "MUSIC"}})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_task_is_not_found(self) -> None:
        self.assertEqual(self.client.delete("/api/tasks/missing").status_code, 404)
        self.assertEqual(self.client.post("/api/tasks/missing/star").status_code, 404)

    def test_delete_tombstones_provider_task(self) -> None:
        resp = self.client.delete("/api/tasks/gcal-e1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(list(self.context.state_store.load_tombstones()), ["e1"])

    def test_star_dismiss_and_hold_fix_type(self) -> None:
        self.assertTrue(self.client.post("/api/tasks/gcal-e2/star").json()["task"]["starred"])
        self.assertFalse(self.client.post("/api/tasks/gcal-e2/dismiss-drift").json()["task"]["drift_flag"])

        resp = self.client.post("/api/tasks/gcal-e1/hold-fix-type", json={"type": "RELEASE"})
        self.assertEqual(resp.json()["task"]["detail"]["type"], "RELEASE")
        resp = self.client.post("/api/tasks/gcal-e1/hold-fix-type", json={"type": "DONE"})
        self.assertEqual(resp.status_code, 400)

    def test_sync_run_triggers_scheduler(self) -> None:
        with mock.patch.object(self.context.scheduler, "trigger_manual") as trigger_manual:
            resp = self.client.post("/api/sync/run")
        self.assertEqual(resp.status_code, 200)
        trigger_manual.assert_called_once()

    def test_sync_run_window_calls_sync_engine(self) -> None:
        fake_result = SyncResult(
            status="success",
            message="ok",
            duration_ms=42,
            trigger="manual-window",
            created=1,
            run_at=datetime(2026, 2, 27, 0, 0, 0, tzinfo=timezone.utc),
        )
        with mock.patch.object(self.context.sync_engine, "run_once", return_value=fake_result) as run_once:
            resp = self.client.post(
                "/api/sync/run-window",
                json={"start": "2026-03-01T00:00:00Z", "end": "2026-03-03T23:59:59Z"},
            )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["result"]["created"], 1)
        kwargs = run_once.call_args.kwargs
        self.assertEqual(kwargs["window_start_override"], datetime(2026, 3, 1, tzinfo=timezone.utc))

    def test_sync_run_window_rejects_invalid_range(self) -> None:
        resp = self.client.post(
            "/api/sync/run-window",
            json={"start": "2026-03-03T00:00:00Z", "end": "2026-03-01T23:59:59Z"},
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post("/api/sync/run-window", json={"start": "soon", "end": "later"})
        self.assertEqual(resp.status_code, 400)

    def test_runs_and_audit_listing(self) -> None:
        store = self.context.state_store
        run_id = store.start_sync_run(trigger="manual")
        store.finish_sync_run(run_id=run_id, status="success", message="ok", duration_ms=5, created=2)
        store.record_audit_event(external_id="e1", action="create_task", details={}, run_id=run_id)

        runs = self.client.get("/api/sync/runs").json()["runs"]
        self.assertEqual(runs[0]["created"], 2)
        events = self.client.get("/api/audit", params={"run_id": run_id}).json()["events"]
        self.assertEqual([(e["external_id"], e["action"]) for e in events], [("e1", "create_task")])

    def test_reset_clears_local_state(self) -> None:
        self.client.delete("/api/tasks/gcal-e1")
        resp = self.client.post("/api/reset")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get("/api/tasks").json()["tasks"], [])
        self.assertEqual(len(self.context.state_store.load_tombstones()), 0)

    def test_move_task_to_pitching_api(self) -> None:
        resp = self.client.post("/api/tasks/gcal-e1/pitch", json={"grade": "S"})
        self.assertEqual(resp.status_code, 200)
        idea = resp.json()["idea"]
        self.assertEqual(idea["demo_name"], "홀드 요청")
        self.assertEqual(idea["grade"], "S")
        self.assertEqual(idea["source_collab_id"], "gcal-e1")

        self.assertEqual([t["id"] for t in self.client.get("/api/tasks").json()["tasks"]], ["gcal-e2"])
        self.assertEqual(list(self.context.state_store.load_tombstones()), ["e1"])
        self.assertEqual(self.client.post("/api/tasks/missing/pitch", json={"grade": "S"}).status_code, 404)
        self.assertEqual(self.client.post("/api/tasks/gcal-e2/pitch", json={"grade": "Z"}).status_code, 400)

    def test_pitching_crud_api(self) -> None:
        resp = self.client.post("/api/pitching", json={"demo_name": "Night Drive", "writers": ["Lee"]})
        self.assertEqual(resp.status_code, 200)
        idea_id = resp.json()["idea"]["id"]
        self.assertEqual(self.client.post("/api/pitching", json={"demo_name": ""}).status_code, 422)

        resp = self.client.patch(f"/api/pitching/{idea_id}", json={"updates": {"notes": "label pass"}})
        self.assertEqual(resp.json()["idea"]["notes"], "label pass")
        self.assertEqual(
            self.client.patch(f"/api/pitching/{idea_id}", json={"updates": {"id": "x"}}).status_code, 400
        )

        resp = self.client.post(f"/api/pitching/{idea_id}/grade", json={"grade": "A_JPN"})
        self.assertEqual(resp.json()["idea"]["grade"], "A_JPN")
        ideas = self.client.get("/api/pitching", params={"grade": "A_JPN"}).json()["ideas"]
        self.assertEqual([idea["id"] for idea in ideas], [idea_id])

        self.assertEqual(self.client.delete(f"/api/pitching/{idea_id}").status_code, 200)
        self.assertEqual(self.client.get("/api/pitching").json()["ideas"], [])
        self.assertEqual(self.client.delete(f"/api/pitching/{idea_id}").status_code, 404)

    def test_ai_connectivity_api(self) -> None:
        with mock.patch(
            "timboard.web_admin.OpenAICompatibleClient.test_connectivity",
            return_value=(True, "Connected. Model response: OK"),
        ):
            resp = self.client.post("/api/ai/test")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertTrue(data["ok"])
        self.assertIn("Connected", data["message"])


if __name__ == "__main__":
    unittest.main()
