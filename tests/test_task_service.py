import tempfile
import unittest
from pathlib import Path

from timboard.models import COLLAB, HOLD_FIX, PERSONAL, STOCK, WEEKLY, HoldFixDetails, Task
from timboard.state_store import StateStore
from timboard.task_service import TaskNotFoundError, TaskService


class TaskServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.service = TaskService(self.store)
        self.store.save_tasks(
            [
                Task(
                    id="gcal-e1",
                    title="홀드 요청",
                    start_date="2025-06-01",
                    category=HOLD_FIX,
                    detail=HoldFixDetails(type="HOLD", demo_name="홀드 요청"),
                    external_id="e1",
                    drift_flag=True,
                ),
                Task(id="gcal-e2", title="A&R 보고", start_date="2025-06-02", external_id="e2"),
            ]
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_add_task_is_local_and_user_owned(self) -> None:
        task = self.service.add_task({"title": "Mix review", "start_date": "2025-06-03", "category": "collab"})

        self.assertTrue(task.id.startswith("local-"))
        self.assertTrue(task.user_edited)
        self.assertIsNone(task.external_id)
        self.assertEqual(task.category, COLLAB)
        self.assertEqual(task.detail.kind, COLLAB)
        self.assertEqual([t.id for t in self.service.list_tasks()][-1], task.id)

    def test_add_task_requires_title_and_start(self) -> None:
        with self.assertRaises(ValueError):
            self.service.add_task({"title": "", "start_date": "2025-06-03"})
        with self.assertRaises(ValueError):
            self.service.add_task({"title": "x"})

    def test_update_marks_user_edited_and_clears_drift(self) -> None:
        task = self.service.update_task("gcal-e1", {"title": "홀드 확정"})

        self.assertEqual(task.title, "홀드 확정")
        self.assertTrue(task.user_edited)
        self.assertFalse(task.drift_flag)
        self.assertEqual(self.service.get_task("gcal-e1").title, "홀드 확정")

    def test_category_change_rehydrates_detail(self) -> None:
        task = self.service.update_task("gcal-e2", {"category": STOCK, "title": "NVDA 실적"})
        self.assertEqual(task.detail.kind, STOCK)
        self.assertEqual(task.detail.ticker, "NVDA")

        personal = self.service.update_task("gcal-e2", {"category": PERSONAL, "sub_category": "YOUTUBE"})
        self.assertIsNone(personal.detail)
        self.assertEqual(personal.sub_category, "YOUTUBE")

    def test_detail_update_must_match_category(self) -> None:
        task = self.service.update_task("gcal-e1", {"detail": {"type": "FIX", "writers": ["Kim"]}})
        self.assertEqual(task.detail.type, "FIX")
        self.assertEqual(task.detail.writers, ["Kim"])

        with self.assertRaises(ValueError):
            self.service.update_task("gcal-e1", {"detail": {"kind": STOCK, "ticker": "AAPL"}})

    def test_update_rejects_unknown_fields_and_categories(self) -> None:
        with self.assertRaises(ValueError):
            self.service.update_task("gcal-e2", {"external_id": "other"})
        with self.assertRaises(ValueError):
            self.service.update_task("gcal-e2", {"category": "MUSIC"})

    def test_missing_task_raises(self) -> None:
        with self.assertRaises(TaskNotFoundError):
            self.service.update_task("nope", {"title": "x"})
        with self.assertRaises(TaskNotFoundError):
            self.service.delete_task("nope")

    def test_toggle_star_and_dismiss_drift(self) -> None:
        self.assertTrue(self.service.toggle_star("gcal-e1").starred)
        self.assertFalse(self.service.toggle_star("gcal-e1").starred)

        task = self.service.dismiss_drift("gcal-e1")
        self.assertFalse(task.drift_flag)
        self.assertFalse(task.user_edited)

    def test_move_hold_fix_type(self) -> None:
        self.assertEqual(self.service.move_hold_fix_type("gcal-e1", "release").detail.type, "RELEASE")
        with self.assertRaises(ValueError):
            self.service.move_hold_fix_type("gcal-e1", "DONE")
        unchanged = self.service.move_hold_fix_type("gcal-e2", "FIX")
        self.assertIsNone(unchanged.detail)

    def test_delete_records_tombstone_for_provider_tasks(self) -> None:
        self.service.delete_task("gcal-e1")
        local = self.service.add_task({"title": "Local", "start_date": "2025-06-04"})
        self.service.delete_task(local.id)

        self.assertEqual([t.id for t in self.service.list_tasks()], ["gcal-e2"])
        self.assertEqual(list(self.store.load_tombstones()), ["e1"])

    def test_list_tasks_filters_by_category(self) -> None:
        self.assertEqual([t.id for t in self.service.list_tasks("hold_fix")], ["gcal-e1"])
        self.assertEqual([t.id for t in self.service.list_tasks(WEEKLY)], ["gcal-e2"])

    def test_reset_clears_tasks_and_tombstones(self) -> None:
        self.service.delete_task("gcal-e1")
        self.service.reset()
        self.assertEqual(self.service.list_tasks(), [])
        self.assertEqual(len(self.store.load_tombstones()), 0)


if __name__ == "__main__":
    unittest.main()
