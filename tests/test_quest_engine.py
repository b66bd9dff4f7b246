from __future__ import annotations

import random
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

import arise.db as db
from arise import content


class DBIsolatedTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self._old_db = db.DB_PATH
        db.DB_PATH = Path(self._tmp.name) / "test.sqlite3"
        db.init_db()
        self.user = db.create_user("questor", "hash")

    def tearDown(self) -> None:
        db.DB_PATH = self._old_db
        self._tmp.cleanup()

    def count_quests(self, user_id: int, for_date: str) -> int:
        conn = db.get_conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM quests WHERE user_id = ? AND quest_date = ?", (user_id, for_date)).fetchone()[0]
        finally:
            conn.close()

    def user_xp(self, user_id: int) -> int:
        return db.get_user(user_id)["xp"]


class GetTodayQuestTests(DBIsolatedTestCase):
    def test_repeated_fetch_returns_same_quest(self) -> None:
        d = "2026-03-01"
        a = db.get_or_create_quest(self.user["id"], d)
        b = db.get_or_create_quest(self.user["id"], d)
        self.assertEqual(a["id"], b["id"])
        self.assertEqual(self.count_quests(self.user["id"], d), 1)

    def test_new_day_gets_new_quest(self) -> None:
        a = db.get_or_create_quest(self.user["id"], "2026-03-01")
        b = db.get_or_create_quest(self.user["id"], "2026-03-02")
        self.assertNotEqual(a["id"], b["id"])

    def test_quest_comes_from_template_pool(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01", rng=random.Random(3))
        titles = {t["title"] for t in content.load_quest_pool()}
        self.assertIn(quest["title"], titles)
        self.assertFalse(quest["completed"])
        self.assertIsNone(quest["completed_at"])

    def test_concurrent_fetch_creates_one_row(self) -> None:
        d = "2026-03-05"
        workers = 8
        barrier = threading.Barrier(workers)
        results: list[int] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def fetch() -> None:
            try:
                barrier.wait()
                quest = db.get_or_create_quest(self.user["id"], d)
                with lock:
                    results.append(quest["id"])
            except BaseException as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=fetch) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), workers)
        self.assertEqual(len(set(results)), 1)
        self.assertEqual(self.count_quests(self.user["id"], d), 1)

    def test_unknown_account(self) -> None:
        with self.assertRaises(db.AccountNotFound):
            db.get_or_create_quest(999, "2026-03-01")

    def test_today_payload_includes_next_unlock(self) -> None:
        now = datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc)
        result = db.get_today_quest(self.user["id"], now=now)
        self.assertEqual(result["quest"]["quest_date"], "2026-03-01")
        expected = int(datetime(2026, 3, 2, tzinfo=timezone.utc).timestamp() * 1000)
        self.assertEqual(result["nextUnlock"], expected)

    def test_scaling_follows_level(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        self.assertEqual(quest["level"], 1)
        self.assertEqual(quest["scaled_reps"], quest["base_reps"])

        conn = db.get_conn()
        conn.execute("UPDATE users SET xp = 300 WHERE id = ?", (self.user["id"],))
        conn.commit()
        conn.close()

        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        self.assertEqual(quest["level"], 3)
        self.assertEqual(quest["scaled_duration"], round(quest["base_duration"] * 1.2))


class UpdateQuestTests(DBIsolatedTestCase):
    def test_update_editable_fields(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        updated = db.update_quest(self.user["id"], quest["id"], {"title": " Hill Sprints ", "base_reps": 12})
        self.assertEqual(updated["title"], "Hill Sprints")
        self.assertEqual(updated["base_reps"], 12)
        self.assertEqual(updated["quest_date"], "2026-03-01")
        self.assertFalse(updated["completed"])
        self.assertEqual(self.user_xp(self.user["id"]), 0)

    def test_update_rejects_other_users_quest(self) -> None:
        other = db.create_user("intruder", "hash")
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        with self.assertRaises(db.QuestNotFound):
            db.update_quest(other["id"], quest["id"], {"title": "Mine now"})
        with self.assertRaises(db.QuestNotFound):
            db.update_quest(self.user["id"], 12345, {"title": "Ghost"})

    def test_update_validation(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        for fields in ({}, {"completed": 1}, {"quest_date": "2030-01-01"}, {"title": "  "}, {"base_reps": 0}, {"base_duration": "ten"}, {"base_reps": True}):
            with self.assertRaises(db.QuestValidationError, msg=fields):
                db.update_quest(self.user["id"], quest["id"], fields)
        unchanged = db.get_or_create_quest(self.user["id"], "2026-03-01")
        self.assertEqual(unchanged["title"], quest["title"])


class CompleteQuestTests(DBIsolatedTestCase):
    def test_complete_awards_xp_once(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        first = db.complete_quest(self.user["id"], quest["id"])
        second = db.complete_quest(self.user["id"], quest["id"])

        self.assertEqual(first["xp_awarded"], db.QUEST_XP)
        self.assertFalse(first["already_completed"])
        self.assertTrue(first["quest"]["completed"])
        self.assertIsNotNone(first["quest"]["completed_at"])
        self.assertEqual(second["xp_awarded"], 0)
        self.assertTrue(second["already_completed"])
        self.assertEqual(self.user_xp(self.user["id"]), db.QUEST_XP)

    def test_completion_reports_level_and_achievement_once(self) -> None:
        db.log_workout(self.user["id"], "Warmup", sets=60)  # 75 xp
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        first = db.complete_quest(self.user["id"], quest["id"])
        second = db.complete_quest(self.user["id"], quest["id"])

        self.assertTrue(first["level_up"])
        self.assertEqual(first["new_level"], 2)
        self.assertEqual([a["key"] for a in first["achievements"]], ["first_quest"])
        self.assertFalse(second["level_up"])
        self.assertEqual(second["new_level"], 2)
        self.assertEqual(second["achievements"], [])

    def test_concurrent_completion_awards_once(self) -> None:
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        barrier = threading.Barrier(4)

        def complete() -> None:
            barrier.wait()
            db.complete_quest(self.user["id"], quest["id"])

        threads = [threading.Thread(target=complete) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(self.user_xp(self.user["id"]), db.QUEST_XP)

    def test_complete_not_found(self) -> None:
        other = db.create_user("intruder", "hash")
        quest = db.get_or_create_quest(self.user["id"], "2026-03-01")
        with self.assertRaises(db.QuestNotFound):
            db.complete_quest(other["id"], quest["id"])
        with self.assertRaises(db.QuestNotFound):
            db.complete_quest(self.user["id"], 777)
        self.assertEqual(self.user_xp(other["id"]), 0)
        self.assertFalse(db.get_or_create_quest(self.user["id"], "2026-03-01")["completed"])


if __name__ == "__main__":
    unittest.main()
