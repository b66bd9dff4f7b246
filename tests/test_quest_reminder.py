from __future__ import annotations

import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from arise.gate import seen_key
from arise.jobs import quest_reminder
from arise.notifier import ConsoleNotifier, DiscordNotifier, NtfyNotifier, build_notifier, quest_prompt
from arise.storage import AUTH_KEY, LocalStore


class QuestReminderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = LocalStore(Path(self.tmp.name) / "state.json")

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_not_logged_in_sends_nothing(self) -> None:
        client = MagicMock()
        notifier = MagicMock()
        self.assertFalse(quest_reminder.send_quest_prompt(self.store, client, notifier))
        client.today_quest.assert_not_called()
        notifier.send.assert_not_called()

    def test_prompt_sent_once_per_day(self) -> None:
        self.store.set(AUTH_KEY, {"token": "tok", "user": {"id": 3, "username": "hunter"}})
        client = MagicMock()
        client.today_quest.return_value = {"quest": {"title": "Cardio Blast", "description": "Pump it", "scaled_reps": 20, "scaled_duration": 25, "quote": ""}}
        notifier = MagicMock()

        self.assertTrue(quest_reminder.send_quest_prompt(self.store, client, notifier))
        self.assertFalse(quest_reminder.send_quest_prompt(self.store, client, notifier))

        self.assertEqual(client.token, "tok")
        notifier.send.assert_called_once()
        title, body = notifier.send.call_args[0]
        self.assertEqual(title, "Today's Quest: Cardio Blast")
        self.assertIn("Reps: 20", body)

    @patch("arise.notifier.time.sleep")
    @patch("arise.notifier.urllib.request.urlopen", side_effect=OSError("down"))
    def test_failed_delivery_keeps_prompt_pending(self, urlopen, sleep) -> None:
        self.store.set(AUTH_KEY, {"token": "tok", "user": {"id": 3, "username": "hunter"}})
        client = MagicMock()
        client.today_quest.return_value = {"quest": {"title": "HIIT Workout", "quest_date": "2026-03-01"}, "nextUnlock": 4102444800000}

        self.assertFalse(quest_reminder.send_quest_prompt(self.store, client, NtfyNotifier("https://ntfy.test/t")))
        self.assertIsNone(self.store.get(seen_key(3)))

        notifier = MagicMock()
        notifier.send.return_value = True
        self.assertTrue(quest_reminder.send_quest_prompt(self.store, client, notifier))
        notifier.send.assert_called_once()
        self.assertEqual(self.store.get(seen_key(3)), {"day": "2026-03-01", "until": 4102444800000})

    @patch("arise.jobs.quest_reminder.send_quest_prompt")
    @patch("arise.jobs.quest_reminder.AriseClient")
    def test_main_uses_cli_arguments(self, client_cls, send_quest_prompt) -> None:
        state = str(Path(self.tmp.name) / "other.json")
        with patch("sys.argv", ["quest_reminder", "--api", "http://example.test", "--state", state]):
            quest_reminder.main()
        client_cls.assert_called_once_with("http://example.test")
        store = send_quest_prompt.call_args[0][0]
        self.assertEqual(str(store.path), state)


class NotifierTests(unittest.TestCase):
    def test_build_notifier_prefers_discord(self) -> None:
        self.assertIsInstance(build_notifier("https://discord.test/hook", "https://ntfy.test/t"), DiscordNotifier)
        self.assertIsInstance(build_notifier("", "https://ntfy.test/t"), NtfyNotifier)
        self.assertIsInstance(build_notifier(), ConsoleNotifier)

    def test_console_notifier_writes_prompt(self) -> None:
        out = io.StringIO()
        ConsoleNotifier(out).send(*quest_prompt({"title": "HIIT Workout", "description": "High intensity", "quote": "Go"}))
        self.assertIn("Today's Quest: HIIT Workout", out.getvalue())
        self.assertIn('"Go"', out.getvalue())

    @patch("arise.notifier.time.sleep")
    @patch("arise.notifier.urllib.request.urlopen", side_effect=OSError("down"))
    def test_http_notifier_gives_up_after_retries(self, urlopen, sleep) -> None:
        self.assertFalse(NtfyNotifier("https://ntfy.test/t").send("t", "b"))
        self.assertEqual(urlopen.call_count, 3)

    @patch("arise.notifier.urllib.request.urlopen")
    def test_discord_notifier_reports_delivery(self, urlopen) -> None:
        urlopen.return_value.__enter__.return_value.read.return_value = b""
        self.assertTrue(DiscordNotifier("https://discord.test/hook").send("Today's Quest: Row", "Row 2km"))
        req = urlopen.call_args[0][0]
        self.assertIn(b"Today's Quest: Row", req.data)


if __name__ == "__main__":
    unittest.main()
