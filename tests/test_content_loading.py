from __future__ import annotations

import random
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from arise import content


class ContentLoadingTests(unittest.TestCase):
    def test_load_json_reads_files_as_utf8(self) -> None:
        with patch.object(Path, "exists", return_value=True), patch.object(
            Path,
            "read_text",
            autospec=True,
            return_value='[{"title": "Row"}]',
        ) as mock_read:
            data = content._load_json(Path("dummy.json"), [])

        self.assertEqual(data, [{"title": "Row"}])
        _, kwargs = mock_read.call_args
        self.assertEqual(kwargs.get("encoding"), "utf-8-sig")

    def test_shipped_pool_has_five_templates(self) -> None:
        pool = content.load_quest_pool()
        self.assertEqual(len(pool), 5)
        self.assertEqual({t["title"] for t in pool}, {t["title"] for t in content.DEFAULT_POOL})

    def test_missing_or_broken_pool_falls_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            missing = Path(tmp) / "missing.json"
            self.assertEqual(content.load_quest_pool(missing), content.DEFAULT_POOL)

            broken = Path(tmp) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            self.assertEqual(content.load_quest_pool(broken), content.DEFAULT_POOL)

    def test_malformed_templates_are_dropped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "pool.json"
            path.write_text(
                '[{"title": "Plank", "base_reps": 3, "base_duration": 5}, {"title": ""}, {"title": "Bad", "base_reps": -1}, "nope"]',
                encoding="utf-8",
            )
            pool = content.load_quest_pool(path)
        self.assertEqual([t["title"] for t in pool], ["Plank"])
        self.assertEqual(pool[0]["quote"], "")

    def test_choose_template_picks_from_pool(self) -> None:
        rng = random.Random(7)
        pool = content.load_quest_pool()
        for _ in range(20):
            self.assertIn(content.choose_template(rng, pool), pool)


if __name__ == "__main__":
    unittest.main()
