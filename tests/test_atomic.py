import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skilldeck.atomic import replace_directory, utc_now_iso, write_json_atomic


class TestReplaceDirectory(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.src = self.root / "src"
        (self.src / ".git").mkdir(parents=True)
        (self.src / ".git" / "HEAD").write_text("ref", encoding="utf-8")
        (self.src / "SKILL.md").write_text("new", encoding="utf-8")
        self.dest = self.root / "store" / "skill"

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_creates_and_replaces(self) -> None:
        replace_directory(self.src, self.dest)
        self.assertEqual((self.dest / "SKILL.md").read_text(encoding="utf-8"), "new")
        self.assertFalse((self.dest / ".git").exists())

        (self.dest / "local-only.txt").write_text("x", encoding="utf-8")
        replace_directory(self.src, self.dest)
        self.assertFalse((self.dest / "local-only.txt").exists())
        self.assertEqual(sorted(p.name for p in self.dest.parent.iterdir()), ["skill"])

    def test_failed_swap_restores_previous_copy(self) -> None:
        self.dest.mkdir(parents=True)
        (self.dest / "SKILL.md").write_text("old", encoding="utf-8")
        real_rename = Path.rename

        def flaky_rename(path: Path, target):
            if ".skilldeck-staging-" in path.name:
                raise OSError("rename failed")
            return real_rename(path, target)

        with patch.object(Path, "rename", autospec=True, side_effect=flaky_rename):
            with self.assertRaises(OSError):
                replace_directory(self.src, self.dest)

        self.assertEqual((self.dest / "SKILL.md").read_text(encoding="utf-8"), "old")
        self.assertEqual(sorted(p.name for p in self.dest.parent.iterdir()), ["skill"])

    def test_missing_source_leaves_destination(self) -> None:
        self.dest.mkdir(parents=True)
        with self.assertRaises(OSError):
            replace_directory(self.root / "missing", self.dest)
        self.assertTrue(self.dest.is_dir())


class TestAtomicWrites(unittest.TestCase):
    def test_write_json_creates_parents(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "a" / "b.json"
            write_json_atomic(path, {"b": 1, "a": 2})
            text = path.read_text(encoding="utf-8")
        self.assertEqual(json.loads(text), {"a": 2, "b": 1})
        self.assertTrue(text.endswith("\n"))

    def test_timestamp_format(self) -> None:
        stamp = utc_now_iso()
        self.assertRegex(stamp, r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


if __name__ == "__main__":
    unittest.main()
