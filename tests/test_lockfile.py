import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skilldeck.errors import RegistryReadError
from skilldeck.lockfile import LOCK_FILE_VERSION, LockFileStore
from skilldeck.models import LockEntry

EXISTING = {
    "version": 3,
    "skills": {
        "agent-notifier": {
            "source": "acme/skills",
            "sourceType": "github",
            "sourceUrl": "https://github.com/acme/skills.git",
            "skillPath": "skills/agent-notifier/SKILL.md",
            "skillFolderHash": "abc123",
            "installedAt": "2026-01-01T00:00:00.000Z",
            "updatedAt": "2026-01-01T00:00:00.000Z",
            "pinned": True,
        }
    },
    "dismissed": {"old-skill": True},
    "lastSelectedAgents": ["claude-code", "cursor"],
    "futureField": {"nested": [1, 2, 3]},
}


def _entry(folder_hash: str = "def456") -> LockEntry:
    return LockEntry(
        source="acme/other",
        source_type="github",
        source_url="https://github.com/acme/other.git",
        skill_path="SKILL.md",
        skill_folder_hash=folder_hash,
        installed_at="2026-02-01T00:00:00.000Z",
        updated_at="2026-02-01T00:00:00.000Z",
    )


class TestLockFileStore(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.path = Path(self._td.name) / ".agents" / ".skill-lock.json"
        self.store = LockFileStore(self.path)

    def tearDown(self) -> None:
        self._td.cleanup()

    def _write(self, data) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def test_missing_file_raises(self) -> None:
        self.assertFalse(self.store.exists)
        with self.assertRaises(RegistryReadError):
            self.store.read()

    def test_corrupt_file_raises(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(RegistryReadError):
            self.store.entries()

    def test_create_if_not_exists(self) -> None:
        self.assertTrue(self.store.create_if_not_exists())
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(
            data,
            {"version": LOCK_FILE_VERSION, "skills": {}, "dismissed": {}, "lastSelectedAgents": []},
        )
        self.assertFalse(self.store.create_if_not_exists())

    def test_create_if_not_exists_keeps_existing(self) -> None:
        self._write(EXISTING)
        self.assertFalse(self.store.create_if_not_exists())
        self.assertEqual(json.loads(self.path.read_text(encoding="utf-8")), EXISTING)

    def test_get_entry(self) -> None:
        self._write(EXISTING)
        entry = self.store.get_entry("agent-notifier")
        assert entry is not None
        self.assertEqual(entry.skill_folder_hash, "abc123")
        self.assertEqual(entry.folder_path, "skills/agent-notifier")
        self.assertEqual(entry.extra, {"pinned": True})
        self.assertIsNone(self.store.get_entry("missing"))
        self.assertEqual(self.store.version(), 3)

    def test_update_preserves_unknown_fields(self) -> None:
        self._write(EXISTING)
        self.store.update_entry("other", _entry())

        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["dismissed"], {"old-skill": True})
        self.assertEqual(data["lastSelectedAgents"], ["claude-code", "cursor"])
        self.assertEqual(data["futureField"], {"nested": [1, 2, 3]})
        self.assertEqual(data["skills"]["agent-notifier"], EXISTING["skills"]["agent-notifier"])
        self.assertEqual(data["skills"]["other"]["skillFolderHash"], "def456")
        self.assertNotIn("linked", data["skills"]["other"])

    def test_rewriting_entry_keeps_its_unknown_keys(self) -> None:
        self._write(EXISTING)
        entry = self.store.get_entry("agent-notifier")
        assert entry is not None
        entry.skill_folder_hash = "def456"
        self.store.update_entry("agent-notifier", entry)
        raw = json.loads(self.path.read_text(encoding="utf-8"))["skills"]["agent-notifier"]
        self.assertTrue(raw["pinned"])
        self.assertEqual(raw["skillFolderHash"], "def456")

    def test_remove_entry(self) -> None:
        self._write(EXISTING)
        self.store.remove_entry("agent-notifier")
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["skills"], {})
        self.assertEqual(data["dismissed"], {"old-skill": True})

    def test_write_is_atomic(self) -> None:
        self._write(EXISTING)
        before = self.path.read_text(encoding="utf-8")
        # Simulate dying between writing the temp file and the rename.
        with patch.object(Path, "replace", side_effect=OSError("killed")):
            with self.assertRaises(OSError):
                self.store.update_entry("other", _entry())
        self.assertEqual(self.path.read_text(encoding="utf-8"), before)
        leftovers = [p.name for p in self.path.parent.iterdir() if p.name != self.path.name]
        self.assertEqual(leftovers, [])

    def test_cache_and_invalidate(self) -> None:
        self._write(EXISTING)
        self.assertIsNotNone(self.store.get_entry("agent-notifier"))
        self._write({"version": 3, "skills": {}})
        # Still served from memory until invalidated.
        self.assertIsNotNone(self.store.get_entry("agent-notifier"))
        self.store.invalidate_cache()
        self.assertIsNone(self.store.get_entry("agent-notifier"))

    def test_failed_write_does_not_poison_cache(self) -> None:
        self._write(EXISTING)
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                self.store.update_entry("other", _entry())
        self.assertIsNone(self.store.get_entry("other"))


if __name__ == "__main__":
    unittest.main()
