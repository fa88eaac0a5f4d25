"""
Unit Tests for the Resume Store.

Verifies:
1. Stored pose save/load/delete keyed by book title.
2. Repo snapshots and variables.
3. Corrupt files are reported, temp files never left behind.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from runbook.errors import ErrorCode, RunbookError
from runbook.persistence.store import Repo, StoredPose, atomic_write_json, atomic_write_text


class TestStoredPose(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.pose = StoredPose(self.test_dir)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_file_is_keyed_by_slugged_title(self):
        self.assertEqual(self.pose.file("My Runbook"), Path(self.test_dir) / "runbook_pose_my-runbook")

    def test_roundtrip(self):
        self.assertIsNone(self.pose.load("My Runbook"))

        self.pose.save("My Runbook", "1.2.0")
        self.assertEqual(self.pose.load("My Runbook"), "1.2.0")

        self.pose.save("My Runbook", "1.2.1")
        self.assertEqual(self.pose.load("My Runbook"), "1.2.1")

        self.pose.delete("My Runbook")
        self.assertIsNone(self.pose.load("My Runbook"))
        # Deleting twice is fine
        self.pose.delete("My Runbook")

    def test_corrupt_file_is_reported(self):
        self.pose.file("Broken").write_text("{not json")
        with self.assertRaises(RunbookError) as ctx:
            self.pose.load("Broken")
        self.assertEqual(ctx.exception.code, ErrorCode.STORE_CORRUPT)

    def test_custom_prefix(self):
        pose = StoredPose(self.test_dir, prefix="custom_")
        pose.save("Book", "1")
        self.assertTrue((Path(self.test_dir) / "custom_book").exists())


class TestRepo(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.repo = Repo(self.test_dir)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_roundtrip(self):
        self.repo.save("Book", {"kind": "book", "items": []}, "abc123", {"release": "v2", "count": 3})

        record = self.repo.load("Book")
        self.assertEqual(record.digest, "abc123")
        self.assertEqual(record.book["kind"], "book")
        self.assertEqual(record.vars, {"release": "v2", "count": 3})

    def test_unserializable_vars_are_stringified(self):
        self.repo.save("Book", {}, "d", {"path": Path("/srv")})
        self.assertEqual(self.repo.load("Book").vars, {"path": "/srv"})


class TestAtomicWrite(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_replaces_content_without_leftovers(self):
        target = Path(self.test_dir) / "nested" / "state.json"
        atomic_write_json(target, {"position": "1"})
        atomic_write_text(target, "second")

        self.assertEqual(target.read_text(), "second")
        self.assertEqual([p.name for p in target.parent.iterdir()], ["state.json"])


if __name__ == "__main__":
    unittest.main()
