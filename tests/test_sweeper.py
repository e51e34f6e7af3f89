import os
import time
import unittest
import tempfile
from pathlib import Path

from pdf_merger.services.sweeper import RetentionSweeper
from pdf_merger.storage.session_store import SessionStore, new_session_id

HOUR = 3600


def _touch(path: Path, age_seconds: float, now: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"%PDF-1.4")
    os.utime(path, (now - age_seconds, now - age_seconds))
    return path


class TestRetentionSweeper(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        self.base = Path(self._td.name)
        self.uploads = self.base / "uploads"
        self.merged = self.base / "merged"
        self.scratch = self.uploads / "temp"
        self.sessions = SessionStore(self.base / "state")
        self.now = time.time()
        self.sweeper = RetentionSweeper(
            upload_root=self.uploads,
            merged_root=self.merged,
            scratch_root=self.scratch,
            expiry_seconds=HOUR,
            scratch_expiry_seconds=300,
            sessions=self.sessions,
        )

    def test_deletes_only_expired_files(self):
        sid = new_session_id()
        old = _touch(self.uploads / sid / "old.pdf", HOUR + 5, self.now)
        fresh = _touch(self.uploads / sid / "fresh.pdf", HOUR - 5, self.now)

        report = self.sweeper.sweep(now=self.now)

        self.assertFalse(old.exists())
        self.assertTrue(fresh.exists())
        self.assertEqual(report.files_deleted, [str(old)])
        self.assertTrue((self.uploads / sid).is_dir())

    def test_removes_directory_left_empty(self):
        sid = new_session_id()
        _touch(self.merged / sid / "a.pdf", HOUR + 1, self.now)
        _touch(self.merged / sid / "b.pdf", 2 * HOUR, self.now)

        report = self.sweeper.sweep(now=self.now)

        self.assertFalse((self.merged / sid).exists())
        self.assertIn(str(self.merged / sid), report.dirs_removed)

    def test_scratch_uses_short_window(self):
        stale = _touch(self.scratch / "gs_stale.pdf", 301, self.now)
        recent = _touch(self.scratch / "gs_recent.pdf", 299, self.now)

        self.sweeper.sweep(now=self.now)

        self.assertFalse(stale.exists())
        self.assertTrue(recent.exists())
        # The scratch area is not treated as a session directory.
        self.assertTrue(self.scratch.is_dir())

    def test_second_sweep_deletes_nothing(self):
        sid = new_session_id()
        _touch(self.uploads / sid / "old.pdf", HOUR + 5, self.now)
        _touch(self.uploads / sid / "fresh.pdf", 10, self.now)
        _touch(self.scratch / "gs_old.pdf", 600, self.now)

        first = self.sweeper.sweep(now=self.now)
        second = self.sweeper.sweep(now=self.now)

        self.assertGreater(first.deleted_count, 0)
        self.assertEqual(second.deleted_count, 0)

    def test_stale_files_do_not_outlive_window_across_two_sweeps(self):
        sid = new_session_id()
        path = _touch(self.uploads / sid / "doc.pdf", 0, self.now)

        self.sweeper.sweep(now=self.now + HOUR - 1)
        self.assertTrue(path.exists())
        self.sweeper.sweep(now=self.now + HOUR + 1)
        self.assertFalse(path.exists())

    def test_does_not_follow_symlinks_out_of_root(self):
        outside = self.base / "outside"
        victim = _touch(outside / "keep.pdf", 10 * HOUR, self.now)
        self.uploads.mkdir(parents=True, exist_ok=True)
        link_dir = self.uploads / new_session_id()
        sid = new_session_id()
        _touch(self.uploads / sid / "x.pdf", 0, self.now)
        try:
            os.symlink(outside, link_dir, target_is_directory=True)
            os.symlink(victim, self.uploads / sid / "link.pdf")
        except (OSError, NotImplementedError):
            self.skipTest("symlinks not supported here")

        self.sweeper.sweep(now=self.now)

        self.assertTrue(victim.exists())
        self.assertTrue(link_dir.is_symlink())

    def test_missing_roots_are_ignored(self):
        report = self.sweeper.sweep(now=self.now)
        self.assertEqual(report.deleted_count, 0)

    def test_idle_session_tables_are_discarded(self):
        sid = new_session_id()
        with self.sessions.edit(sid, "files") as table:
            table["deadbeefdeadbeef"] = {"stored_name": "x"}
        state_path = self.sessions.state_root / f"{sid}.json"
        os.utime(state_path, (self.now - 2 * HOUR, self.now - 2 * HOUR))

        report = self.sweeper.sweep(now=self.now)

        self.assertEqual(report.sessions_discarded, [sid])
        self.assertFalse(state_path.exists())

    def test_active_session_tables_are_kept(self):
        sid = new_session_id()
        _touch(self.uploads / sid / "fresh.pdf", 10, self.now)
        with self.sessions.edit(sid, "files") as table:
            table["deadbeefdeadbeef"] = {"stored_name": "fresh.pdf"}
        state_path = self.sessions.state_root / f"{sid}.json"
        os.utime(state_path, (self.now - 2 * HOUR, self.now - 2 * HOUR))

        report = self.sweeper.sweep(now=self.now)

        self.assertEqual(report.sessions_discarded, [])
        self.assertTrue(state_path.exists())
