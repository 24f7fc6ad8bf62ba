"""
Tests for the persistent state store
"""

import json
import os
from unittest.mock import patch

import pytest

from spot_archiver.core.state import StateStore


class TestLoad:
    """Test reading the state document"""

    def test_missing_file_gives_empty_state(self, temp_dir):
        """Test that a missing state file is not an error"""
        store = StateStore(temp_dir / "missing.json", debounce=None)
        state = store.load()

        assert state.playlists == {}
        assert state.tokens.access_token is None
        assert state.tokens.refresh_token is None

    def test_corrupt_file_gives_empty_state(self, temp_dir):
        """Test that unparseable JSON starts a fresh state"""
        path = temp_dir / "state.json"
        path.write_text("{not json", encoding="utf-8")

        store = StateStore(path, debounce=None)
        state = store.load()

        assert state.playlists == {}

    def test_non_object_document_gives_empty_state(self, temp_dir):
        """Test that a JSON list instead of an object is ignored"""
        path = temp_dir / "state.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        assert StateStore(path, debounce=None).load().playlists == {}

    def test_reads_existing_document(self, temp_dir):
        """Test loading tokens and playlist records"""
        path = temp_dir / "state.json"
        path.write_text(json.dumps({
            "tokens": {"accessToken": "acc", "refreshToken": "ref"},
            "playlists": {
                "p1": {"name": "Weekly (save)", "tracks": ["t1", "t2"], "blacklist": ["t3"]},
                "broken": "nope",
            },
        }), encoding="utf-8")

        store = StateStore(path, debounce=None)
        store.load()

        assert store.tokens.access_token == "acc"
        assert store.tokens.refresh_token == "ref"
        record = store.record("p1")
        assert record.name == "Weekly (save)"
        assert record.tracks == ["t1", "t2"]
        assert record.blacklist == {"t3"}
        assert store.record("broken") is None


class TestSave:
    """Test writing the state document"""

    def test_round_trip(self, store):
        """Test that a reloaded store sees the same records"""
        store.set_tokens("acc", "ref")
        store.ensure_record("p1", name="Weekly (save)")
        store.set_tracks("p1", ["t2", "t1", "t3"])
        store.extend_blacklist("p1", ["t9", "t4"])

        reloaded = StateStore(store.path, debounce=None)
        reloaded.load()

        record = reloaded.record("p1")
        assert record.name == "Weekly (save)"
        assert record.tracks == ["t2", "t1", "t3"]
        assert record.blacklist == {"t4", "t9"}
        assert reloaded.tokens.refresh_token == "ref"

    def test_file_format(self, store):
        """Test the on-disk key names and sorted blacklist"""
        store.set_tokens("acc", "ref")
        store.extend_blacklist("p1", ["b", "a"])

        document = json.loads(store.path.read_text(encoding="utf-8"))

        assert document["tokens"] == {"accessToken": "acc", "refreshToken": "ref"}
        assert document["playlists"]["p1"]["blacklist"] == ["a", "b"]
        assert document["playlists"]["p1"]["tracks"] == []

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_is_private(self, store):
        """Test that the token-bearing file is readable by the owner only"""
        store.set_tokens("acc", "ref")

        assert os.stat(store.path).st_mode & 0o777 == 0o600

    def test_creates_parent_directories(self, temp_dir):
        """Test writing below a directory that does not exist yet"""
        store = StateStore(temp_dir / "nested" / "dir" / "state.json", debounce=None)
        store.load()
        store.ensure_record("p1", name="x")

        assert store.path.exists()

    def test_failed_write_is_retried_on_next_change(self, store):
        """Test that a write error keeps the store dirty and is not raised"""
        with patch.object(store, "_replace_file", side_effect=OSError("disk full")):
            store.ensure_record("p1", name="x")
            assert store.dirty

        assert not store.path.exists()

        store.set_tracks("p1", ["t1"])

        assert not store.dirty
        document = json.loads(store.path.read_text(encoding="utf-8"))
        assert document["playlists"]["p1"]["tracks"] == ["t1"]

    def test_flush_reports_failure(self, store):
        """Test flush() return value"""
        with patch.object(store, "_replace_file", side_effect=OSError("read-only fs")):
            store.ensure_record("p1")
            assert store.flush() is False
        assert store.flush() is True


class TestDebounce:
    """Test coalescing of writes"""

    def test_mutations_share_one_timer(self, temp_dir, timers):
        """Test that a burst of mutations arms a single timer"""
        store = StateStore(temp_dir / "state.json", debounce=1.0, timer_factory=timers)
        store.load()

        store.ensure_record("p1", name="x")
        store.set_tracks("p1", ["t1"])
        store.extend_blacklist("p1", ["t2"])

        assert len(timers.timers) == 1
        assert timers.timers[0].interval == 1.0
        assert timers.timers[0].daemon
        assert not store.path.exists()

        timers.timers[0].fire()

        assert store.path.exists()
        assert not store.dirty

    def test_new_timer_after_flush(self, temp_dir, timers):
        """Test that the next mutation after a write arms a fresh timer"""
        store = StateStore(temp_dir / "state.json", debounce=1.0, timer_factory=timers)
        store.load()

        store.ensure_record("p1")
        timers.timers[0].fire()
        store.set_name("p1", "renamed")

        assert len(timers.timers) == 2

    def test_close_flushes_pending_changes(self, temp_dir, timers):
        """Test that close() cancels the timer and writes immediately"""
        store = StateStore(temp_dir / "state.json", debounce=1.0, timer_factory=timers)
        store.load()
        store.set_tokens("acc", "ref")

        store.close()

        assert timers.timers[0].cancelled
        document = json.loads(store.path.read_text(encoding="utf-8"))
        assert document["tokens"]["refreshToken"] == "ref"


class TestRecords:
    """Test record operations"""

    def test_set_tokens_keeps_refresh_token(self, store):
        """Test that a refresh without rotation keeps the old refresh token"""
        store.set_tokens("acc1", "ref")
        store.set_tokens("acc2")

        assert store.tokens.access_token == "acc2"
        assert store.tokens.refresh_token == "ref"

    def test_clear_tokens(self, store):
        store.set_tokens("acc", "ref")
        store.clear_tokens()

        assert store.tokens.access_token is None
        assert store.tokens.refresh_token is None

    def test_ensure_record_keeps_existing(self, store):
        """Test that ensure_record() never overwrites an existing record"""
        store.ensure_record("p1", name="first")
        store.set_tracks("p1", ["t1"])

        record = store.ensure_record("p1", name="second")

        assert record.name == "first"
        assert record.tracks == ["t1"]

    def test_extend_blacklist_returns_new_entries(self, store):
        """Test that only previously unknown URIs are reported"""
        assert store.extend_blacklist("p1", ["a", "b"]) == {"a", "b"}
        assert store.extend_blacklist("p1", ["b", "c"]) == {"c"}
        assert store.record("p1").blacklist == {"a", "b", "c"}

    def test_records_are_copies(self, store):
        """Test that callers cannot mutate the stored document"""
        store.set_tracks("p1", ["t1"])

        record = store.record("p1")
        record.tracks.append("t2")
        record.blacklist.add("t3")

        assert store.record("p1").tracks == ["t1"]
        assert store.record("p1").blacklist == set()

        snapshot = store.state
        snapshot.playlists.clear()
        assert store.record("p1") is not None

    def test_find_by_name(self, store):
        """Test exact, case-sensitive name lookup"""
        store.set_name("p1", "Weekly (save)")
        store.set_name("p2", "weekly (save)")
        store.set_name("p3", "Weekly (save)")

        assert store.find_by_name("Weekly (save)") == ["p1", "p3"]
        assert store.find_by_name("Other") == []
