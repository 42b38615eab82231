import json

import pytest

from listing_crawler.checkpoint import (
    CHECKPOINT_VERSION,
    CheckpointState,
    CheckpointStore,
    PageCursor,
    PageOutcome,
)
from listing_crawler.errors import CheckpointFailure


def sample_state() -> CheckpointState:
    state = CheckpointState(partition_index=1, records_found=12, records_processed=10)
    cursor = state.cursor_for("ohio")
    cursor.record_fetch(PageOutcome.OK)
    cursor.advance_past(3)
    state.mark_completed("alabama")
    state.dedup = ["https://shows.example.com/event/a", "https://shows.example.com/event/b"]
    state.failed_items = {"https://shows.example.com/event/c/": "ohio"}
    return state


def test_save_then_load(tmp_path):
    store = CheckpointStore(tmp_path / "state" / "checkpoint.json")
    store.save(sample_state())

    loaded = store.load()

    assert loaded is not None
    assert loaded.partition_index == 1
    assert loaded.cursors["ohio"].page_number == 4
    assert loaded.cursors["ohio"].last_outcome == PageOutcome.OK
    assert loaded.completed_partitions == ["alabama"]
    assert loaded.failed_items == {"https://shows.example.com/event/c/": "ohio"}
    assert loaded.saved_at is not None
    assert store.save_count == 1


def test_missing_file_means_fresh_start(tmp_path):
    assert CheckpointStore(tmp_path / "none.json").load() is None


def test_corrupt_file_means_fresh_start(tmp_path):
    path = tmp_path / "checkpoint.json"
    path.write_text('{"version": 1, "cursors": {', encoding="utf-8")
    assert CheckpointStore(path).load() is None


def test_unknown_version_means_fresh_start(tmp_path):
    path = tmp_path / "checkpoint.json"
    path.write_text(json.dumps({"version": CHECKPOINT_VERSION + 1}), encoding="utf-8")
    assert CheckpointStore(path).load() is None


def test_save_leaves_no_temporary_files(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    store.save(sample_state())
    store.save(sample_state())

    assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]


def test_failed_write_keeps_previous_checkpoint(tmp_path, monkeypatch):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    store.save(sample_state())

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("listing_crawler.checkpoint.os.replace", broken_replace)
    changed = sample_state()
    changed.records_processed = 99
    with pytest.raises(CheckpointFailure):
        store.save(changed)

    assert store.load().records_processed == 10
    assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]


def test_clear_removes_checkpoint_and_leftovers(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    store.save(sample_state())
    (tmp_path / ".checkpoint.json.abc123.tmp").write_text("partial")

    assert store.clear()
    assert list(tmp_path.iterdir()) == []
    assert not store.clear()


def test_cursor_never_moves_backwards():
    cursor = PageCursor(partition_id="ohio")
    cursor.advance_past(5)
    cursor.advance_past(2)
    assert cursor.page_number == 6


def test_cursor_counts_only_fetched_pages():
    cursor = PageCursor(partition_id="ohio")
    cursor.record_fetch(PageOutcome.OK)
    cursor.record_fetch(PageOutcome.EMPTY)
    cursor.record_fetch(PageOutcome.FAILED)
    assert cursor.pages_fetched == 2
    assert cursor.last_outcome == PageOutcome.FAILED


def test_mark_completed_once():
    state = CheckpointState()
    assert state.mark_completed("ohio")
    assert not state.mark_completed("ohio")
    assert state.completed_partitions == ["ohio"]
    assert state.is_completed("ohio")
