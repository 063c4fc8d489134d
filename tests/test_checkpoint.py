import json

from poi_catalog.core.checkpoint import CheckpointStore, JobState


def test_save_and_load_round_trip(tmp_path):
    store = CheckpointStore(str(tmp_path / "state" / "checkpoint.json"))
    state = JobState(started_at="2026-01-01T00:00:00Z")
    state.mark_failed("b", 1)
    state.mark_processed("a", 0)
    state.mark_processed("b", 2)

    store.save(state)
    loaded = store.load()

    assert loaded.processed_ids == {"a", "b"}
    assert loaded.failed_ids == set()
    assert loaded.last_index == 2
    assert loaded.started_at == "2026-01-01T00:00:00Z"
    data = json.loads((tmp_path / "state" / "checkpoint.json").read_text(encoding="utf-8"))
    assert data["processedIds"] == ["a", "b"]


def test_unreadable_checkpoint_starts_fresh(tmp_path, caplog):
    path = tmp_path / "checkpoint.json"
    path.write_text("{not json", encoding="utf-8")
    store = CheckpointStore(str(path))

    with caplog.at_level("WARNING"):
        state = store.load_or_new()

    assert state.processed_ids == set()
    assert state.last_index == -1
    assert "Ignoring unreadable checkpoint" in caplog.text


def test_clear(tmp_path):
    store = CheckpointStore(str(tmp_path / "checkpoint.json"))
    store.save(JobState())
    store.clear()
    assert store.load() is None
    store.clear()


def test_non_integer_last_index_starts_fresh(tmp_path, caplog):
    path = tmp_path / "checkpoint.json"
    path.write_text(json.dumps({"processedIds": ["a"], "lastIndex": "halfway"}), encoding="utf-8")

    with caplog.at_level("WARNING"):
        assert CheckpointStore(str(path)).load() is None
    assert "Ignoring malformed checkpoint" in caplog.text


def test_output_path_is_remembered(tmp_path):
    store = CheckpointStore(str(tmp_path / "checkpoint.json"))
    store.save(JobState(output_path="data/enriched.json"))
    assert store.load().output_path == "data/enriched.json"
