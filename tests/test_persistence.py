import json
import tempfile
from pathlib import Path

import pytest

from heap_sim import MemorySpace, OperationJournal, SnapshotStore


def read_json_lines(path: Path):
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            if line.strip():
                yield json.loads(line)


def test_journal_records_operations_and_replays():
    with tempfile.TemporaryDirectory() as tmpdir:
        journal_path = Path(tmpdir) / "ops" / "heap.log"
        with OperationJournal(str(journal_path)) as journal:
            space = MemorySpace(64, journal=journal)
            a = space.allocate(10)
            b = space.allocate(20)
            space.release(a)
            space.compact()
            space.allocate(5)
            with pytest.raises(KeyError):
                space.release(63)

        entries = list(read_json_lines(journal_path))
        assert [entry["op"] for entry in entries] == ["allocate", "allocate", "release", "compact", "allocate"]
        assert entries[1] == {"op": "allocate", "length": 20, "address": b}

        rebuilt = MemorySpace.replay(64, journal.replay())
        assert rebuilt.snapshot() == space.snapshot()


def test_replay_rejects_diverging_journal():
    entries = [{"op": "allocate", "length": 4, "address": 0}, {"op": "allocate", "length": 4, "address": 8}]
    with pytest.raises(ValueError):
        MemorySpace.replay(16, entries)
    with pytest.raises(ValueError):
        MemorySpace.replay(16, [{"op": "resize"}])


def test_snapshot_round_trip_preserves_registry_order():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SnapshotStore(str(Path(tmpdir) / "heap.pkl"))
        assert store.load() is None

        space = MemorySpace(32)
        a = space.allocate(8)
        space.allocate(8)
        space.release(a)
        store.write(space)

        state = store.load()
        assert state["capacity"] == 32
        restored = MemorySpace.from_snapshot(state)
        assert restored.snapshot() == {"free": [(16, 16), (0, 8)], "allocated": [(8, 8)]}
        assert restored.allocate(8) == 16


def test_recovery_into_the_same_journal_does_not_duplicate_entries():
    with tempfile.TemporaryDirectory() as tmpdir:
        journal_path = Path(tmpdir) / "heap.log"
        with OperationJournal(str(journal_path)) as journal:
            space = MemorySpace(64, journal=journal)
            first = space.allocate(8)
            space.allocate(8)
            space.release(first)

        with OperationJournal(str(journal_path)) as reopened:
            recovered = MemorySpace.replay(64, reopened.replay(), journal=reopened)
            assert recovered.snapshot() == space.snapshot()
            assert len(list(read_json_lines(journal_path))) == 3

            recovered.allocate(4)
            entries = list(read_json_lines(journal_path))
            assert len(entries) == 4
            assert entries[-1] == {"op": "allocate", "length": 4, "address": 16}


def test_journal_rejects_malformed_entries():
    with tempfile.TemporaryDirectory() as tmpdir:
        journal_path = Path(tmpdir) / "heap.log"
        with OperationJournal(str(journal_path)) as journal:
            with pytest.raises(ValueError):
                journal.append({"op": "allocate", "length": 4})
            with pytest.raises(ValueError):
                journal.append({"op": "release", "address": True})
            journal.append({"op": "compact", "note": "dropped"})

        with journal_path.open("a", encoding="utf-8") as handle:
            handle.write('{"op": "resize", "length": 3}\n')

        replayed = OperationJournal(str(journal_path)).replay()
        assert next(replayed) == {"op": "compact"}
        with pytest.raises(ValueError, match=":2:"):
            next(replayed)
