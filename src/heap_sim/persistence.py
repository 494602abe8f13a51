from __future__ import annotations

import json
import pickle
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional

if TYPE_CHECKING:
    from .memory_space import MemorySpace

# Fields each journaled operation must carry besides "op".
JOURNAL_FIELDS: Dict[str, tuple] = {
    "allocate": ("length", "address"),
    "release": ("address",),
    "compact": (),
}


def validate_entry(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``entry`` reduced to its known fields, or raise ValueError."""
    op = entry.get("op")
    if op not in JOURNAL_FIELDS:
        raise ValueError(f"unknown journal operation {op!r}")
    cleaned: Dict[str, Any] = {"op": op}
    for name in JOURNAL_FIELDS[op]:
        value = entry.get(name)
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"{op} entry needs an integer {name!r}, got {value!r}")
        cleaned[name] = value
    return cleaned


class OperationJournal:
    """
    Append-only JSON-lines log of successful heap operations.

    Entries are checked against ``JOURNAL_FIELDS`` on the way in and on the
    way out, so a replay never feeds a malformed operation to a heap.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8")

    def append(self, entry: Mapping[str, Any]) -> None:
        self._handle.write(json.dumps(validate_entry(entry)) + "\n")
        self._handle.flush()

    def replay(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield validate_entry(json.loads(line))
                except ValueError as exc:
                    raise ValueError(f"{self.path}:{line_number}: {exc}") from exc

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()

    def __enter__(self) -> "OperationJournal":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SnapshotStore:
    """Pickle both registries, in registry order, to a single file."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, space: "MemorySpace") -> None:
        state = {"capacity": space.capacity, **space.snapshot()}
        with self.path.open("wb") as handle:
            pickle.dump(state, handle)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with self.path.open("rb") as handle:
            return pickle.load(handle)
