from __future__ import annotations

import csv
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class AllocatorProfiler:
    """
    Structured event recorder for MemorySpace.

    Every event gets a per-run sequence number so a heap history can be
    re-ordered exactly after a CSV round trip. Events stay in memory and can
    be written out as JSONL and CSV.
    """

    run_id: str
    output_dir: Optional[str] = None
    write_immediately: bool = False
    events: List[Dict[str, object]] = field(default_factory=list)

    @property
    def jsonl_path(self) -> Optional[Path]:
        return Path(self.output_dir) / f"{self.run_id}.jsonl" if self.output_dir else None

    def record_event(self, event_type: str, payload: Dict[str, object]) -> None:
        record: Dict[str, object] = {
            "seq": len(self.events),
            "timestamp": time.time(),
            "run_id": self.run_id,
            "event": event_type,
        }
        record.update(payload)
        self.events.append(record)
        if self.write_immediately and self.jsonl_path:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record) + "\n")

    def events_of(self, event_type: str) -> List[Dict[str, object]]:
        return [event for event in self.events if event["event"] == event_type]

    def counts(self) -> Dict[str, int]:
        """Number of events per type, e.g. allocations vs. failed allocations."""
        totals: Dict[str, int] = {}
        for event in self.events:
            totals[event["event"]] = totals.get(event["event"], 0) + 1
        return totals

    def flush(self) -> None:
        if not self.jsonl_path or not self.events:
            return
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("w", encoding="utf-8") as handle:
            for record in self.events:
                handle.write(json.dumps(record) + "\n")
        # Event types carry different keys; restval fills the gaps.
        fieldnames = ["seq", "timestamp", "run_id", "event"]
        fieldnames += sorted({key for event in self.events for key in event} - set(fieldnames))
        with self.jsonl_path.with_suffix(".csv").open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=fieldnames, restval="")
            writer.writeheader()
            writer.writerows(self.events)
