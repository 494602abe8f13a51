from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class WorkloadConfig:
    allocate_probability: float = 0.6
    min_length: int = 1
    max_length: int = 64
    # Fraction of requests drawn from the large end of the size range.
    large_request_ratio: float = 0.1


@dataclass
class Request:
    op: str  # "allocate" or "release"
    length: int = 0
    victim: Optional[int] = None  # index into the caller's live address list


class SimulatedWorkload:
    """
    Seeded stream of allocate/release requests.

    Mixed small and large requests with random release order is the classic
    recipe for external fragmentation, which is what the compaction
    strategies are exercised against.
    """

    def __init__(self, config: Optional[WorkloadConfig] = None, seed: Optional[int] = None) -> None:
        self.config = config or WorkloadConfig()
        self.random = random.Random(seed)

    def next_request(self, live_count: int) -> Request:
        if live_count == 0 or self.random.random() < self.config.allocate_probability:
            return Request("allocate", length=self._sample_length())
        return Request("release", victim=self.random.randrange(live_count))

    def _sample_length(self) -> int:
        low, high = self.config.min_length, self.config.max_length
        if self.random.random() < self.config.large_request_ratio:
            low = max(low, high // 2)
        else:
            high = max(low, high // 4)
        return self.random.randint(low, high)


def apply_relocations(live: List[int], relocations: Dict[int, int]) -> None:
    """Rewrite held addresses in place after a relocating compaction."""
    for index, address in enumerate(live):
        live[index] = relocations.get(address, address)
