from __future__ import annotations

import argparse
from typing import List, Optional

from heap_sim import CoalescingCompactor, MemorySpace, RelocatingCompactor, UnknownAddress
from experiments.instrumentation import AllocatorProfiler
from experiments.workload import SimulatedWorkload, WorkloadConfig, apply_relocations

COMPACTORS = {
    "relocate": RelocatingCompactor,
    "coalesce": CoalescingCompactor,
}


def run_simulation(
    steps: int,
    capacity: int,
    *,
    compactor: str = "relocate",
    seed: int = 42,
    double_free_interval: int = 0,
    profiler: Optional[AllocatorProfiler] = None,
) -> MemorySpace:
    workload = SimulatedWorkload(WorkloadConfig(max_length=max(1, capacity // 16)), seed=seed)
    space = MemorySpace(capacity, compactor=COMPACTORS[compactor](), profiler=profiler)
    live: List[int] = []
    released: List[int] = []

    for step in range(1, steps + 1):
        request = workload.next_request(len(live))
        if request.op == "release":
            address = live.pop(request.victim)
            space.release(address)
            released.append(address)
        else:
            address = space.try_allocate(request.length)
            if address is None:
                print(f"[step {step}] {request.length} words do not fit, compacting: {space.stats()}")
                space.compact()
                apply_relocations(live, space.last_relocations)
                released.clear()
                address = space.try_allocate(request.length)
            if address is None:
                print(f"[step {step}] out of memory for {request.length} words")
            else:
                live.append(address)

        if double_free_interval and step % double_free_interval == 0 and released:
            stale = released[-1]
            if not space.is_allocated(stale):
                try:
                    space.release(stale)
                except UnknownAddress as exc:
                    print(f"[step {step}] rejected release: {exc}")

    print("Final stats:", space.stats())
    print("Heap map:")
    print(space)
    return space


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drive a simulated heap with a random workload.")
    parser.add_argument("--steps", type=int, default=50, help="Number of requests to issue.")
    parser.add_argument("--capacity", type=int, default=1024, help="Heap capacity in words.")
    parser.add_argument("--compactor", choices=sorted(COMPACTORS), default="relocate", help="Compaction strategy.")
    parser.add_argument("--seed", type=int, default=42, help="Workload seed.")
    parser.add_argument(
        "--double-free-interval",
        type=int,
        default=0,
        help="Every N steps re-release a stale address to show the rejection path (0 disables).",
    )
    parser.add_argument("--events-dir", type=str, default=None, help="Write allocator events to this directory.")
    args = parser.parse_args()
    profiler = AllocatorProfiler(run_id=f"sim_{args.seed}", output_dir=args.events_dir) if args.events_dir else None
    run_simulation(
        args.steps,
        args.capacity,
        compactor=args.compactor,
        seed=args.seed,
        double_free_interval=args.double_free_interval,
        profiler=profiler,
    )
    if profiler:
        profiler.flush()
