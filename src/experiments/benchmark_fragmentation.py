from __future__ import annotations

import argparse
import csv
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from heap_sim import CoalescingCompactor, MemorySpace, RelocatingCompactor
from heap_sim.compactors import Compactor
from experiments.workload import SimulatedWorkload, WorkloadConfig, apply_relocations

CompactorFactory = Callable[[], Compactor]


@dataclass
class ExperimentConfig:
    label: str
    capacity: int
    compactor_factory: CompactorFactory
    steps: int = 500
    compact_on_failure: bool = True
    # Compact proactively once fragmentation crosses this; None disables it.
    fragmentation_threshold: Optional[float] = None
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)


def run_single(
    config: ExperimentConfig,
    seed: int,
    *,
    trajectory_dir: Optional[str] = None,
) -> Dict[str, float]:
    workload = SimulatedWorkload(config.workload, seed=seed)
    space = MemorySpace(config.capacity, compactor=config.compactor_factory())
    live: List[int] = []

    allocations = 0
    failures = 0
    recovered = 0
    releases = 0
    compactions = 0
    moved_words = 0
    fragmentation_sum = 0.0
    heap_used_sum = 0.0

    def compact() -> None:
        nonlocal compactions, moved_words
        space.compact()
        compactions += 1
        moved_words += space.last_compaction.moved_words
        apply_relocations(live, space.last_relocations)

    trajectory_rows: List[Dict[str, float]] = []
    for step in range(1, config.steps + 1):
        request = workload.next_request(len(live))
        if request.op == "allocate":
            address = space.try_allocate(request.length)
            if address is None and config.compact_on_failure:
                compact()
                address = space.try_allocate(request.length)
                if address is not None:
                    recovered += 1
            if address is None:
                failures += 1
            else:
                allocations += 1
                live.append(address)
        else:
            space.release(live.pop(request.victim))
            releases += 1

        stats = space.stats()
        if (
            config.fragmentation_threshold is not None
            and stats["fragmentation"] > config.fragmentation_threshold
        ):
            compact()
            stats = space.stats()

        fragmentation_sum += stats["fragmentation"]
        heap_used_sum += stats["heap_used"]
        trajectory_rows.append(
            {
                "step": step,
                "op": request.op,
                "heap_used": stats["heap_used"],
                "heap_free": stats["heap_free"],
                "largest_free": stats["largest_free"],
                "free_blocks": stats["free_blocks"],
                "fragmentation": stats["fragmentation"],
                "compactions_total": compactions,
                "failures_total": failures,
            }
        )

    if trajectory_dir and trajectory_rows:
        os.makedirs(trajectory_dir, exist_ok=True)
        trajectory_path = os.path.join(trajectory_dir, f"{config.label}_seed{seed}.csv")
        with open(trajectory_path, "w", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(trajectory_rows[0].keys()))
            writer.writeheader()
            writer.writerows(trajectory_rows)

    final_stats = space.stats()
    requests = allocations + failures
    return {
        "config": config.label,
        "seed": seed,
        "steps": config.steps,
        "allocations": float(allocations),
        "failures": float(failures),
        "failure_rate": failures / requests if requests else 0.0,
        "recovered_by_compaction": float(recovered),
        "releases": float(releases),
        "compactions": float(compactions),
        "moved_words": float(moved_words),
        "avg_fragmentation": fragmentation_sum / config.steps if config.steps else 0.0,
        "avg_heap_used": heap_used_sum / config.steps if config.steps else 0.0,
        "final_heap_used": float(final_stats["heap_used"]),
        "final_free_blocks": float(final_stats["free_blocks"]),
        "final_fragmentation": final_stats["fragmentation"],
    }


def build_default_configs(args: argparse.Namespace) -> List[ExperimentConfig]:
    configs = [
        ExperimentConfig(
            label="no_compaction",
            capacity=4096,
            compactor_factory=RelocatingCompactor,
            compact_on_failure=False,
        ),
        ExperimentConfig(
            label="coalesce_on_failure",
            capacity=4096,
            compactor_factory=CoalescingCompactor,
        ),
        ExperimentConfig(
            label="relocate_on_failure",
            capacity=4096,
            compactor_factory=RelocatingCompactor,
        ),
        ExperimentConfig(
            label="relocate_on_threshold",
            capacity=4096,
            compactor_factory=RelocatingCompactor,
            fragmentation_threshold=args.fragmentation_threshold,
        ),
    ]

    for config in configs:
        config.steps = args.steps
        config.workload = WorkloadConfig(
            allocate_probability=args.allocate_probability,
            max_length=args.max_length,
        )
        if args.capacity:
            config.capacity = args.capacity
    return configs


def write_summary(path: str, records: Iterable[Dict[str, float]]) -> None:
    records = list(records)
    if not records:
        return
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(records[0].keys()))
        writer.writeheader()
        writer.writerows(records)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compare compaction strategies under synthetic workloads.")
    parser.add_argument("--steps", type=int, default=500, help="Requests issued per run.")
    parser.add_argument("--seeds", type=int, default=5, help="Number of random seeds to evaluate.")
    parser.add_argument("--seed-offset", type=int, default=0, help="Offset applied to generated seeds.")
    parser.add_argument("--output", type=str, default="results/fragmentation.csv", help="Path to CSV summary output.")
    parser.add_argument(
        "--trajectory-dir",
        type=str,
        default=None,
        help="Optional directory to write per-run trajectory CSV files.",
    )
    parser.add_argument("--capacity", type=int, default=None, help="Override heap capacity (words) for all configs.")
    parser.add_argument("--max-length", type=int, default=64, help="Largest request size in words.")
    parser.add_argument(
        "--allocate-probability",
        type=float,
        default=0.6,
        help="Probability that a request allocates rather than releases.",
    )
    parser.add_argument(
        "--fragmentation-threshold",
        type=float,
        default=0.5,
        help="Proactive compaction threshold for the threshold-triggered config.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configs = build_default_configs(args)
    seeds = [args.seed_offset + index for index in range(args.seeds)]

    summaries: List[Dict[str, float]] = []
    for config in configs:
        for seed in seeds:
            summaries.append(run_single(config, seed, trajectory_dir=args.trajectory_dir))

    write_summary(args.output, summaries)

    for summary in summaries:
        print(
            f"[{summary['config']} seed={summary['seed']}] "
            f"failure_rate={summary['failure_rate']:.3f} "
            f"compactions={int(summary['compactions'])} moved_words={int(summary['moved_words'])} "
            f"avg_fragmentation={summary['avg_fragmentation']:.3f}"
        )


if __name__ == "__main__":
    main()
