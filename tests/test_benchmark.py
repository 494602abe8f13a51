import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from experiments.benchmark_fragmentation import ExperimentConfig, run_single
from experiments.run_simulation import run_simulation
from experiments.workload import SimulatedWorkload, WorkloadConfig, apply_relocations
from heap_sim import CoalescingCompactor, RelocatingCompactor


class BenchmarkHarnessTests(unittest.TestCase):
    def test_summary_contains_core_metrics(self) -> None:
        config = ExperimentConfig(
            label="test_config",
            capacity=256,
            compactor_factory=RelocatingCompactor,
            steps=150,
            fragmentation_threshold=0.6,
        )
        summary = run_single(config, seed=123)
        self.assertIn("failure_rate", summary)
        self.assertIn("avg_fragmentation", summary)
        self.assertGreater(summary["allocations"], 0)
        self.assertGreaterEqual(summary["compactions"], 0)
        self.assertLessEqual(summary["final_fragmentation"], 0.6)

    def test_trajectory_written_per_run(self) -> None:
        config = ExperimentConfig(
            label="coalesce",
            capacity=128,
            compactor_factory=CoalescingCompactor,
            steps=40,
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            run_single(config, seed=1, trajectory_dir=tmpdir)
            rows = (Path(tmpdir) / "coalesce_seed1.csv").read_text().splitlines()
        self.assertEqual(len(rows), 41)
        self.assertTrue(rows[0].startswith("step,op,heap_used"))

    def test_simulation_keeps_heap_consistent(self) -> None:
        with redirect_stdout(io.StringIO()) as output:
            space = run_simulation(120, 128, seed=5, double_free_interval=10)
        space.check_invariants()
        self.assertIn("Final stats:", output.getvalue())
        self.assertIn("rejected release", output.getvalue())


class WorkloadTests(unittest.TestCase):
    def test_same_seed_same_stream(self) -> None:
        config = WorkloadConfig(max_length=32)
        first = SimulatedWorkload(config, seed=9)
        second = SimulatedWorkload(config, seed=9)
        for live in range(20):
            self.assertEqual(first.next_request(live), second.next_request(live))

    def test_requests_respect_bounds(self) -> None:
        workload = SimulatedWorkload(WorkloadConfig(min_length=2, max_length=16), seed=3)
        for _ in range(200):
            request = workload.next_request(0)
            self.assertEqual(request.op, "allocate")
            self.assertTrue(2 <= request.length <= 16)

    def test_apply_relocations(self) -> None:
        live = [5, 20, 40]
        apply_relocations(live, {5: 0, 20: 10})
        self.assertEqual(live, [0, 10, 40])


if __name__ == "__main__":
    unittest.main()
