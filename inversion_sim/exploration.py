"""
Seeded parameter sweep for the inversion simulator.

Samples run configurations from a Mulberry32 stream, runs each one,
checks the single-inversion invariant, scores the run per anomaly
category and keeps the best runs in per-category top-K stores.

Any run of a sweep can be replayed from (seed, run index) alone: the
generator is advanced by sampling the earlier configurations without
running them.
"""

from __future__ import annotations
import logging
import shutil
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from inversion_sim.config import RunConfig
from inversion_sim.core import RunEngine, RunResult, get_variant
from inversion_sim.core.schedule import LEGACY_EVENT_TYPE
from inversion_sim.analysis import SCORERS, reemergence, trajectory_signature
from inversion_sim.rng import Mulberry32
from inversion_sim.storage import InsertResult, JSONStorage, RunOutputWriter, StoreSet, TopKEntry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEFAULT_STEPS_RANGE = (200003, 300001)
DEFAULT_VARIANT = "inversion"
CATEGORIES = tuple(SCORERS)


class InvariantViolation(RuntimeError):
    """A run broke the single-inversion invariant."""


@dataclass
class SweepRecord:
    """Scored summary of one sweep run (no trajectory)."""

    seed: int
    run_index: int
    config: RunConfig
    scores: Dict[str, Optional[float]]
    sig: str
    reemergence_sig: Optional[str] = None
    events: int = 0
    trajectory_length: int = 0
    elapsed: float = 0.0

    def payload(self, category: str) -> Dict[str, Any]:
        """Store payload; the re-emergence store keys on the re-emerging state."""
        sig = self.reemergence_sig if category == "reemergence" else self.sig
        return {
            "seed": self.seed,
            "runIndex": self.run_index,
            "sig": sig,
            "cfg": self.config.to_dict(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "runIndex": self.run_index,
            "scores": self.scores,
            "sig": self.sig,
            "events": self.events,
            "trajectoryLength": self.trajectory_length,
            "elapsed": self.elapsed,
            "cfg": self.config.to_dict(),
        }


@dataclass
class SweepReport:
    """Totals of a sweep."""

    seed: int
    runs: int = 0
    failures: List[Tuple[int, str]] = field(default_factory=list)
    total_steps: int = 0
    total_events: int = 0
    elapsed: float = 0.0
    records: List[SweepRecord] = field(default_factory=list)

    @property
    def steps_per_second(self) -> float:
        if self.elapsed > 0:
            return self.total_steps / self.elapsed
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "runs": self.runs,
            "failures": [{"runIndex": i, "error": e} for i, e in self.failures],
            "totalSteps": self.total_steps,
            "totalEvents": self.total_events,
            "seconds": self.elapsed,
            "stepsPerSec": int(self.steps_per_second),
        }


def make_config(
    rng: Mulberry32,
    steps_range: Tuple[int, int] = DEFAULT_STEPS_RANGE,
) -> RunConfig:
    """
    Sample one configuration.

    Draw order is fixed (sizes, start, velocities, steps, multiplier) so
    that a seed always yields the same sequence of configurations. Zero
    velocities are replaced by 1. The legacy inversion step is derived
    from the start hash.

    Args:
        rng: Generator (advanced by exactly eight draws)
        steps_range: Inclusive range for the run length
    """
    config = RunConfig(
        size_x=rng.rand_int(3, 25),
        size_y=rng.rand_int(3, 25),
        x0=rng.rand_int(0, 10),
        y0=rng.rand_int(0, 10),
        vx0=rng.rand_int(-3, 3) or 1,
        vy0=rng.rand_int(-3, 3) or 1,
        phase0=0,
        steps=rng.rand_int(*steps_range),
        multiplier=rng.rand_int(2, 50),
        mod=1000003,
    )
    return config.with_derived_inversion_step()


def config_at(
    seed: int,
    run_index: int,
    steps_range: Tuple[int, int] = DEFAULT_STEPS_RANGE,
) -> RunConfig:
    """Configuration of run `run_index` (1-based) of the sweep seeded with `seed`."""
    if run_index < 1:
        raise ValueError(f"run_index must be >= 1, got {run_index}")

    rng = Mulberry32(seed)
    config = None
    for _ in range(run_index):
        config = make_config(rng, steps_range)
    return config


def check_single_inversion(result: RunResult) -> None:
    """
    Verify a legacy-inversion run: exactly one INVERT event, on the
    configured step, and the state of that step flagged as inverted.

    Raises:
        InvariantViolation: If any of the three conditions fails
    """
    config = result.config
    inv = config.inversion_step
    if config.has_schedule or inv is None or inv < 1:
        return

    inverts = result.events_of_type(LEGACY_EVENT_TYPE)
    if len(inverts) != 1 or inverts[0].step != inv:
        raise InvariantViolation(
            f"expected one {LEGACY_EVENT_TYPE} at step {inv}, got {[e.step for e in inverts]}"
        )
    if inv >= len(result.trajectory) or not result.trajectory[inv].inverted:
        raise InvariantViolation(f"state at step {inv} is not flagged inverted")


def evaluate_run(
    seed: int,
    run_index: int,
    config: RunConfig,
    variant: str = DEFAULT_VARIANT,
    check: bool = True,
) -> Tuple[SweepRecord, RunResult]:
    """
    Run one configuration and score it.

    Returns:
        (record, full run result)
    """
    result = RunEngine(get_variant(variant)).run(config)
    if check:
        check_single_inversion(result)

    scores = {category: scorer(result) for category, scorer in SCORERS.items()}
    record = SweepRecord(
        seed=seed,
        run_index=run_index,
        config=config,
        scores=scores,
        sig=trajectory_signature(result.trajectory),
        reemergence_sig=reemergence(result.trajectory)["sig"],
        events=len(result.events),
        trajectory_length=len(result.trajectory),
        elapsed=result.stats.elapsed_time,
    )
    return record, result


def _evaluate_task(task: Tuple[int, int, RunConfig, str, bool, bool]):
    """Process-pool entry point. Ships the trajectory back only when asked."""
    seed, run_index, config, variant, check, keep_result = task
    try:
        record, result = evaluate_run(seed, run_index, config, variant, check)
    except Exception as e:
        return run_index, None, None, f"{type(e).__name__}: {e}"
    return run_index, record, (result if keep_result else None), None


class RunArchive:
    """
    Saved run directories of accepted runs.

    A directory is removed once no store holds an entry for it any more;
    stores report evictions through `on_evict`.
    """

    def __init__(self, base_path: Union[str, Path]):
        self.writer = RunOutputWriter(base_path)
        self._refs: Dict[str, int] = {}

    def save(self, result: RunResult, record: SweepRecord, accepted: int) -> Path:
        run_dir = self.writer.write(result, extra={"seed": record.seed, "runIndex": record.run_index,
                                                   "scores": record.scores})
        self._refs[str(run_dir)] = accepted
        return run_dir

    def adopt(self, stores: StoreSet) -> int:
        """
        Track run directories referenced by entries already in `stores`.

        Stores reopened from an earlier sweep hold payloads with a runDir;
        counting them lets later evictions remove those directories too.

        Returns:
            Number of directories tracked
        """
        for _, store in stores.items():
            for entry in store:
                run_dir = entry.payload.get("runDir") if isinstance(entry.payload, dict) else None
                if run_dir:
                    self._refs[run_dir] = self._refs.get(run_dir, 0) + 1
        return len(self._refs)

    def on_evict(self, category: str, entry: TopKEntry) -> None:
        payload = entry.payload if isinstance(entry.payload, dict) else {}
        run_dir = payload.get("runDir")
        if run_dir not in self._refs:
            return
        self._refs[run_dir] -= 1
        if self._refs[run_dir] <= 0:
            del self._refs[run_dir]
            shutil.rmtree(run_dir, ignore_errors=True)
            logger.info(f"[{category}] evicted run removed: {run_dir}")


def insert_record(
    stores: StoreSet,
    record: SweepRecord,
) -> Dict[str, Tuple[InsertResult, Dict[str, Any]]]:
    """
    Offer a record to every store it has a score for.

    Returns:
        category -> (insert outcome, payload handed to the store)
    """
    outcomes: Dict[str, Tuple[InsertResult, Dict[str, Any]]] = {}
    for category, score in record.scores.items():
        if score is None or category not in stores:
            continue
        payload = record.payload(category)
        outcomes[category] = (stores[category].insert(score, payload), payload)
    return outcomes


def run_sweep(
    runs: int,
    seed: int,
    output_dir: Optional[Path] = None,
    capacity: int = 1000,
    variant: str = DEFAULT_VARIANT,
    steps_range: Tuple[int, int] = DEFAULT_STEPS_RANGE,
    max_workers: int = 1,
    check: bool = True,
    keep_runs: bool = False,
    log_every: int = 50,
) -> Tuple[SweepReport, StoreSet]:
    """
    Run a seeded sweep and update the top-K stores.

    Runs may execute in a process pool; store inserts always happen in the
    parent, one record at a time, in run-index order.

    Args:
        runs: Number of configurations to sample
        seed: Mulberry32 seed
        output_dir: Directory for anomalies/, runs/ and the sweep report
        capacity: K of every store
        variant: Variant alias or name
        steps_range: Inclusive range of sampled run lengths
        max_workers: Worker processes (1 = run in this process)
        check: Verify the single-inversion invariant of every run
        keep_runs: Save full outputs of runs accepted by any store
        log_every: Progress log interval in runs

    Returns:
        (sweep report, stores)
    """
    if runs < 1:
        raise ValueError(f"runs must be >= 1, got {runs}")
    if output_dir is None:
        output_dir = Path("./sweeps")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    archive = RunArchive(output_dir) if keep_runs else None
    stores = StoreSet.in_directory(
        output_dir / "anomalies",
        CATEGORIES,
        capacity=capacity,
        on_evict=archive.on_evict if archive is not None else None,
    )
    if archive is not None:
        archive.adopt(stores)

    rng = Mulberry32(seed)
    tasks = [
        (seed, i, make_config(rng, steps_range), variant, check, keep_runs)
        for i in range(1, runs + 1)
    ]
    logger.info(f"Sweep: {runs} runs, seed={seed}, variant={variant}, workers={max_workers}")

    report = SweepReport(seed=seed)
    t0 = time.time()

    if max_workers > 1:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            outcomes = pool.map(_evaluate_task, tasks)
            for done, outcome in enumerate(outcomes, start=1):
                _collect(outcome, report, stores, archive)
                _log_progress(done, runs, report, t0, log_every)
    else:
        for done, task in enumerate(tasks, start=1):
            _collect(_evaluate_task(task), report, stores, archive)
            _log_progress(done, runs, report, t0, log_every)

    report.elapsed = time.time() - t0

    stores.save_all()
    JSONStorage(output_dir).save(report.to_dict(), f"sweep_{seed}")

    logger.info(
        f"Sweep done: {report.runs} runs, {len(report.failures)} failed, "
        f"{report.total_steps} steps, {int(report.steps_per_second)} steps/s"
    )
    _log_top(stores)
    return report, stores


def _collect(outcome, report: SweepReport, stores: StoreSet, archive: Optional[RunArchive]) -> None:
    run_index, record, result, error = outcome
    report.runs += 1
    if error is not None:
        logger.error(f"Run {run_index} failed: {error}")
        report.failures.append((run_index, error))
        return

    report.total_steps += int(record.config.steps)
    report.total_events += record.events
    report.records.append(record)

    inserted = insert_record(stores, record)
    accepted = [payload for outcome_, payload in inserted.values() if outcome_.accepted]
    if archive is not None and accepted and result is not None:
        run_dir = str(archive.save(result, record, len(accepted)))
        # Payloads are held by reference in the stores
        for payload in accepted:
            payload["runDir"] = run_dir


def _log_progress(done: int, total: int, report: SweepReport, t0: float, log_every: int) -> None:
    if log_every and done % log_every == 0:
        dt = max(time.time() - t0, 1e-9)
        logger.info(
            f"ok {done}/{total}  steps={report.total_steps}  events={report.total_events}  "
            f"steps/sec={int(report.total_steps / dt)}"
        )


def _log_top(stores: StoreSet, n: int = 5) -> None:
    for category, store in stores.items():
        best = store.sorted_entries()[:n]
        if not best:
            continue
        logger.info(f"\nTop {len(best)} [{category}]:")
        for i, entry in enumerate(best):
            payload = entry.payload or {}
            logger.info(
                f"  {i+1}. Score={entry.score:.4f}, seed={payload.get('seed')}, "
                f"run={payload.get('runIndex')}"
            )


def replay(
    seed: int,
    run_index: int,
    variant: str = DEFAULT_VARIANT,
    steps_range: Tuple[int, int] = DEFAULT_STEPS_RANGE,
    check: bool = True,
) -> Tuple[SweepRecord, RunResult]:
    """Re-run one configuration of a sweep without running the ones before it."""
    config = config_at(seed, run_index, steps_range)
    logger.info(f"Replay seed={seed} run={run_index}: {config.to_dict()}")
    record, result = evaluate_run(seed, run_index, config, variant, check)
    logger.info(
        f"Replay result: steps={config.steps} events={record.events} "
        f"traj={record.trajectory_length} seconds={record.elapsed:.3f}"
    )
    return record, result


def main():
    """CLI for seeded sweeps and replays."""
    import argparse

    parser = argparse.ArgumentParser(description="Inversion Simulator Sweep")
    parser.add_argument('--mode', choices=['sweep', 'replay'], default='sweep',
                       help='Sweep a seed or replay one of its runs')
    parser.add_argument('--runs', type=int, default=200,
                       help='Number of runs to sample (default: 200)')
    parser.add_argument('--seed', type=int, default=123456,
                       help='Generator seed (default: 123456)')
    parser.add_argument('--run-index', type=int, default=1,
                       help='Run to replay, 1-based (default: 1)')
    parser.add_argument('--variant', type=str, default=DEFAULT_VARIANT,
                       help='Variant alias or full name (default: inversion)')
    parser.add_argument('--min-steps', type=int, default=DEFAULT_STEPS_RANGE[0],
                       help=f'Shortest sampled run (default: {DEFAULT_STEPS_RANGE[0]})')
    parser.add_argument('--max-steps', type=int, default=DEFAULT_STEPS_RANGE[1],
                       help=f'Longest sampled run (default: {DEFAULT_STEPS_RANGE[1]})')
    parser.add_argument('--capacity', type=int, default=1000,
                       help='Entries kept per category (default: 1000)')
    parser.add_argument('--workers', type=int, default=1,
                       help='Worker processes (default: 1)')
    parser.add_argument('--keep-runs', action='store_true',
                       help='Save outputs of runs accepted by any store')
    parser.add_argument('--output', type=str, default='./sweeps',
                       help='Output directory')

    args = parser.parse_args()
    steps_range = (args.min_steps, args.max_steps)

    if args.mode == 'sweep':
        run_sweep(
            runs=args.runs,
            seed=args.seed,
            output_dir=Path(args.output),
            capacity=args.capacity,
            variant=args.variant,
            steps_range=steps_range,
            max_workers=args.workers,
            keep_runs=args.keep_runs,
        )

    elif args.mode == 'replay':
        replay(args.seed, args.run_index, variant=args.variant, steps_range=steps_range)


if __name__ == "__main__":
    main()
