"""
Run directory allocation and output writing.

Every saved run gets its own directory `runs/run_NNNNNN`, numbered by a
persistent counter file. Directories are never reused or overwritten.
"""

from __future__ import annotations
import csv
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from ..core.engine import RunResult
from ..core.schedule import compute_inversion_step_from_start
from ..core.state import EVENT_FIELDS
from .json_storage import JSONStorage

logger = logging.getLogger(__name__)


COUNTER_FILENAME = "run_counter.txt"
RUNS_DIRNAME = "runs"


def format_run_name(n: int) -> str:
    return f"run_{n:06d}"


class RunOutputWriter:
    """
    Writes runs to sequentially numbered directories.

    Layout:
        <base>/run_counter.txt
        <base>/runs/run_000001/trajectory.json
                              /events.csv
                              /config.json
                              /summary.json

    Example:
        writer = RunOutputWriter(".")
        run_dir = writer.write(result)
    """

    def __init__(self, base_path: Union[str, Path]):
        """
        Initialize writer.

        Args:
            base_path: Directory holding the counter file and runs/
        """
        self.base_path = Path(base_path)
        self.runs_path = self.base_path / RUNS_DIRNAME
        self.counter_path = self.base_path / COUNTER_FILENAME

    def read_counter(self) -> int:
        """
        Next run number. A missing counter file is created with 1.

        Raises:
            ValueError: If the counter file does not hold a non-negative integer
        """
        if not self.counter_path.is_file():
            self.base_path.mkdir(parents=True, exist_ok=True)
            self.counter_path.write_text("1", encoding="utf-8")
            return 1

        raw = self.counter_path.read_text(encoding="utf-8").strip()
        try:
            n = int(raw)
        except ValueError:
            raise ValueError(f"{COUNTER_FILENAME} is invalid: {raw!r}") from None
        if n < 0:
            raise ValueError(f"{COUNTER_FILENAME} is invalid: {raw!r}")
        return n

    def allocate(self) -> Tuple[Path, str]:
        """
        Create the next run directory and advance the counter.

        Returns:
            (run directory, run name)

        Raises:
            FileExistsError: If the directory for the current counter already exists
        """
        self.runs_path.mkdir(parents=True, exist_ok=True)

        n = self.read_counter()
        run_name = format_run_name(n)
        run_dir = self.runs_path / run_name

        # Counter drifted or runs were copied in by hand
        if run_dir.exists():
            raise FileExistsError(f"Run directory already exists: {run_name} ({run_dir})")

        run_dir.mkdir()
        self.counter_path.write_text(str(n + 1), encoding="utf-8")
        return run_dir, run_name

    def write(
        self,
        result: RunResult,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """
        Allocate a run directory and write all outputs of `result` into it.

        Args:
            result: Completed run
            extra: Additional summary fields (scores, seed, ...)

        Returns:
            Path to the run directory
        """
        run_dir, run_name = self.allocate()
        write_outputs(run_dir, run_name, result, extra)
        logger.info(f"Saved {run_name}: {len(result.events)} events -> {run_dir}")
        return run_dir


def write_events_csv(path: Union[str, Path], result: RunResult) -> Path:
    """Write the event log with the EVENT_FIELDS header."""
    path = Path(path)
    with open(path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(EVENT_FIELDS)
        for event in result.events:
            writer.writerow(event.to_row())
    return path


def summarize(run_name: str, result: RunResult) -> Dict[str, Any]:
    """Short run summary, as written to summary.json."""
    config = result.config
    if config.inversion_step is not None:
        inversion_step = config.inversion_step
    else:
        inversion_step = compute_inversion_step_from_start(config)

    return {
        "run": run_name,
        "variant": result.variant_name,
        "steps": config.steps,
        "inversionStep": inversion_step,
        "inversionSchedule": [m.to_dict() for m in config.inversion_schedule or ()],
        "events": len(result.events),
        "eventsByType": dict(result.stats.events_by_type),
        "trajectoryLength": len(result.trajectory),
    }


def write_outputs(
    run_dir: Union[str, Path],
    run_name: str,
    result: RunResult,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Write trajectory.json, events.csv, config.json and summary.json to `run_dir`."""
    storage = JSONStorage(run_dir)
    storage.save([s.to_dict() for s in result.trajectory], "trajectory", indent=None)
    write_events_csv(storage.base_path / "events.csv", result)
    storage.save(result.config.to_dict(), "config")

    summary = summarize(run_name, result)
    if extra:
        summary.update(extra)
    storage.save(summary, "summary")
