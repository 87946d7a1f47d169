"""File-based persistence of run results.

Each run writes into its own timestamped directory: trial CSVs, health-probe
CSVs and JSON summaries. Files are written once and never appended across
runs, so paths are stable for a given run directory.
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel

from src.common.errors import ResultsFormatError
from src.harness.models import TIMEOUT, TrialSet


def artifact_name(kind: str, namespace: str, service: str, suffix: str) -> str:
    return f"{kind}_{namespace}_{service}_{suffix}"


class ProbeRecorder:
    """Collects ``timestamp_ms, status_code, latency_ms`` rows into a CSV file.

    The file is opened lazily and the header is written even when no row is
    ever recorded.
    """

    FIELDS = ("timestamp_ms", "status_code", "latency_ms")

    def __init__(self, path: Path):
        self.path = path
        self.rows = 0
        self._file = None
        self._writer = None

    def __enter__(self) -> "ProbeRecorder":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", newline="")
        self._writer = csv.writer(self._file)
        self._writer.writerow(self.FIELDS)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def record(self, timestamp_ms: int, status_code: int, latency_ms: float) -> None:
        if self._writer is None:
            raise RuntimeError("ProbeRecorder used outside its context")
        self._writer.writerow((timestamp_ms, status_code, latency_ms))
        self.rows += 1


def write_trials_csv(trial_set: TrialSet, path: Path) -> Path:
    """One row per trial; timed-out trials carry the ``timeout`` sentinel."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["index", "started_at", "trigger_ms", "completion_ms", "result_ms"])
        for trial in trial_set.trials:
            writer.writerow([
                trial.index,
                trial.started_at.isoformat(),
                trial.trigger_ms,
                "" if trial.completion_ms is None else trial.completion_ms,
                TIMEOUT if trial.timed_out else trial.result_ms,
            ])
    return path


def write_summary(path: Path, payload: Dict[str, Any]) -> Path:
    """Write a JSON summary, serialising pydantic models found at the top level."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        key: value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        for key, value in payload.items()
    }
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)
    return path


def read_results_csv(path: Path) -> List[Any]:
    """Read back the ``result_ms`` column of a trials CSV (ints and "timeout").

    Raises:
        ResultsFormatError: The column is missing or a cell is neither a
            non-negative integer nor the timeout sentinel.
    """
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or "result_ms" not in reader.fieldnames:
            raise ResultsFormatError(f"{path}: no result_ms column")
        results: List[Any] = []
        for line, row in enumerate(reader, start=2):
            value = (row["result_ms"] or "").strip()
            if value == TIMEOUT:
                results.append(TIMEOUT)
            elif value.isdigit():
                results.append(int(value))
            else:
                raise ResultsFormatError(f"{path}:{line}: invalid result_ms {value!r}")
    return results
