"""Configuration surface and result parsing for the external k6 load generator.

The request mix lives in the k6 scripts; the harness only chooses target,
duration and concurrency and reads back the summary k6 exports.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from tabulate import tabulate

from src.common.errors import LoadGeneratorError

logger = logging.getLogger(__name__)


class LoadTestConfig(BaseModel):
    """What the load generator is pointed at and how hard it pushes."""

    target_url: str = Field(description="Base URL of the service under test")
    duration: str = Field(default="30s", description="k6 duration, e.g. 30s or 2m")
    concurrency: int = Field(default=10, gt=0, description="Virtual users")
    script: Path = Field(description="k6 script to run")
    k6_binary: str = Field(default="k6", description="k6 executable")


class LoadSummary(BaseModel):
    """Percentile and rate summary consumed for comparison reports."""

    requests: int = Field(ge=0, description="Total HTTP requests")
    rate: float = Field(ge=0, description="Requests per second")
    error_rate: float = Field(default=0.0, ge=0, le=1, description="Fraction of failed requests")
    avg_ms: float = Field(ge=0, description="Average request duration")
    min_ms: float = Field(default=0.0, ge=0, description="Minimum request duration")
    med_ms: float = Field(ge=0, description="Median request duration")
    max_ms: float = Field(ge=0, description="Maximum request duration")
    p90_ms: float = Field(ge=0, description="90th percentile request duration")
    p95_ms: float = Field(ge=0, description="95th percentile request duration")
    p99_ms: Optional[float] = Field(default=None, ge=0, description="99th percentile, if exported")


def build_command(config: LoadTestConfig, summary_path: Path) -> List[str]:
    return [
        config.k6_binary,
        "run",
        "--vus",
        str(config.concurrency),
        "--duration",
        config.duration,
        "-e",
        f"BASE_URL={config.target_url}",
        "--summary-export",
        str(summary_path),
        str(config.script),
    ]


def parse_k6_summary(data: Dict[str, Any]) -> LoadSummary:
    """Extract the request-duration trend and request counters from a k6 export.

    Raises:
        LoadGeneratorError: If the export lacks the core HTTP metrics.
    """
    metrics = data.get("metrics", {})
    duration = metrics.get("http_req_duration")
    reqs = metrics.get("http_reqs")
    if not duration or not reqs:
        raise LoadGeneratorError("k6 summary has no http_req_duration/http_reqs metrics")

    failed = metrics.get("http_req_failed", {})
    # Older exports carry the rate under "value", newer ones under "rate".
    error_rate = failed.get("rate", failed.get("value", 0.0))

    return LoadSummary(
        requests=int(reqs.get("count", 0)),
        rate=float(reqs.get("rate", 0.0)),
        error_rate=float(error_rate),
        avg_ms=float(duration.get("avg", 0.0)),
        min_ms=float(duration.get("min", 0.0)),
        med_ms=float(duration.get("med", 0.0)),
        max_ms=float(duration.get("max", 0.0)),
        p90_ms=float(duration.get("p(90)", 0.0)),
        p95_ms=float(duration.get("p(95)", 0.0)),
        p99_ms=float(duration["p(99)"]) if "p(99)" in duration else None,
    )


def run_load_test(config: LoadTestConfig, summary_path: Path) -> LoadSummary:
    """Run k6 against ``config.target_url`` and parse its exported summary.

    k6 exits non-zero when thresholds fail; that still produces a summary and
    is only logged.
    """
    cmd = build_command(config, summary_path)
    logger.info(f"Running {config.script.name} against {config.target_url}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise LoadGeneratorError(f"{config.k6_binary} not found on PATH") from e

    if result.returncode != 0:
        logger.warning(f"k6 exited with {result.returncode} (thresholds may have failed)")

    if not summary_path.exists():
        raise LoadGeneratorError(f"k6 produced no summary: {result.stderr.strip()[-500:]}")

    with open(summary_path) as f:
        return parse_k6_summary(json.load(f))


def compare_load(label_a: str, a: LoadSummary, label_b: str, b: LoadSummary) -> str:
    """Side-by-side table of two load summaries with b/a ratios."""

    def ratio(x: float, y: float) -> str:
        return f"{y / x:.2f}x" if x else "-"

    rows = [
        ["Requests/sec", f"{a.rate:.1f}", f"{b.rate:.1f}", ratio(a.rate, b.rate)],
        ["Avg (ms)", f"{a.avg_ms:.2f}", f"{b.avg_ms:.2f}", ratio(a.avg_ms, b.avg_ms)],
        ["Median (ms)", f"{a.med_ms:.2f}", f"{b.med_ms:.2f}", ratio(a.med_ms, b.med_ms)],
        ["p90 (ms)", f"{a.p90_ms:.2f}", f"{b.p90_ms:.2f}", ratio(a.p90_ms, b.p90_ms)],
        ["p95 (ms)", f"{a.p95_ms:.2f}", f"{b.p95_ms:.2f}", ratio(a.p95_ms, b.p95_ms)],
        ["Max (ms)", f"{a.max_ms:.2f}", f"{b.max_ms:.2f}", ratio(a.max_ms, b.max_ms)],
        ["Error rate", f"{a.error_rate:.2%}", f"{b.error_rate:.2%}", "-"],
    ]
    return tabulate(rows, headers=["Metric", label_a, label_b, "ratio"], tablefmt="grid")
