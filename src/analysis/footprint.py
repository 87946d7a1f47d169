"""Resource footprint comparison between substrates.

Sums the CPU and memory that pods declare (requests and limits), derives
per-pod averages and projects how many pods fit into a fixed budget. CPU is
normalised to millicores and memory to MiB.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional

from kubernetes.client.rest import ApiException
from pydantic import BaseModel, Field, computed_field
from tabulate import tabulate
from urllib3.exceptions import HTTPError as TransportError

from src.common.errors import ClusterUnreachableError, InventoryError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

# Multipliers to bytes for Kubernetes memory quantity suffixes.
MEMORY_SUFFIXES = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "k": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
}

_QUANTITY = re.compile(r"^([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)([A-Za-z]*)$")


def _split_quantity(value: str) -> tuple:
    match = _QUANTITY.match(value.strip())
    if not match:
        raise ValueError(f"Invalid resource quantity: {value!r}")
    return float(match.group(1)), match.group(2)


def parse_cpu(value: Optional[str]) -> float:
    """CPU quantity in millicores: ``"500m"`` -> 500, ``"1"`` -> 1000."""
    if not value:
        return 0.0
    number, suffix = _split_quantity(str(value))
    if suffix == "m":
        return number
    if suffix == "n":
        return number / 1_000_000
    if suffix == "u":
        return number / 1000
    if suffix:
        raise ValueError(f"Invalid CPU quantity: {value!r}")
    return number * 1000


def parse_memory(value: Optional[str]) -> float:
    """Memory quantity in MiB: ``"512Mi"`` -> 512, ``"1Gi"`` -> 1024, bytes -> /1024^2."""
    if not value:
        return 0.0
    number, suffix = _split_quantity(str(value))
    if not suffix:
        return number / MIB
    if suffix not in MEMORY_SUFFIXES:
        raise ValueError(f"Invalid memory quantity: {value!r}")
    return number * MEMORY_SUFFIXES[suffix] / MIB


class InstanceSpec(BaseModel):
    """Declared resources of one pod, summed over its containers."""

    name: str = Field(description="Pod name")
    cpu_request: float = Field(default=0.0, ge=0, description="CPU requests (millicores)")
    cpu_limit: float = Field(default=0.0, ge=0, description="CPU limits (millicores)")
    memory_request: float = Field(default=0.0, ge=0, description="Memory requests (MiB)")
    memory_limit: float = Field(default=0.0, ge=0, description="Memory limits (MiB)")


class ResourceBudget(BaseModel):
    """Capacity the density projection fills."""

    cpu_millicores: float = Field(default=1000, gt=0, description="CPU budget (millicores)")
    memory_mi: float = Field(default=512, gt=0, description="Memory budget (MiB)")


class FootprintSummary(BaseModel):
    """Totals and per-pod averages for one namespace."""

    instance_count: int = Field(ge=0)
    cpu_request_total: float = Field(ge=0)
    cpu_limit_total: float = Field(ge=0)
    memory_request_total: float = Field(ge=0)
    memory_limit_total: float = Field(ge=0)

    @computed_field
    @property
    def avg_cpu_request(self) -> Optional[float]:
        if self.instance_count == 0:
            return None
        return self.cpu_request_total / self.instance_count

    @computed_field
    @property
    def avg_memory_request(self) -> Optional[float]:
        if self.instance_count == 0:
            return None
        return self.memory_request_total / self.instance_count


class DensityProjection(BaseModel):
    """How many pods fit in a budget, per resource and overall."""

    by_cpu: int = Field(ge=0)
    by_memory: int = Field(ge=0)

    @computed_field
    @property
    def instances(self) -> int:
        return min(self.by_cpu, self.by_memory)

    @computed_field
    @property
    def limited_by(self) -> str:
        return "cpu" if self.by_cpu <= self.by_memory else "memory"


class UsageSample(BaseModel):
    """Actual usage of one pod as reported by metrics-server."""

    name: str
    cpu: float = Field(ge=0, description="CPU usage (millicores)")
    memory: float = Field(ge=0, description="Memory usage (MiB)")


class FootprintComparison(BaseModel):
    """Footprint of substrate ``a`` against substrate ``b`` under one budget."""

    label_a: str
    label_b: str
    a: FootprintSummary
    b: FootprintSummary
    budget: ResourceBudget
    density_a: Optional[DensityProjection] = None
    density_b: Optional[DensityProjection] = None

    @computed_field
    @property
    def density_advantage(self) -> Optional[float]:
        """How many times more ``a`` pods than ``b`` pods fit in the budget."""
        if self.density_a is None or self.density_b is None:
            return None
        return self.density_a.instances / max(self.density_b.instances, 1)


def instance_spec_from_pod(pod: Any) -> InstanceSpec:
    """Sum container requests/limits of a pod object from the Kubernetes client."""
    cpu_req = cpu_lim = mem_req = mem_lim = 0.0
    for container in pod.spec.containers or []:
        resources = container.resources
        requests = (resources.requests if resources else None) or {}
        limits = (resources.limits if resources else None) or {}
        cpu_req += parse_cpu(requests.get("cpu"))
        cpu_lim += parse_cpu(limits.get("cpu"))
        mem_req += parse_memory(requests.get("memory"))
        mem_lim += parse_memory(limits.get("memory"))
    return InstanceSpec(
        name=pod.metadata.name,
        cpu_request=cpu_req,
        cpu_limit=cpu_lim,
        memory_request=mem_req,
        memory_limit=mem_lim,
    )


def summarize_footprint(specs: List[InstanceSpec]) -> FootprintSummary:
    return FootprintSummary(
        instance_count=len(specs),
        cpu_request_total=sum(s.cpu_request for s in specs),
        cpu_limit_total=sum(s.cpu_limit for s in specs),
        memory_request_total=sum(s.memory_request for s in specs),
        memory_limit_total=sum(s.memory_limit for s in specs),
    )


def project_density(summary: FootprintSummary, budget: ResourceBudget) -> Optional[DensityProjection]:
    """floor(budget / per-pod average) for CPU and memory; None without pods.

    Averages below one unit are clamped to one so undeclared requests do not
    project an unbounded density.
    """
    if summary.instance_count == 0:
        return None
    return DensityProjection(
        by_cpu=math.floor(budget.cpu_millicores / max(summary.avg_cpu_request, 1)),
        by_memory=math.floor(budget.memory_mi / max(summary.avg_memory_request, 1)),
    )


def compare_footprints(
    label_a: str,
    a: FootprintSummary,
    label_b: str,
    b: FootprintSummary,
    budget: ResourceBudget,
) -> FootprintComparison:
    return FootprintComparison(
        label_a=label_a,
        label_b=label_b,
        a=a,
        b=b,
        budget=budget,
        density_a=project_density(a, budget),
        density_b=project_density(b, budget),
    )


def collect_inventory(cluster: Any, namespace: str) -> List[InstanceSpec]:
    """Declared resources of every pod in ``namespace``.

    Raises:
        InventoryError: The API answered with an error status.
        ClusterUnreachableError: The API server could not be reached.
    """
    try:
        pods = cluster.list_instances(namespace)
    except ApiException as e:
        raise InventoryError(f"Listing pods in {namespace} failed: {e.status} {e.reason}") from e
    except TransportError as e:
        raise ClusterUnreachableError(f"Kubernetes API unreachable: {e}") from e
    return [instance_spec_from_pod(pod) for pod in (pods.items or [])]


def collect_usage(cluster: Any, namespace: str) -> Optional[List[UsageSample]]:
    """Actual pod usage from metrics-server, or None when it is unavailable."""
    try:
        data = cluster.list_pod_metrics(namespace)
    except ApiException as e:
        logger.warning(f"metrics-server not available or no data yet ({e.status})")
        return None
    except TransportError as e:
        raise ClusterUnreachableError(f"Kubernetes API unreachable: {e}") from e

    samples = []
    for item in data.get("items", []):
        containers = item.get("containers", [])
        samples.append(UsageSample(
            name=item.get("metadata", {}).get("name", ""),
            cpu=sum(parse_cpu(c.get("usage", {}).get("cpu")) for c in containers),
            memory=sum(parse_memory(c.get("usage", {}).get("memory")) for c in containers),
        ))
    return samples


def format_inventory(specs: List[InstanceSpec], summary: FootprintSummary) -> str:
    rows = [
        [s.name, f"{s.cpu_request:.0f}m", f"{s.cpu_limit:.0f}m", f"{s.memory_request:.0f}Mi", f"{s.memory_limit:.0f}Mi"]
        for s in specs
    ]
    rows.append([
        "TOTAL",
        f"{summary.cpu_request_total:.0f}m",
        f"{summary.cpu_limit_total:.0f}m",
        f"{summary.memory_request_total:.0f}Mi",
        f"{summary.memory_limit_total:.0f}Mi",
    ])
    return tabulate(rows, headers=["POD", "CPU_REQ", "CPU_LIM", "MEM_REQ", "MEM_LIM"], tablefmt="simple")


def format_usage(samples: List[UsageSample]) -> str:
    if not samples:
        return "  (no usage data yet)"
    total_cpu = sum(s.cpu for s in samples)
    total_mem = sum(s.memory for s in samples)
    return "\n".join([
        f"  Total CPU usage: {total_cpu:.0f}m",
        f"  Total Memory usage: {total_mem:.0f}Mi",
        f"  Avg CPU per pod: {total_cpu / len(samples):.1f}m",
        f"  Avg Memory per pod: {total_mem / len(samples):.1f}Mi",
    ])


def format_comparison(comparison: FootprintComparison) -> str:
    a, b = comparison.a, comparison.b

    def ratio(x: float, y: float) -> str:
        return f"{y / max(x, 1):.1f}x"

    rows: List[List[str]] = [
        ["Pod count", str(a.instance_count), str(b.instance_count), ""],
        ["CPU requests (total)", f"{a.cpu_request_total:.0f}m", f"{b.cpu_request_total:.0f}m",
         ratio(a.cpu_request_total, b.cpu_request_total)],
        ["CPU limits (total)", f"{a.cpu_limit_total:.0f}m", f"{b.cpu_limit_total:.0f}m",
         ratio(a.cpu_limit_total, b.cpu_limit_total)],
        ["Memory requests", f"{a.memory_request_total:.0f}Mi", f"{b.memory_request_total:.0f}Mi",
         ratio(a.memory_request_total, b.memory_request_total)],
        ["Memory limits", f"{a.memory_limit_total:.0f}Mi", f"{b.memory_limit_total:.0f}Mi",
         ratio(a.memory_limit_total, b.memory_limit_total)],
    ]
    lines = [tabulate(rows, headers=["", comparison.label_a, comparison.label_b, "ratio"], tablefmt="simple")]

    budget = comparison.budget
    lines.append("")
    lines.append(
        f"--- Resource Budget Analysis (CPU: {budget.cpu_millicores:.0f}m, Memory: {budget.memory_mi:.0f}Mi) ---"
    )
    if comparison.density_a is None or comparison.density_b is None:
        lines.append("  (comparison requires both namespaces to have running pods)")
        return "\n".join(lines)

    width = max(len(comparison.label_a), len(comparison.label_b)) + 1
    for label, summary, density in (
        (comparison.label_a, a, comparison.density_a),
        (comparison.label_b, b, comparison.density_b),
    ):
        lines.append(
            f"  {label + ':':<{width}} {density.instances} pods "
            f"(CPU-limited: {density.by_cpu}, Mem-limited: {density.by_memory}; "
            f"avg {summary.avg_cpu_request:.0f}m / {summary.avg_memory_request:.0f}Mi per pod)"
        )
    lines.append(
        f"  Density advantage: {comparison.density_advantage:.1f}x more {comparison.label_a} pods"
    )
    return "\n".join(lines)


def footprint_report(summary: FootprintSummary, budget: ResourceBudget) -> Dict[str, Any]:
    """JSON-ready summary with its density projection."""
    density = project_density(summary, budget)
    return {
        "summary": summary.model_dump(),
        "density": density.model_dump() if density else None,
    }
