#!/usr/bin/env python3
"""Substrate Benchmark CLI

Measures cold-start latency, forced-delete recovery time and resource
footprint of a service running as a SpinApp (Wasm) or a Deployment
(container) on Kubernetes.

## Commands

    coldstart    <namespace> <service> [runs]          scale 0 -> 1, time to Ready
    availability <namespace> <service> [runs] [port]   force-delete pod, time to replacement Ready
    resources    [namespace|all]                       declared/actual resources and density
    compare      <trials_a.csv> <trials_b.csv>         Welch's t-test between two runs
    bench-all                                          load, availability and resources for both substrates

## Usage

    python -m src.cli coldstart wasm gateway 5
    python -m src.cli availability containers gateway 10 9091

Every command prints a run log and writes CSV/JSON files under a timestamped
results directory. Per-trial timeouts do not fail a run; only setup or
connectivity failures exit non-zero.
"""

import argparse
import logging
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from src.analysis.footprint import (
    FootprintSummary,
    ResourceBudget,
    collect_inventory,
    collect_usage,
    compare_footprints,
    footprint_report,
    format_comparison,
    format_inventory,
    format_usage,
    summarize_footprint,
)
from src.analysis.trial_statistics import (
    OutlierAnalysis,
    TrialStatistics,
    compare_substrates,
    detect_outliers_iqr,
    format_statistics,
    numeric_results,
    summarize,
)
from src.common.errors import HarnessError, LoadGeneratorError
from src.common.logging_utils import configure_logging
from src.common.paths import paths
from src.common.results import (
    ProbeRecorder,
    artifact_name,
    read_results_csv,
    write_summary,
    write_trials_csv,
)
from src.common.settings import HarnessSettings, load_settings
from src.harness.clock import Clock, MonotonicClock
from src.harness.cluster import KubernetesCluster
from src.harness.detector import detect_resource
from src.harness.loadgen import LoadSummary, LoadTestConfig, compare_load, run_load_test
from src.harness.models import TrialKind, TrialSet
from src.harness.poller import StatePoller
from src.harness.scaling import ScaleController
from src.harness.trial_driver import AvailabilityDriver, ColdStartDriver, Preflight
from src.harness.tunnel import open_tunnel, sample_health

logger = logging.getLogger("src.cli")

SEPARATOR_WIDTH = 60
EXIT_OK = 0
EXIT_SETUP_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

# Minimum numeric results before IQR outliers are reported.
MIN_OUTLIER_SAMPLES = 4

TITLES = {
    TrialKind.COLDSTART: ("Cold Start Test Results", "Cold start times (ms)"),
    TrialKind.AVAILABILITY: ("Availability Test Results", "Recovery times (ms)"),
}


def connect(settings: HarnessSettings) -> KubernetesCluster:
    """Build the Kubernetes client bundle and verify the API server answers."""
    cluster = KubernetesCluster.from_kubeconfig(settings.kubeconfig, settings.kube_context, settings=settings)
    version = cluster.check_connection()
    logger.debug(f"Connected to Kubernetes {version}")
    return cluster


def build_clock() -> Clock:
    return MonotonicClock()


def render_report(
    trial_set: TrialSet,
    statistics: TrialStatistics,
    outliers: Optional[OutlierAnalysis] = None,
) -> str:
    title, label = TITLES[trial_set.kind]
    resource = trial_set.resource
    lines = [
        "",
        "=" * SEPARATOR_WIDTH,
        f" {title}",
        f" Namespace:  {resource.namespace}",
        f" Service:    {resource.name}",
        f" Type:       {resource.kind.value}",
        f" Runs:       {trial_set.runs}",
        f" Poll interval: {trial_set.poll_interval}s",
        "=" * SEPARATOR_WIDTH,
        "",
        f"{label}: {' '.join(str(r) for r in trial_set.results)}",
        "",
        format_statistics(statistics),
    ]
    if outliers and outliers.outliers_count:
        values = ", ".join(f"{v:.0f}" for v in outliers.outlier_values)
        lines.append(f"  Outliers (IQR): {outliers.outliers_count} ({values}ms)")
    lines.extend(["", "=" * SEPARATOR_WIDTH])
    return "\n".join(lines)


def run_trials(
    kind: TrialKind,
    cluster: KubernetesCluster,
    namespace: str,
    service: str,
    runs: int,
    settings: HarnessSettings,
    run_dir: Path,
    preflight: Optional[Preflight] = None,
) -> Tuple[TrialSet, TrialStatistics]:
    """Detect, drive, aggregate, print and persist one measurement run."""
    resource = detect_resource(cluster, namespace, service)
    scaler = ScaleController(cluster)
    poller = StatePoller(cluster)
    clock = build_clock()

    if kind is TrialKind.COLDSTART:
        logger.info(f"Starting cold start test: {runs} runs (scale 0 -> 1)")
        driver = ColdStartDriver(resource, scaler, poller, settings=settings, clock=clock)
    else:
        logger.info(f"Starting availability test: {runs} runs")
        driver = AvailabilityDriver(
            resource, scaler, poller, cluster, preflight=preflight, settings=settings, clock=clock
        )

    trial_set = driver.run(runs)
    statistics = summarize(trial_set.results)
    values = numeric_results(trial_set.results)
    outliers = detect_outliers_iqr(values) if len(values) >= MIN_OUTLIER_SAMPLES else None
    print(render_report(trial_set, statistics, outliers))

    csv_path = write_trials_csv(trial_set, run_dir / artifact_name(kind.value, namespace, service, "trials.csv"))
    write_summary(
        run_dir / artifact_name(kind.value, namespace, service, "summary.json"),
        {"trial_set": trial_set, "statistics": statistics, "outliers": outliers},
    )
    logger.info(f"Results written to {csv_path}")
    return trial_set, statistics


def tunnel_check(
    namespace: str,
    service: str,
    port: int,
    settings: HarnessSettings,
    recorder: ProbeRecorder,
) -> Preflight:
    """Per-trial check: open a tunnel, validate it, record one health sample, close it.

    The forward is bound to a single pod, so it is torn down before that pod
    can become the victim. A tunnel that cannot be validated is a setup
    failure and aborts the run.
    """

    def _check(index: int) -> None:
        with open_tunnel(namespace, service, port, settings=settings) as tunnel:
            sample = sample_health(f"{tunnel.base_url}{settings.health_path}", timeout=settings.probe_timeout)
        recorder.record(sample.timestamp_ms, sample.status_code, sample.latency_ms)
        if sample.ok:
            logger.info(f"Trial {index}: {namespace}/{service} reachable ({sample.latency_ms:.1f}ms)")
        else:
            logger.warning(f"WARNING: Trial {index}: health check returned {sample.status_code}")

    return _check


def cmd_coldstart(args: argparse.Namespace, settings: HarnessSettings) -> int:
    cluster = connect(settings)
    run_dir = paths.run_dir(settings.results_dir)
    run_trials(TrialKind.COLDSTART, cluster, args.namespace, args.service, args.runs, settings, run_dir)
    return EXIT_OK


def cmd_availability(args: argparse.Namespace, settings: HarnessSettings) -> int:
    cluster = connect(settings)
    run_dir = paths.run_dir(settings.results_dir)
    probe_path = run_dir / artifact_name("availability", args.namespace, args.service, "probe.csv")

    with ProbeRecorder(probe_path) as recorder:
        preflight = None
        if args.port:
            preflight = tunnel_check(args.namespace, args.service, args.port, settings, recorder)
        run_trials(
            TrialKind.AVAILABILITY,
            cluster,
            args.namespace,
            args.service,
            args.runs,
            settings,
            run_dir,
            preflight=preflight,
        )
    logger.info(f"Probe samples ({recorder.rows}) written to {probe_path}")
    return EXIT_OK


def _namespace_footprint(cluster: KubernetesCluster, namespace: str) -> FootprintSummary:
    print("")
    print("=" * SEPARATOR_WIDTH)
    print(f" Namespace: {namespace}")
    print("=" * SEPARATOR_WIDTH)
    specs = collect_inventory(cluster, namespace)
    summary = summarize_footprint(specs)
    print(f"Pod count: {summary.instance_count}")
    print("")
    print("--- Resource Requests & Limits ---")
    print(format_inventory(specs, summary))
    print("")
    print("--- Actual Resource Usage ---")
    usage = collect_usage(cluster, namespace)
    print(format_usage(usage) if usage is not None else "  (metrics-server not available or no data yet)")
    return summary


def resource_comparison(cluster: KubernetesCluster, settings: HarnessSettings, run_dir: Path, target: str) -> None:
    budget = ResourceBudget(cpu_millicores=settings.budget_cpu_millicores, memory_mi=settings.budget_memory_mi)
    namespaces = [settings.wasm_namespace, settings.container_namespace] if target == "all" else [target]
    summaries: Dict[str, FootprintSummary] = {ns: _namespace_footprint(cluster, ns) for ns in namespaces}

    report = {ns: footprint_report(summary, budget) for ns, summary in summaries.items()}
    if target == "all":
        comparison = compare_footprints(
            settings.wasm_namespace,
            summaries[settings.wasm_namespace],
            settings.container_namespace,
            summaries[settings.container_namespace],
            budget,
        )
        print("")
        print("=" * SEPARATOR_WIDTH)
        print(f" Comparison: {settings.wasm_namespace} vs {settings.container_namespace}")
        print("=" * SEPARATOR_WIDTH)
        print(format_comparison(comparison))
        report["comparison"] = comparison.model_dump(mode="json")

    path = write_summary(run_dir / "resources_summary.json", report)
    logger.info(f"Resource summary written to {path}")


def cmd_resources(args: argparse.Namespace, settings: HarnessSettings) -> int:
    cluster = connect(settings)
    run_dir = paths.run_dir(settings.results_dir)
    logger.info("Resource comparison test starting...")
    resource_comparison(cluster, settings, run_dir, args.namespace)
    logger.info("Resource test complete.")
    return EXIT_OK


def print_substrate_comparison(label_a: str, results_a: List, label_b: str, results_b: List) -> None:
    comparison = compare_substrates(label_a, results_a, label_b, results_b)
    print("")
    if comparison is None:
        print("Comparison needs at least 2 completed trials on each side.")
        return
    verdict = "significant" if comparison.is_significant else "not significant"
    print(
        f"{label_b} vs {label_a}: {comparison.mean_difference:+.1f}ms "
        f"({comparison.percent_difference:+.1f}%), p={comparison.p_value:.4f} ({verdict})"
    )


def cmd_compare(args: argparse.Namespace, settings: HarnessSettings) -> int:
    results_a = read_results_csv(args.trials_a)
    results_b = read_results_csv(args.trials_b)
    for path, results in ((args.trials_a, results_a), (args.trials_b, results_b)):
        print(f"{path.name}:")
        print(format_statistics(summarize(results)))
    print_substrate_comparison(args.trials_a.stem, results_a, args.trials_b.stem, results_b)
    return EXIT_OK


def resolve_script(name: str) -> Path:
    script = Path(name)
    if not script.is_absolute():
        script = paths.load_scripts / script
    if not script.exists():
        raise LoadGeneratorError(
            f"k6 script not found: {script} "
            f"(add it to {paths.load_scripts}, set BENCH_LOAD_SCRIPTS, or pass --skip-load)"
        )
    return script


def run_load_phase(scripts: List[Path], settings: HarnessSettings, run_dir: Path, targets: Dict[str, str]) -> None:
    for script in scripts:
        summaries: Dict[str, LoadSummary] = {}
        for label, url in targets.items():
            print(f"\n=== {script.stem} ({label}) ===")
            config = LoadTestConfig(
                target_url=url,
                duration=settings.load_duration,
                concurrency=settings.load_concurrency,
                script=script,
                k6_binary=settings.k6_binary,
            )
            summaries[label] = run_load_test(config, run_dir / f"k6_{script.stem}_{label}.json")
            write_summary(run_dir / f"load_{script.stem}_{label}_summary.json", {"summary": summaries[label]})
        (label_a, a), (label_b, b) = list(summaries.items())[:2]
        print(compare_load(label_a, a, label_b, b))


def cmd_bench_all(args: argparse.Namespace, settings: HarnessSettings) -> int:
    # Missing scripts fail the run before any cluster work starts.
    scripts = [] if args.skip_load else [resolve_script(name) for name in settings.load_script_list]
    cluster = connect(settings)
    run_dir = paths.run_dir(settings.results_dir)
    wasm_ns, container_ns = settings.wasm_namespace, settings.container_namespace
    service = settings.gateway_service

    if not args.skip_load:
        print("=== Starting port-forwards ===")
        with ExitStack() as stack:
            wasm = stack.enter_context(open_tunnel(wasm_ns, service, settings.wasm_port, settings=settings))
            containers = stack.enter_context(
                open_tunnel(container_ns, service, settings.container_port, settings=settings)
            )
            run_load_phase(scripts, settings, run_dir, {wasm_ns: wasm.base_url, container_ns: containers.base_url})
        # Availability trials delete the pods the tunnels are bound to.
        print("\n=== Stopped port-forwards ===")

    print("\n=== Availability Test ===")
    results = {}
    for namespace in (wasm_ns, container_ns):
        print(f"--- {namespace} ---")
        trial_set, _ = run_trials(
            TrialKind.AVAILABILITY, cluster, namespace, service, settings.availability_runs, settings, run_dir
        )
        results[namespace] = trial_set.results
    print_substrate_comparison(wasm_ns, results[wasm_ns], container_ns, results[container_ns])

    print("\n=== Resource Comparison ===")
    resource_comparison(cluster, settings, run_dir, "all")

    print("\n=== All benchmarks complete ===")
    logger.info(f"Results in {run_dir}")
    return EXIT_OK


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="substrate-bench",
        description="Cold-start, recovery and footprint benchmarks for Wasm vs container workloads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--results-dir", type=Path, help="Base directory for results")
    parser.add_argument("--kubeconfig", type=Path, help="Path to kubeconfig file")
    parser.add_argument("--context", dest="kube_context", help="Kubeconfig context")
    parser.add_argument("--poll-interval", type=float, help="Seconds between readiness polls (0.1-1.0)")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    coldstart = sub.add_parser("coldstart", help="Scale 0 -> 1 startup time")
    coldstart.add_argument("namespace")
    coldstart.add_argument("service")
    coldstart.add_argument("runs", nargs="?", type=_positive_int, default=5)
    coldstart.set_defaults(handler=cmd_coldstart)

    availability = sub.add_parser("availability", help="Forced-delete recovery time")
    availability.add_argument("namespace")
    availability.add_argument("service")
    availability.add_argument("runs", nargs="?", type=_positive_int, default=5)
    availability.add_argument("port", nargs="?", type=_positive_int, default=None,
                              help="Local port for a tunnel validated before each trial")
    availability.set_defaults(handler=cmd_availability)

    resources = sub.add_parser("resources", help="Resource footprint and density")
    resources.add_argument("namespace", nargs="?", default="all")
    resources.set_defaults(handler=cmd_resources)

    compare = sub.add_parser("compare", help="Compare two trials CSV files")
    compare.add_argument("trials_a", type=Path)
    compare.add_argument("trials_b", type=Path)
    compare.set_defaults(handler=cmd_compare)

    bench_all = sub.add_parser("bench-all", help="Run every benchmark against both substrates")
    bench_all.add_argument("--skip-load", action="store_true", help="Skip the k6 load phase")
    bench_all.set_defaults(handler=cmd_bench_all)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(
            results_dir=args.results_dir,
            kubeconfig=args.kubeconfig,
            kube_context=args.kube_context,
            poll_interval=args.poll_interval,
            log_level=args.log_level,
        )
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level, settings.log_file)

    try:
        return args.handler(args, settings)
    except (HarnessError, OSError) as e:
        logger.error(f"ERROR: {e}")
        return EXIT_SETUP_FAILURE
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
