"""End-to-end commands against mocked Kubernetes clients and a fake clock."""

import csv
from contextlib import contextmanager

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from src import cli
from src.common.errors import ClusterUnreachableError, TunnelError
from src.harness.models import TIMEOUT
from src.harness.tunnel import ProbeSample, Tunnel
from tests.helpers import FakeClock, ScriptedPoller, make_instance, make_pod, pod_list

EMPTY = ()
READY = (make_instance("a"),)


@pytest.fixture
def results_dir(tmp_path):
    return tmp_path / "results"


@pytest.fixture
def wire(monkeypatch, cluster):
    """Route the CLI to mocked clients and a scripted poller."""

    def _wire(script, cycle=False):
        poller = ScriptedPoller(script, cycle=cycle)
        monkeypatch.setattr(cli, "connect", lambda settings: cluster)
        monkeypatch.setattr(cli, "build_clock", FakeClock)
        monkeypatch.setattr(cli, "StatePoller", lambda c: poller)
        return poller

    return _wire


def _only_run_dir(results_dir):
    run_dirs = list(results_dir.iterdir())
    assert len(run_dirs) == 1
    return run_dirs[0]


@pytest.mark.cli
class TestColdstartCommand:

    def test_timeout_reported_and_excluded(self, monkeypatch, wire, results_dir, capsys):
        monkeypatch.setenv("BENCH_COLDSTART_MAX_POLLS", "2")
        wire([
            EMPTY, EMPTY, READY,  # trial 1: 200ms
            EMPTY, EMPTY, EMPTY,  # trial 2: timeout
            EMPTY, READY,         # trial 3: 100ms
        ])

        code = cli.main(["--results-dir", str(results_dir), "coldstart", "wasm", "gateway", "3"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Cold start times (ms): 200 timeout 100" in out
        assert "Average: 150.0ms" in out
        assert "1 timeout (excluded from statistics)" in out

        run_dir = _only_run_dir(results_dir)
        with open(run_dir / "coldstart_wasm_gateway_trials.csv", newline="") as f:
            results = [row["result_ms"] for row in csv.DictReader(f)]
        assert results == ["200", TIMEOUT, "100"]
        assert (run_dir / "coldstart_wasm_gateway_summary.json").exists()

    def test_outlier_reported(self, wire, results_dir, capsys):
        wire([EMPTY, READY] * 4 + [EMPTY] * 10 + [READY])

        assert cli.main(["--results-dir", str(results_dir), "coldstart", "wasm", "gateway", "5"]) == 0

        out = capsys.readouterr().out
        assert "Cold start times (ms): 100 100 100 100 1000" in out
        assert "Outliers (IQR): 1 (1000ms)" in out

    def test_detects_spinapp_and_restores(self, wire, mock_clients, results_dir):
        wire([EMPTY, READY], cycle=True)

        assert cli.main(["--results-dir", str(results_dir), "coldstart", "wasm", "gateway", "1"]) == 0

        bodies = [c.kwargs["body"] for c in mock_clients["custom"].patch_namespaced_custom_object.call_args_list]
        assert bodies == [{"spec": {"replicas": n}} for n in (0, 1, 1)]

    def test_cluster_unreachable_exits_non_zero(self, monkeypatch, results_dir):
        def unreachable(settings):
            raise ClusterUnreachableError("Kubernetes API unreachable")

        monkeypatch.setattr(cli, "connect", unreachable)

        assert cli.main(["--results-dir", str(results_dir), "coldstart", "wasm", "gateway"]) == 1
        assert not results_dir.exists()

    def test_invalid_poll_interval(self, results_dir):
        assert cli.main(["--poll-interval", "5", "coldstart", "wasm", "gateway"]) == 2

    def test_zero_runs_is_a_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["coldstart", "wasm", "gateway", "0"])
        assert exc_info.value.code == 2


@pytest.mark.cli
class TestAvailabilityCommand:

    def test_without_tunnel(self, wire, mock_clients, results_dir, capsys):
        wire([READY, READY, (make_instance("b"),)], cycle=True)

        code = cli.main(["--results-dir", str(results_dir), "availability", "containers", "gateway", "2"])

        assert code == 0
        assert "Recovery times (ms): 100 100" in capsys.readouterr().out
        assert mock_clients["core"].delete_namespaced_pod.call_count == 2
        run_dir = _only_run_dir(results_dir)
        probe = (run_dir / "availability_containers_gateway_probe.csv").read_text()
        assert probe.splitlines() == ["timestamp_ms,status_code,latency_ms"]

    def _fake_tunnel(self, events, fail=False):
        @contextmanager
        def fake_tunnel(namespace, service, local_port, settings=None):
            if fail:
                raise TunnelError(f"Port-forward to {namespace}/{service} not reachable on :{local_port}")
            events.append("open")
            try:
                yield Tunnel(namespace=namespace, service=service, local_port=local_port, process=None)
            finally:
                events.append("close")

        return fake_tunnel

    def test_tunnel_reopened_and_closed_before_each_delete(self, monkeypatch, wire, mock_clients, results_dir):
        events, urls = [], []

        def fake_sample(url, timeout):
            urls.append(url)
            return ProbeSample(timestamp_ms=len(urls), status_code=200, latency_ms=1.0)

        monkeypatch.setattr(cli, "open_tunnel", self._fake_tunnel(events))
        monkeypatch.setattr(cli, "sample_health", fake_sample)
        mock_clients["core"].delete_namespaced_pod.side_effect = lambda *args, **kwargs: events.append("delete")
        wire([READY, READY, (make_instance("b"),)], cycle=True)

        code = cli.main(["--results-dir", str(results_dir), "availability", "wasm", "gateway", "2", "9090"])

        assert code == 0
        assert events == ["open", "close", "delete"] * 2
        assert urls == ["http://localhost:9090/healthz"] * 2
        rows = (_only_run_dir(results_dir) / "availability_wasm_gateway_probe.csv").read_text().splitlines()
        assert rows[1:] == ["1,200,1.0", "2,200,1.0"]

    def test_health_check_does_not_stretch_recovery(self, monkeypatch, wire, results_dir, capsys):
        clock = FakeClock()

        def slow_sample(url, timeout):
            clock.sleep(timeout)
            return ProbeSample(timestamp_ms=clock.now_ms(), status_code=0, latency_ms=timeout * 1000)

        monkeypatch.setattr(cli, "open_tunnel", self._fake_tunnel([]))
        monkeypatch.setattr(cli, "sample_health", slow_sample)
        wire([READY, READY, (make_instance("a", ready=False, terminating=True),), (make_instance("b", ready=False),),
              (make_instance("b"),)])
        monkeypatch.setattr(cli, "build_clock", lambda: clock)

        code = cli.main(["--results-dir", str(results_dir), "availability", "wasm", "gateway", "1", "9090"])

        assert code == 0
        assert "Recovery times (ms): 300" in capsys.readouterr().out

    def test_unreachable_tunnel_exits_non_zero(self, monkeypatch, wire, mock_clients, results_dir):
        monkeypatch.setattr(cli, "open_tunnel", self._fake_tunnel([], fail=True))
        wire([READY], cycle=True)

        code = cli.main(["--results-dir", str(results_dir), "availability", "wasm", "gateway", "2", "9090"])

        assert code == 1
        mock_clients["core"].delete_namespaced_pod.assert_not_called()
        bodies = [c.kwargs["body"] for c in mock_clients["custom"].patch_namespaced_custom_object.call_args_list]
        assert bodies[-1] == {"spec": {"replicas": 1}}


@pytest.mark.cli
class TestResourcesCommand:

    def test_compares_both_namespaces(self, wire, mock_clients, results_dir, capsys):
        wire([EMPTY])

        def pods_for(namespace, label_selector=""):
            if namespace == "wasm":
                return pod_list([make_pod("w", requests={"cpu": "10m", "memory": "16Mi"})])
            return pod_list([make_pod("c", requests={"cpu": "100m", "memory": "128Mi"})])

        mock_clients["core"].list_namespaced_pod.side_effect = pods_for
        mock_clients["custom"].list_namespaced_custom_object.return_value = {"items": []}

        assert cli.main(["--results-dir", str(results_dir), "resources"]) == 0

        out = capsys.readouterr().out
        assert "Density advantage: 8.0x more wasm pods" in out
        assert (_only_run_dir(results_dir) / "resources_summary.json").exists()

    def test_forbidden_pod_list_exits_non_zero(self, wire, mock_clients, results_dir, caplog):
        wire([EMPTY])
        mock_clients["core"].list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")

        assert cli.main(["--results-dir", str(results_dir), "resources", "wasm"]) == 1
        assert "Listing pods in wasm failed: 403 Forbidden" in caplog.text

    def test_api_connection_lost_exits_non_zero(self, wire, mock_clients, results_dir):
        wire([EMPTY])
        mock_clients["core"].list_namespaced_pod.side_effect = MaxRetryError(None, "/api/v1/namespaces/wasm/pods")

        assert cli.main(["--results-dir", str(results_dir), "resources", "wasm"]) == 1


@pytest.mark.cli
class TestCompareCommand:

    def _write(self, path, results):
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["index", "started_at", "trigger_ms", "completion_ms", "result_ms"])
            for i, r in enumerate(results, 1):
                writer.writerow([i, "2024-01-01T00:00:00", 0, "", r])

    def test_compare_two_runs(self, tmp_path, capsys):
        a, b = tmp_path / "wasm.csv", tmp_path / "containers.csv"
        self._write(a, [10, 12, 11, TIMEOUT])
        self._write(b, [900, 950, 930])

        assert cli.main(["compare", str(a), str(b)]) == 0

        out = capsys.readouterr().out
        assert "1 timeout (excluded from statistics)" in out
        assert "containers vs wasm" in out

    def test_missing_file_exits_non_zero(self, tmp_path):
        assert cli.main(["compare", str(tmp_path / "a.csv"), str(tmp_path / "b.csv")]) == 1

    def test_blank_result_exits_non_zero(self, tmp_path, caplog):
        a, b = tmp_path / "wasm.csv", tmp_path / "containers.csv"
        self._write(a, [10, "", 11])
        self._write(b, [900, 950, 930])

        assert cli.main(["compare", str(a), str(b)]) == 1
        assert "invalid result_ms ''" in caplog.text

    def test_missing_result_column_exits_non_zero(self, tmp_path):
        a, b = tmp_path / "wasm.csv", tmp_path / "containers.csv"
        a.write_text("index,latency\n1,10\n")
        self._write(b, [900, 950, 930])

        assert cli.main(["compare", str(a), str(b)]) == 1


@pytest.mark.cli
class TestBenchAllCommand:

    def test_skip_load(self, monkeypatch, wire, mock_clients, results_dir, capsys):
        monkeypatch.setenv("BENCH_AVAILABILITY_RUNS", "2")
        poller = wire([READY, READY, (make_instance("b"),)], cycle=True)
        mock_clients["core"].list_namespaced_pod.return_value = pod_list(
            [make_pod("a", requests={"cpu": "100m", "memory": "128Mi"})]
        )
        mock_clients["custom"].list_namespaced_custom_object.return_value = {"items": []}

        code = cli.main(["--results-dir", str(results_dir), "bench-all", "--skip-load"])

        out = capsys.readouterr().out
        assert code == 0
        assert "=== All benchmarks complete ===" in out
        run_dir = _only_run_dir(results_dir)
        assert (run_dir / "availability_wasm_gateway_trials.csv").exists()
        assert (run_dir / "availability_containers_gateway_trials.csv").exists()
        assert poller.snapshots == 12

    def test_missing_k6_script_fails_before_cluster_work(self, monkeypatch, results_dir, tmp_path, caplog):
        connected = []
        monkeypatch.setattr(cli, "connect", connected.append)
        monkeypatch.setenv("BENCH_LOAD_SCRIPTS", str(tmp_path / "missing.js"))

        assert cli.main(["--results-dir", str(results_dir), "bench-all"]) == 1
        assert connected == []
        assert not results_dir.exists()
        assert "--skip-load" in caplog.text
