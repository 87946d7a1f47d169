"""Pytest configuration and shared fixtures for the substrate benchmark tests.

Everything runs against mocked Kubernetes clients and a fake clock, so no
cluster, kubectl or k6 is needed.
"""

import logging
from pathlib import Path
from typing import Dict
from unittest.mock import MagicMock

import pytest

from src.common.settings import HarnessSettings
from src.harness.cluster import KubernetesCluster
from src.harness.models import ManagedResource, ResourceKind
from tests.helpers import FakeClock, RecordingScaler, pod_list


@pytest.fixture
def settings(tmp_path: Path) -> HarnessSettings:
    """Default timing with pauses that cost nothing on a fake clock."""
    return HarnessSettings(results_dir=tmp_path / "results")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scaler() -> RecordingScaler:
    return RecordingScaler()


@pytest.fixture
def mock_clients() -> Dict[str, MagicMock]:
    """Mock core, apps and custom-objects API clients."""
    core = MagicMock()
    core.list_namespaced_pod.return_value = pod_list([])
    return {"core": core, "apps": MagicMock(), "custom": MagicMock()}


@pytest.fixture
def cluster(mock_clients: Dict[str, MagicMock], settings: HarnessSettings) -> KubernetesCluster:
    return KubernetesCluster(
        core=mock_clients["core"],
        apps=mock_clients["apps"],
        custom=mock_clients["custom"],
        settings=settings,
    )


@pytest.fixture
def spinapp() -> ManagedResource:
    return ManagedResource(
        kind=ResourceKind.SPINAPP,
        name="gateway",
        namespace="wasm",
        label_selector="core.spinkube.dev/app-name=gateway",
    )


@pytest.fixture
def deployment() -> ManagedResource:
    return ManagedResource(
        kind=ResourceKind.DEPLOYMENT,
        name="gateway",
        namespace="containers",
        label_selector="app=gateway",
    )


@pytest.fixture(autouse=True)
def reset_harness_logger():
    """Drop handlers the CLI installs so they do not outlive captured streams."""
    yield
    logger = logging.getLogger("src")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "engine: Measurement engine tests (poller, predicates, drivers)")
    config.addinivalue_line("markers", "analysis: Statistics and footprint tests")
    config.addinivalue_line("markers", "cli: End-to-end command tests against mocked clients")
