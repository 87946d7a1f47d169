"""Harness settings and configuration management."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from src.common.paths import paths

MIN_POLL_INTERVAL = 0.1
MAX_POLL_INTERVAL = 1.0


class HarnessSettings(BaseSettings):
    """Harness settings loaded from environment variables (prefix ``BENCH_``)."""

    # Kubernetes access
    kubeconfig: Optional[Path] = Field(
        default=None,
        description="Path to kubeconfig file (defaults to the client's lookup rules)",
    )
    kube_context: Optional[str] = Field(
        default=None,
        description="Kubeconfig context to use",
    )

    # SpinApp custom resource
    spinapp_group: str = Field(default="core.spinkube.dev", description="SpinApp API group")
    spinapp_version: str = Field(default="v1alpha1", description="SpinApp API version")
    spinapp_plural: str = Field(default="spinapps", description="SpinApp resource plural")
    spinapp_label_key: str = Field(
        default="core.spinkube.dev/app-name",
        description="Pod label carrying the SpinApp name",
    )
    deployment_label_key: str = Field(
        default="app",
        description="Pod label carrying the Deployment name",
    )

    # Trial timing
    poll_interval: float = Field(
        default=0.1,
        description="Seconds between readiness polls while waiting for a transition",
    )
    coldstart_max_polls: int = Field(default=600, gt=0, description="Cold-start poll budget")
    recovery_max_polls: int = Field(default=200, gt=0, description="Recovery poll budget")
    drain_max_polls: int = Field(default=120, gt=0, description="Scale-to-zero poll budget")
    drain_interval: float = Field(default=0.5, gt=0, description="Seconds between drain polls")
    stabilize_max_polls: int = Field(
        default=60, gt=0, description="Poll budget waiting for terminating pods to vanish"
    )
    stabilize_interval: float = Field(default=1.0, gt=0, description="Seconds between stabilize polls")
    settle_seconds: float = Field(default=3.0, ge=0, description="Pause before each recovery trial")
    cooldown_seconds: float = Field(default=8.0, ge=0, description="Pause after each recovery trial")
    ready_timeout: float = Field(default=60.0, gt=0, description="Readiness wait before trials")
    restore_timeout: float = Field(default=120.0, gt=0, description="Readiness wait after restore")
    restore_replicas: int = Field(default=1, ge=0, description="Replica count restored after a run")

    # Tunnel and probing
    tunnel_remote_port: int = Field(default=80, gt=0, description="Service port to forward")
    tunnel_probe_attempts: int = Field(default=10, gt=0, description="Health probes before giving up")
    tunnel_probe_interval: float = Field(default=0.5, gt=0, description="Seconds between health probes")
    health_path: str = Field(default="/healthz", description="Health endpoint path")
    probe_timeout: float = Field(default=2.0, gt=0, description="HTTP probe timeout in seconds")

    # Resource budget for density projection
    budget_cpu_millicores: int = Field(default=1000, gt=0, description="CPU budget (millicores)")
    budget_memory_mi: int = Field(default=512, gt=0, description="Memory budget (MiB)")

    # bench-all layout
    wasm_namespace: str = Field(default="wasm", description="Namespace running the Wasm substrate")
    container_namespace: str = Field(
        default="containers", description="Namespace running the container substrate"
    )
    gateway_service: str = Field(default="gateway", description="Service benchmarked by bench-all")
    wasm_port: int = Field(default=9090, gt=0, description="Local port for the Wasm tunnel")
    container_port: int = Field(default=9091, gt=0, description="Local port for the container tunnel")
    availability_runs: int = Field(default=80, gt=0, description="Recovery trials in bench-all")

    # Load generation
    k6_binary: str = Field(default="k6", description="k6 executable")
    load_scripts: str = Field(
        default="load-test.js,cpu-bound-test.js",
        description="Comma-separated k6 scripts run by bench-all (relative to loadtests/)",
    )
    load_duration: str = Field(default="30s", description="k6 test duration")
    load_concurrency: int = Field(default=10, gt=0, description="k6 virtual users")

    # Output
    results_dir: Path = Field(default=paths.results, description="Directory for run results")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file")

    @field_validator("poll_interval")
    @classmethod
    def check_poll_interval(cls, v: float) -> float:
        """Keep observation error bounded to a fixed, short interval."""
        if not MIN_POLL_INTERVAL <= v <= MAX_POLL_INTERVAL:
            raise ValueError(
                f"poll_interval must be between {MIN_POLL_INTERVAL} and {MAX_POLL_INTERVAL} seconds"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def load_script_list(self) -> list[str]:
        return [s.strip() for s in self.load_scripts.split(",") if s.strip()]

    class Config:
        """Pydantic settings configuration."""

        env_prefix = "BENCH_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


def load_settings(**overrides) -> HarnessSettings:
    """Build settings from the environment, applying non-None overrides."""
    return HarnessSettings(**{k: v for k, v in overrides.items() if v is not None})
