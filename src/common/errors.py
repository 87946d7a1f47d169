"""Exception hierarchy for the benchmark harness.

Setup errors abort a run with a non-zero exit code. Per-trial timeouts are
recorded as values and never raised. Transient read errors are absorbed by
the poll loop as "no match this tick".
"""


class HarnessError(Exception):
    """Base class for all harness errors."""


class SetupError(HarnessError):
    """A run cannot start or continue (cluster, tunnel or tool missing)."""


class ClusterUnreachableError(SetupError):
    """The Kubernetes API server cannot be reached at all."""


class TunnelError(SetupError):
    """A port-forward tunnel could not be established or validated."""


class LoadGeneratorError(SetupError):
    """The external load generator is missing or failed to produce a summary."""


class ScaleError(HarnessError):
    """The control plane rejected a replica-count change."""

    def __init__(self, resource_name: str, replicas: int, reason: str):
        self.resource_name = resource_name
        self.replicas = replicas
        self.reason = reason
        super().__init__(f"Failed to scale {resource_name} to {replicas}: {reason}")


class TransientReadError(HarnessError):
    """A single instance listing failed while the cluster is still reachable."""


class InventoryError(HarnessError):
    """The API refused to list the pods of a namespace."""


class ResultsFormatError(HarnessError):
    """A results file cannot be read back (missing column or bad value)."""
