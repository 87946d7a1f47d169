"""Pydantic models for managed resources, instance snapshots and trials."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

TIMEOUT = "timeout"

TrialResult = Union[int, str]


class ResourceKind(str, Enum):
    """Control-plane resource kinds that own the benchmarked pods."""

    SPINAPP = "spinapp"
    DEPLOYMENT = "deployment"

    @property
    def substrate(self) -> str:
        return "Wasm" if self is ResourceKind.SPINAPP else "Container"

    @property
    def display_name(self) -> str:
        return "SpinApp" if self is ResourceKind.SPINAPP else "Deployment"


class TrialKind(str, Enum):
    """Measured transition types."""

    COLDSTART = "coldstart"
    AVAILABILITY = "availability"


class ReadyCondition(str, Enum):
    """Status of a pod's ``Ready`` condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ManagedResource(BaseModel):
    """The control-plane object that decides how many instances should run."""

    kind: ResourceKind = Field(description="Resource kind")
    name: str = Field(min_length=1, description="Resource name")
    namespace: str = Field(min_length=1, description="Resource namespace")
    label_selector: str = Field(description="Label selector matching the resource's pods")

    class Config:
        """Pydantic configuration."""

        frozen = True


class Instance(BaseModel):
    """One pod as seen by a single listing. Never kept beyond one decision."""

    identity: str = Field(description="Pod name")
    ready_condition: ReadyCondition = Field(
        default=ReadyCondition.UNKNOWN, description="Ready condition status"
    )
    terminating: bool = Field(default=False, description="Deletion timestamp is set")
    observed_at: datetime = Field(default_factory=datetime.now, description="Observation time")

    @property
    def is_ready(self) -> bool:
        return self.ready_condition is ReadyCondition.TRUE

    class Config:
        """Pydantic configuration."""

        frozen = True


# Instances in listing order; identities are unique within one snapshot.
Snapshot = Tuple[Instance, ...]


class Trial(BaseModel):
    """One measured transition: a duration in milliseconds or a timeout."""

    index: int = Field(ge=1, description="1-based trial number")
    started_at: datetime = Field(default_factory=datetime.now, description="Wall-clock trial start")
    trigger_ms: int = Field(description="Monotonic ms captured right before the trigger")
    completion_ms: Optional[int] = Field(
        default=None, description="Monotonic ms captured right after the completing poll"
    )
    result_ms: Optional[int] = Field(default=None, ge=0, description="Elapsed ms, None on timeout")
    polls: int = Field(default=0, ge=0, description="Polls spent waiting for completion")

    @property
    def timed_out(self) -> bool:
        return self.result_ms is None

    @property
    def result(self) -> TrialResult:
        return TIMEOUT if self.result_ms is None else self.result_ms

    @classmethod
    def completed(cls, index: int, trigger_ms: int, completion_ms: int, **kwargs) -> "Trial":
        return cls(
            index=index,
            trigger_ms=trigger_ms,
            completion_ms=completion_ms,
            result_ms=completion_ms - trigger_ms,
            **kwargs,
        )

    @classmethod
    def timeout(cls, index: int, trigger_ms: int, **kwargs) -> "Trial":
        return cls(index=index, trigger_ms=trigger_ms, **kwargs)

    class Config:
        """Pydantic configuration."""

        frozen = True


class TrialSet(BaseModel):
    """Ordered, complete set of trials from one run."""

    kind: TrialKind = Field(description="Transition type measured")
    resource: ManagedResource = Field(description="Resource the trials ran against")
    runs: int = Field(ge=0, description="Configured run count")
    poll_interval: float = Field(gt=0, description="Seconds between completion polls")
    trials: List[Trial] = Field(default_factory=list, description="Trials in run order")

    @model_validator(mode="after")
    def check_complete(self) -> "TrialSet":
        if len(self.trials) != self.runs:
            raise ValueError(f"Expected {self.runs} trials, got {len(self.trials)}")
        indices = [t.index for t in self.trials]
        if indices != list(range(1, self.runs + 1)):
            raise ValueError(f"Trial indices must be 1..{self.runs} in order, got {indices}")
        return self

    @property
    def results(self) -> List[TrialResult]:
        return [t.result for t in self.trials]

    class Config:
        """Pydantic configuration."""

        frozen = True
