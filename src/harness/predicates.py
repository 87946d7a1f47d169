"""Completion predicates for the transition state machines.

Each predicate looks at one snapshot (``None`` when the read failed) and
decides whether the awaited state has been reached. They hold no state and
never touch the cluster, so a recorded snapshot sequence replays exactly.
"""

from enum import Enum
from typing import Callable, Optional

from src.harness.models import Instance, Snapshot


class Decision(str, Enum):
    """Outcome of observing one snapshot."""

    CONTINUE = "continue"
    COMPLETE = "complete"


Predicate = Callable[[Optional[Snapshot]], Decision]


def _decide(done: bool) -> Decision:
    return Decision.COMPLETE if done else Decision.CONTINUE


def is_drained(snapshot: Optional[Snapshot]) -> Decision:
    """No pod left at all, terminating ones included."""
    return _decide(snapshot is not None and len(snapshot) == 0)


def is_settled(snapshot: Optional[Snapshot]) -> Decision:
    """No pod is terminating, so a new trial cannot see leftovers."""
    return _decide(snapshot is not None and not any(i.terminating for i in snapshot))


def is_cold_start_complete(snapshot: Optional[Snapshot]) -> Decision:
    """At least one live pod reports Ready."""
    if not snapshot:
        return Decision.CONTINUE
    return _decide(any(i.is_ready and not i.terminating for i in snapshot))


def is_replacement(instance: Instance, victim: str) -> bool:
    """A different, live, Ready pod. The victim never counts, even if it resurfaces as Ready."""
    return instance.identity != victim and not instance.terminating and instance.is_ready


def replacement_ready(victim: str) -> Predicate:
    """Predicate completing on the first Ready pod that is not ``victim``."""

    def _predicate(snapshot: Optional[Snapshot]) -> Decision:
        if not snapshot:
            return Decision.CONTINUE
        return _decide(any(is_replacement(i, victim) for i in snapshot))

    return _predicate


def pick_victim(snapshot: Optional[Snapshot]) -> Optional[str]:
    """Identity of the first non-terminating pod, or None when there is none."""
    if not snapshot:
        return None
    return next((i.identity for i in snapshot if not i.terminating), None)
