"""Requeue signal returned by every reconciliation step.

A step either lets the pass continue (CONTINUE) or ends it. Ending it with
no error means "an upstream dependency is not ready yet, run me again later";
ending it with an error means the pass hit a hard failure.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RequeueSignal:
    """Outcome of one reconciliation step."""

    requeue: bool = False
    error: Exception | None = None
    reason: str = ""

    @property
    def should_requeue(self) -> bool:
        return self.requeue or self.error is not None


CONTINUE = RequeueSignal()


def wait_for(reason: str) -> RequeueSignal:
    """A transient not-ready condition: requeue without an error."""
    return RequeueSignal(requeue=True, reason=reason)


def failed(error: Exception, reason: str) -> RequeueSignal:
    """A hard failure: the pass stops and the error is surfaced."""
    return RequeueSignal(requeue=True, error=error, reason=reason)
