"""
realm_bridge.tracking.tracker

In-memory ledger of multi-step cross-realm operations.

Responsibilities:
- Record operations (token exchange, thread creation, message send, ...) and their steps.
- Seal each operation exactly once; keep steps append-only while it is open.
- Answer diagnostic queries (by subject, most recent N, all).
- Never fail the operation being described: tracker faults are logged and dropped.
"""

from __future__ import annotations

import asyncio
import functools
import uuid
from collections import OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from realm_bridge.caching import Clock, utcnow
from realm_bridge.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Step:
    name: str
    description: str
    success: bool
    at: datetime
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Operation:
    id: str
    type: str
    description: str
    started_at: datetime
    subject: str | None = None
    realm: str | None = None
    ended_at: datetime | None = None
    completed: bool = False
    success: bool = False
    error: str | None = None
    steps: list[Step] = field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "subject": self.subject,
            "realm": self.realm,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "completed": self.completed,
            "success": self.success,
            "error": self.error,
            "steps": [
                {
                    "name": s.name,
                    "description": s.description,
                    "success": s.success,
                    "at": s.at.isoformat(),
                    "error": s.error,
                    "metadata": {k: _jsonable(v) for k, v in s.metadata.items()},
                }
                for s in self.steps
            ],
        }


def _guarded(default: Any = None):
    # Tracking is diagnostic only; a fault here must not surface in the tracked operation.
    def wrap(fn):
        @functools.wraps(fn)
        def inner(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception:
                log.exception("tracker_fault", method=fn.__name__)
                return default

        return inner

    return wrap


class OperationTracker:
    def __init__(self, *, retention: int = 1000, clock: Clock = utcnow) -> None:
        self._retention = max(1, retention)
        self._clock = clock
        self._ops: OrderedDict[str, Operation] = OrderedDict()

    @_guarded(default="")
    def start(
        self,
        type: str,
        description: str,
        subject: str | None = None,
        realm: str | None = None,
    ) -> str:
        op = Operation(
            id=str(uuid.uuid4()),
            type=type,
            description=description,
            subject=subject,
            realm=realm,
            started_at=self._clock(),
        )
        self._ops[op.id] = op
        while len(self._ops) > self._retention:
            self._ops.popitem(last=False)
        log.info("operation_started", operation_id=op.id, type=type, subject=subject, realm=realm)
        return op.id

    @_guarded()
    def add_step(
        self,
        operation_id: str,
        name: str,
        description: str,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        op = self._ops.get(operation_id)
        if op is None:
            log.warning("operation_step_unknown", operation_id=operation_id, step=name)
            return
        if op.completed:
            log.warning("operation_step_after_seal", operation_id=operation_id, step=name)
            return
        op.steps.append(
            Step(
                name=name,
                description=description,
                success=success,
                at=self._clock(),
                error=error,
                metadata=dict(metadata or {}),
            )
        )
        emit = log.info if success else log.warning
        emit(
            "operation_step",
            operation_id=operation_id,
            type=op.type,
            step=name,
            detail=description,
            success=success,
            error=error,
        )

    @_guarded()
    def complete(self, operation_id: str, success: bool = True, error: str | None = None) -> None:
        op = self._ops.get(operation_id)
        if op is None:
            log.warning("operation_complete_unknown", operation_id=operation_id)
            return
        if op.completed:
            log.warning("operation_already_sealed", operation_id=operation_id)
            return
        self._seal(op, success=success, error=error)

    def get(self, operation_id: str) -> Operation | None:
        op = self._ops.get(operation_id)
        return _snapshot(op) if op is not None else None

    def for_subject(self, subject: str) -> list[Operation]:
        return [_snapshot(op) for op in self._newest_first() if op.subject == subject]

    def recent(self, count: int = 50) -> list[Operation]:
        return [_snapshot(op) for op in self._newest_first()[: max(0, count)]]

    def all(self) -> list[Operation]:
        return [_snapshot(op) for op in self._newest_first()]

    def clear(self) -> None:
        self._ops.clear()
        log.info("operations_cleared")

    @contextmanager
    def track(
        self,
        type: str,
        description: str,
        subject: str | None = None,
        realm: str | None = None,
    ) -> Iterator[TrackedOperation]:
        """
        Open an operation for the duration of a block. Any exception, cancellation
        included, seals it as failed with the raw message and is re-raised unchanged.
        A block that exits normally seals it as successful unless already sealed.
        """

        handle = TrackedOperation(self, self.start(type, description, subject, realm))
        try:
            with structlog.contextvars.bound_contextvars(operation_id=handle.id):
                yield handle
        except BaseException as e:
            if isinstance(e, asyncio.CancelledError):
                message = "cancelled"
            else:
                message = str(e) or e.__class__.__name__
            handle.fail(message)
            raise
        else:
            handle.succeed()

    def _newest_first(self) -> list[Operation]:
        # Ties on started_at keep newest-inserted first.
        return sorted(reversed(self._ops.values()), key=lambda o: o.started_at, reverse=True)

    @_guarded()
    def _annotate(self, operation_id: str, subject: str | None, realm: str | None) -> None:
        op = self._ops.get(operation_id)
        if op is None:
            return
        if subject is not None:
            op.subject = subject
        if realm is not None:
            op.realm = realm

    @_guarded()
    def _seal_if_open(self, operation_id: str, success: bool, error: str | None) -> None:
        op = self._ops.get(operation_id)
        if op is not None and not op.completed:
            self._seal(op, success=success, error=error)

    def _seal(self, op: Operation, *, success: bool, error: str | None) -> None:
        op.ended_at = self._clock()
        op.completed = True
        op.success = success
        op.error = error
        emit = log.info if success else log.error
        emit(
            "operation_completed",
            operation_id=op.id,
            type=op.type,
            success=success,
            duration_ms=op.duration_ms,
            error=error,
        )


class TrackedOperation:
    """Handle given to code running inside `OperationTracker.track`."""

    def __init__(self, tracker: OperationTracker, operation_id: str) -> None:
        self._tracker = tracker
        self.id = operation_id

    def step(
        self,
        name: str,
        description: str,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        self._tracker.add_step(self.id, name, description, success, metadata, error)

    def bind(self, *, subject: str | None = None, realm: str | None = None) -> None:
        # Attach who/where once known (e.g. after the credential has been parsed).
        self._tracker._annotate(self.id, subject, realm)

    def succeed(self) -> None:
        self._tracker._seal_if_open(self.id, True, None)

    def fail(self, error: str) -> None:
        self._tracker._seal_if_open(self.id, False, error)


def _snapshot(op: Operation) -> Operation:
    return replace(op, steps=list(op.steps))


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return str(value)


# --- Module Notes -----------------------------------------------------------
# All mutators are synchronous and never await, so they are atomic under a single event
# loop. The ledger is not durable across restarts; it is a diagnostic surface.
