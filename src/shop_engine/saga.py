"""Compensating-action runner for multi-call store mutations.

The table store offers no transaction spanning several calls, so every
operation that writes more than once runs inside a :class:`Saga`. Each forward
step may register the action that undoes it. When a later step fails, the
registered compensations run in reverse order and the failure is translated:

* a store failure with a clean compensation becomes :class:`PersistenceError`;
* an engine error (for example :class:`InsufficientStockError`) is re-raised
  unchanged after a clean compensation;
* any failed compensation becomes :class:`InconsistencyWarning`, whatever the
  original failure was.

Usage::

    with Saga("create_transaction") as saga:
        row = saga.step("insert transaction", insert, compensation=delete)
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, List, Optional, TypeVar

from . import data_manager, log
from .exceptions import CompensationFailure, InconsistencyWarning, PersistenceError, ShopEngineError

T = TypeVar("T")


@dataclass(frozen=True)
class _CompletedStep:
    name: str
    compensation: Optional[Callable[[], Any]]


class Saga:
    """Ordered forward actions, each paired with an optional compensation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._completed: List[_CompletedStep] = []
        self._current: Optional[str] = None

    @property
    def completed_steps(self) -> List[str]:
        return [step.name for step in self._completed]

    def step(
        self,
        name: str,
        action: Callable[[], T],
        compensation: Optional[Callable[[T], Any]] = None,
    ) -> T:
        """Run ``action`` now and remember how to undo it.

        Args:
            name (str): Human-readable step name used in logs and errors.
            action (Callable[[], T]): Forward action; its return value is
                handed back to the caller and to ``compensation``.
            compensation (Callable[[T], Any] | None): Undo action receiving
                the forward action's result.

        Returns:
            T: Whatever ``action`` returned.
        """

        self._current = name
        result = action()
        undo = partial(compensation, result) if compensation is not None else None
        self._completed.append(_CompletedStep(name=name, compensation=undo))
        self._current = None
        log.debug("Saga '%s' completed step '%s'", self.operation, name)
        return result

    def compensate(self) -> List[CompensationFailure]:
        """Undo completed steps in reverse order and report the ones that failed."""

        failures: List[CompensationFailure] = []
        for step in reversed(self._completed):
            if step.compensation is None:
                continue
            try:
                step.compensation()
            except Exception as exc:  # every failure is collected and reported
                log.error(
                    "Saga '%s' could not compensate step '%s': %s",
                    self.operation,
                    step.name,
                    exc,
                )
                failures.append(CompensationFailure(step=step.name, error=exc))
            else:
                log.info("Saga '%s' compensated step '%s'", self.operation, step.name)
        self._completed.clear()
        return failures

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            return False
        if not isinstance(exc, Exception):
            return False

        failed_step = self._current
        log.warning(
            "Saga '%s' failed at step '%s': %s",
            self.operation,
            failed_step or "<between steps>",
            exc,
        )
        failures = self.compensate()
        if failures:
            raise InconsistencyWarning(operation=self.operation, cause=exc, failures=failures) from exc
        if isinstance(exc, ShopEngineError):
            return False
        if isinstance(exc, (data_manager.StoreError, OSError)):
            raise PersistenceError(str(exc), operation=self.operation, step=failed_step) from exc
        return False
