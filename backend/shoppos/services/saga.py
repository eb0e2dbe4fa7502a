# Overview: Ordered multi-step operations with per-step compensating actions.

"""
Saga: run steps in order, remember how to undo each one, and undo the
completed steps newest-first when a later step fails.

USAGE:
    with Saga("sale.create") as saga:
        for item in items:
            saga.step(
                lambda: inventory_service.reserve(...),
                compensate=lambda reservation: inventory_service.release(...),
                label=f"reserve product {item.product_id}",
            )

Leaving the block with an exception unwinds; leaving it cleanly discards
the compensations. Steps and compensations share the caller's DB session.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._compensations: list[tuple[str, Callable[[], Any]]] = []

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.unwind()
        else:
            self._compensations.clear()
        return False

    @property
    def pending(self) -> int:
        """Number of completed steps that would be compensated."""
        return len(self._compensations)

    def step(
        self,
        action: Callable[[], Any],
        compensate: Callable[[Any], Any] | None = None,
        label: str | None = None,
    ) -> Any:
        """Run action; on success record compensate(result) for unwinding."""
        result = action()
        if compensate is not None:
            self._compensations.append((label or action.__name__, lambda: compensate(result)))
        return result

    def unwind(self) -> None:
        """
        Run recorded compensations newest-first.

        A failing compensation is logged and the rest still run; the error
        that caused the unwind is the one that propagates.
        """
        if self._compensations:
            logger.info("Saga %s unwinding %s step(s)", self.name, len(self._compensations))
        while self._compensations:
            label, compensation = self._compensations.pop()
            try:
                compensation()
            except Exception:
                logger.exception("Saga %s: compensation for %r failed", self.name, label)
