from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import ContextManager, Iterator, Optional, Protocol

from nsm.domain.errors import PartialFailureError, StoreError
from nsm.domain.models import RowId
from nsm.repositories.contracts import DataStore

log = logging.getLogger("nsm.reconciliation")


class UnitOfWork(Protocol):
    completed_steps: list[str]

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> Optional[bool]: ...
    def step(self, name: str) -> ContextManager[None]: ...


@dataclass
class StoreUnitOfWork:
    """Groups the writes of one multi-step operation.

    On a store with transactions the whole block commits or rolls back as one.
    On a store without them, an intent row is written before the first step,
    each finished step is recorded on it, and a step that fails after another
    one already landed raises PartialFailureError, leaving the intent pending
    for the reconciliation pass.
    """

    store: DataStore
    operation: str
    reference: Optional[str] = None
    payload: dict = field(default_factory=dict)
    completed_steps: list[str] = field(default_factory=list)
    intent_id: Optional[RowId] = None
    _tx: Optional[ContextManager[None]] = field(default=None, repr=False)

    def __enter__(self) -> "StoreUnitOfWork":
        if getattr(self.store, "supports_transactions", False):
            self._tx = self.store.transaction()
            self._tx.__enter__()
        else:
            self.intent_id = self.store.create_intent(self.operation, self.reference, self.payload)
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        if self._tx is not None:
            tx, self._tx = self._tx, None
            return tx.__exit__(exc_type, exc, tb)

        if self.intent_id is None:
            return None
        # Failed before anything landed: nothing to reconcile.
        if exc_type is None or not self.completed_steps:
            try:
                self.store.close_intent(self.intent_id)
            except StoreError as e:
                log.warning("intent_close_failed intent_id=%s operation=%s error=%s", self.intent_id, self.operation, e)
        return None

    @property
    def transactional(self) -> bool:
        return self._tx is not None

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        try:
            yield
        except Exception as e:
            if self.transactional or not self.completed_steps:
                raise
            err = PartialFailureError(
                operation=self.operation,
                failed_step=name,
                completed_steps=self.completed_steps,
                reference=self.reference,
                intent_id=self.intent_id,
            )
            log.error(
                "partial_failure operation=%s reference=%s orphaned_state=%s",
                self.operation,
                self.reference,
                err.orphaned_state,
                extra={
                    "event": {
                        "type": "partial_failure",
                        "operation": self.operation,
                        "reference": self.reference,
                        "intent_id": self.intent_id,
                        "failed_step": name,
                        "completed_steps": list(self.completed_steps),
                        "orphaned_state": err.orphaned_state,
                        "error": str(e),
                    }
                },
            )
            raise err from e

        self.completed_steps.append(name)
        if self.intent_id is not None:
            try:
                self.store.update_intent_steps(self.intent_id, self.completed_steps)
            except StoreError as e:
                log.warning("intent_update_failed intent_id=%s step=%s error=%s", self.intent_id, name, e)
