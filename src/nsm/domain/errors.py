from __future__ import annotations

from typing import Sequence


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, message: str, shortfalls: Sequence = ()):
        super().__init__(message)
        self.shortfalls = list(shortfalls)


class PartialFailureError(AppError):
    """A multi-step operation failed after some of its writes were applied.

    The store was left in a state that needs manual reconciliation;
    `orphaned_state` describes it ("stock updated; financial record missing").
    """

    def __init__(
        self,
        operation: str,
        failed_step: str,
        completed_steps: Sequence[str],
        reference: str | None = None,
        intent_id: int | str | None = None,
    ):
        self.operation = operation
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.reference = reference
        self.intent_id = intent_id
        self.orphaned_state = f"{', '.join(self.completed_steps)}; {failed_step} missing"
        super().__init__(f"{operation} failed at '{failed_step}' ({self.orphaned_state})")


class StoreError(AppError):
    pass


class AuthorizationError(AppError):
    pass
