from __future__ import annotations

import logging

from nsm.domain.errors import NotFoundError
from nsm.domain.models import PendingIntent, RowId
from nsm.repositories.contracts import IntentRepository

log = logging.getLogger("nsm.reconciliation")


class ReconciliationService:
    """Lists and closes intents left open by partially applied operations."""

    def __init__(self, repo: IntentRepository):
        self.repo = repo

    def pending(self) -> list[PendingIntent]:
        return self.repo.list_pending_intents()

    def resolve(self, intent_id: RowId) -> PendingIntent:
        intent = next((i for i in self.pending() if str(i.id) == str(intent_id)), None)
        if intent is None:
            raise NotFoundError("Pending intent not found.")
        self.repo.close_intent(intent.id)
        log.info(
            "intent_resolved intent_id=%s operation=%s reference=%s steps=%s",
            intent.id,
            intent.operation,
            intent.reference,
            ",".join(intent.completed_steps),
        )
        return intent
