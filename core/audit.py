"""Audit trail for swap workflow actions."""

from datetime import datetime
from typing import Any, Optional
import logging

import pytz

from models.data_models import AuditEvent
from core.datastore import AUDIT_LOGS, new_document_id

logger = logging.getLogger(__name__)

POST_FLIGHT_SWAP = 'POST_FLIGHT_SWAP'
REQUEST_FLIGHT_SWAP = 'REQUEST_FLIGHT_SWAP'
CANCEL_FLIGHT_SWAP = 'CANCEL_FLIGHT_SWAP'
APPROVE_FLIGHT_SWAP = 'APPROVE_FLIGHT_SWAP'
REJECT_FLIGHT_SWAP = 'REJECT_FLIGHT_SWAP'

FLIGHT_SWAP_ENTITY = 'FLIGHT_SWAP'


class AuditLogger:
    """Persists AuditEvents in the store's audit collection"""

    def __init__(self, store, clock=None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(pytz.utc))

    async def log_event(self, user_id: str, action_type: str, entity_type: str,
                        entity_id: str, user_email: Optional[str] = None,
                        details: Optional[Any] = None) -> AuditEvent:
        event = AuditEvent(
            event_id=new_document_id(),
            user_id=user_id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            timestamp=self._clock(),
            user_email=user_email,
            details=details,
        )
        await self.store.add(AUDIT_LOGS, event)
        logger.info(f"Audit {action_type} {entity_type}/{entity_id} by {user_id}")
        return event
