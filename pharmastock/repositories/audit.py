import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo import ASCENDING
from pharmastock.repositories.base import BaseRepository
from pharmastock.models.audit import AuditEvent, EventKind

logger = logging.getLogger(__name__)

class AuditLogger(BaseRepository[AuditEvent]):

    async def log_event(self, event: AuditEvent):
        """Log an event to the audit trail."""
        await self.create(event)

    async def emit(self,
                   event_kind: EventKind,
                   order_id: Optional[str],
                   actor_id: str,
                   timestamp: datetime,
                   details: str = "",
                   metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record a workflow event. Callers treat failures here as non-fatal."""
        event = AuditEvent(
            event_id=f"EVT-{uuid.uuid4().hex}",
            event_kind=event_kind,
            order_id=order_id,
            actor_id=actor_id,
            timestamp=timestamp,
            details=details,
            metadata=metadata or {}
        )
        await self.log_event(event)
        logger.info(f"AUDIT [{event_kind.value}]: {details} ({order_id}) by {actor_id}")

    async def get_for_order(self, order_id: str) -> List[AuditEvent]:
        """Retrieve all audit events for a specific order, oldest first."""
        return await self.list({"order_id": order_id}, sort=[("timestamp", ASCENDING)])
