import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pharmastock.models.audit import EventKind
from pharmastock.repositories.contracts import AuditSink

logger = logging.getLogger(__name__)


async def emit_best_effort(sink: Optional[AuditSink],
                           event_kind: EventKind,
                           order_id: Optional[str],
                           actor_id: str,
                           details: str = "",
                           metadata: Optional[Dict[str, Any]] = None,
                           timestamp: Optional[datetime] = None) -> bool:
    """
    Fire-and-forget delivery to the audit sink. A failing sink never undoes
    the operation that already succeeded; it is only logged.
    """
    if sink is None:
        return False
    try:
        await sink.emit(event_kind, order_id, actor_id, timestamp or datetime.utcnow(), details, metadata)
        return True
    except Exception as e:
        logger.warning(f"Audit delivery failed for {event_kind.value} ({order_id}): {e}")
        return False
