from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .models import AuditLog

logger = logging.getLogger(__name__)

STATUS_CHANGE = "status.change"
REQUEST_DELETE = "request.delete"


def _small_value(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 280:
        return value[:280]
    return value


def record_audit_event(
    *,
    actor_id: Optional[int],
    action: str,
    target_type: str,
    target_id: Any,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    metadata = {key: _small_value(value) for key, value in (metadata or {}).items()}
    event = AuditLog.objects.create(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        metadata_json=metadata,
    )
    logger.info("audit %s %s:%s actor=%s %s", action, target_type, target_id, actor_id, metadata)
    return event
