"""Best-effort writes into the notification inbox.

Notifications are written in their own savepoint so a failed insert never
rolls back the operation that triggered it; failures are only logged.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .errors import ValidationFailed
from .models import Notification

logger = logging.getLogger(__name__)

INVESTIGATION_ASSIGNED = "INVESTIGATION_ASSIGNED"
INVESTIGATION_STATUS = "INVESTIGATION_STATUS"
CHAT_MESSAGE = "CHAT_MESSAGE"
SYSTEM = "SYSTEM"

DEFAULT_LIMIT = 12
MAX_LIMIT = 50


def dispatch_notification(
    *,
    user_id: Optional[int],
    notification_type: str,
    title: str,
    message: Optional[str] = None,
    action_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    if not user_id:
        return None
    try:
        with transaction.atomic():
            return Notification.objects.create(
                user_id=user_id,
                notification_type=notification_type,
                title=title[:200],
                message=message,
                action_url=action_url,
                metadata_json=metadata,
            )
    except DatabaseError:
        logger.exception("notification dispatch failed type=%s user=%s", notification_type, user_id)
        return None


def notify_many(user_ids: Iterable[Optional[int]], **kwargs) -> int:
    sent = 0
    seen = set()
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        if dispatch_notification(user_id=user_id, **kwargs) is not None:
            sent += 1
    return sent


def list_notifications(user_id: int, *, unread_only: bool = False, limit: Any = None, since: Any = None):
    try:
        limit_value = int(limit) if limit not in (None, "") else DEFAULT_LIMIT
    except (TypeError, ValueError):
        limit_value = DEFAULT_LIMIT
    limit_value = min(max(limit_value, 1), MAX_LIMIT)

    qs = Notification.objects.filter(user_id=user_id)
    if unread_only:
        qs = qs.filter(read_at__isnull=True)
    if since:
        try:
            since_at = parse_datetime(str(since))
        except ValueError:
            raise ValidationFailed("INVALID_SINCE", "since is not a valid timestamp.")
        if since_at is not None:
            qs = qs.filter(created_at__gt=since_at)
    unread_count = Notification.objects.filter(user_id=user_id, read_at__isnull=True).count()
    return list(qs.order_by("-created_at", "-id")[:limit_value]), unread_count


def mark_read(user_id: int, *, ids: Any = None, mark_all: bool = False) -> int:
    targets = []
    for value in ids if isinstance(ids, list) else []:
        if isinstance(value, bool):
            continue
        try:
            numeric = int(value)
        except (TypeError, ValueError):
            continue
        if numeric > 0:
            targets.append(numeric)
    if not mark_all and not targets:
        raise ValidationFailed("NO_TARGETS", "Provide ids or mark_all.")
    qs = Notification.objects.filter(user_id=user_id, read_at__isnull=True)
    if not mark_all:
        qs = qs.filter(id__in=targets)
    return qs.update(read_at=timezone.now())
