from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from .errors import Conflict, PermissionDenied, ValidationFailed
from .models import CaseRequest, ChatMessage, ChatRoom
from .notifications import CHAT_MESSAGE, dispatch_notification
from .roles import Actor

logger = logging.getLogger(__name__)

CHAT_PAGE_SIZE = 100
MESSAGE_MAX_LENGTH = 4000
PREVIEW_LENGTH = 280
NOTIFICATION_PREVIEW_LENGTH = 140


def provider_user_id(case: CaseRequest) -> Optional[int]:
    investigator = case.investigator if case.investigator_id else None
    return investigator.user_id if investigator else None


def ensure_room(case: CaseRequest) -> ChatRoom:
    """Return the request's chat room, creating it on first access.

    The room is keyed on the unique request id, so concurrent first access
    resolves to a single row instead of racing a check-then-insert.
    """
    investigator_user_id = provider_user_id(case)
    if not investigator_user_id:
        raise Conflict("CHAT_NOT_AVAILABLE", "No investigator account is attached to this request yet.")
    room, created = ChatRoom.objects.get_or_create(
        request=case,
        defaults={"customer_id": case.user_id, "investigator_user_id": investigator_user_id},
    )
    if created:
        logger.info("chat room %s opened for request %s", room.pk, case.pk)
    return room


def _normalize_attachments(value: Any) -> Optional[List[Dict[str, str]]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationFailed("INVALID_ATTACHMENTS", "attachments must be a list")
    attachments = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationFailed("INVALID_ATTACHMENTS", "attachment must be an object")
        name = str(item.get("name") or "").strip()
        url = str(item.get("url") or "").strip()
        if not name or not url:
            raise ValidationFailed("INVALID_ATTACHMENTS", "attachment requires name and url")
        attachments.append({"name": name, "url": url})
    return attachments or None


def read_channel(actor: Actor, case: CaseRequest) -> Tuple[ChatRoom, List[ChatMessage]]:
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")
    room = ensure_room(case)
    recent = list(
        ChatMessage.objects.filter(room=room).select_related("sender").order_by("-created_at", "-id")[:CHAT_PAGE_SIZE]
    )
    recent.reverse()
    return room, recent


def send_message(actor: Actor, case: CaseRequest, body: Dict[str, Any]) -> ChatMessage:
    if not actor.is_participant(case):
        raise PermissionDenied("FORBIDDEN", "Only the request participants may send messages.")
    investigator_user_id = provider_user_id(case)
    if not investigator_user_id:
        raise Conflict("CHAT_NOT_AVAILABLE", "No investigator account is attached to this request yet.")

    content = body.get("content").strip() if isinstance(body.get("content"), str) else ""
    if not content:
        raise ValidationFailed("MESSAGE_REQUIRED")
    if len(content) > MESSAGE_MAX_LENGTH:
        raise ValidationFailed("MESSAGE_TOO_LONG", f"Messages are limited to {MESSAGE_MAX_LENGTH} characters.")
    attachments = _normalize_attachments(body.get("attachments"))

    room = ensure_room(case)
    with transaction.atomic():
        message = ChatMessage.objects.create(
            room=room,
            sender_id=actor.user_id,
            content=content,
            attachments=attachments,
        )
        room.last_message_preview = content[:PREVIEW_LENGTH]
        room.last_message_at = message.created_at or timezone.now()
        room.save(update_fields=["last_message_preview", "last_message_at", "updated_at"])

    recipient_id = investigator_user_id if actor.user_id == case.user_id else case.user_id
    if recipient_id != actor.user_id:
        sender = message.sender
        dispatch_notification(
            user_id=recipient_id,
            notification_type=CHAT_MESSAGE,
            title=f"New message from {sender.name}",
            message=content[:NOTIFICATION_PREVIEW_LENGTH],
            action_url=f"/case-requests/{case.pk}/chat",
            metadata={"request_id": case.pk, "room_id": room.pk, "sender_id": actor.user_id},
        )
    return message


def participants(case: CaseRequest) -> Dict[str, Any]:
    investigator = case.investigator if case.investigator_id else None
    return {
        "customer": case.user,
        "investigator": investigator.user if investigator else None,
    }
