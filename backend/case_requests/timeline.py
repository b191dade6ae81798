from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.utils import timezone
from jsonschema import Draft202012Validator

from .errors import PermissionDenied, ValidationFailed
from .models import CaseRequest, RequestStatus, TimelineEntry, TimelineEventType
from .roles import Actor

logger = logging.getLogger(__name__)

TIMELINE_MAX_ENTRIES = 500
TITLE_MAX_LENGTH = 200

PARTICIPANT_WRITABLE_TYPES = frozenset(
    {
        TimelineEventType.PROGRESS_NOTE,
        TimelineEventType.INTERIM_REPORT,
        TimelineEventType.FINAL_REPORT,
        TimelineEventType.ATTACHMENT_SHARED,
        TimelineEventType.STATUS_ADVANCED,
    }
)

_STATUS_VALUES = list(RequestStatus.values)

_ATTACHMENT_SCHEMA = {
    "type": "object",
    "required": ["name", "url"],
    "properties": {
        "name": {"type": "string", "minLength": 1, "maxLength": 200},
        "url": {"type": "string", "minLength": 1, "maxLength": 1000},
        "content_type": {"type": "string"},
        "size": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": False,
}


def _object(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties, "additionalProperties": False}
    if required:
        schema["required"] = required
    return schema


# One schema per entry type; payloads are a tagged variant keyed by entry_type.
TIMELINE_PAYLOAD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    TimelineEventType.REQUEST_CREATED: _object({"title": {"type": "string"}}, ["title"]),
    TimelineEventType.INVESTIGATOR_ASSIGNED: _object(
        {
            "investigator_id": {"type": "integer"},
            "investigator_user_id": {"type": ["integer", "null"]},
        },
        ["investigator_id"],
    ),
    TimelineEventType.INVESTIGATOR_ACCEPTED: _object({}),
    TimelineEventType.INVESTIGATOR_DECLINED: _object({"reason": {"type": "string", "minLength": 1}}, ["reason"]),
    TimelineEventType.STATUS_ADVANCED: _object(
        {
            "from": {"enum": _STATUS_VALUES},
            "to": {"enum": _STATUS_VALUES},
            "completion_note": {"type": "string"},
            "details": {"type": "string"},
        }
    ),
    TimelineEventType.PROGRESS_NOTE: _object({"details": {"type": "string"}}),
    TimelineEventType.INTERIM_REPORT: _object(
        {
            "summary": {"type": "string"},
            "details": {"type": "string"},
            "attachments": {"type": "array", "items": _ATTACHMENT_SCHEMA},
        }
    ),
    TimelineEventType.FINAL_REPORT: _object(
        {
            "summary": {"type": "string"},
            "details": {"type": "string"},
            "attachments": {"type": "array", "items": _ATTACHMENT_SCHEMA},
        }
    ),
    TimelineEventType.ATTACHMENT_SHARED: _object(
        {"attachments": {"type": "array", "items": _ATTACHMENT_SCHEMA, "minItems": 1}},
        ["attachments"],
    ),
    TimelineEventType.CUSTOMER_CANCELLED: _object({"from": {"enum": _STATUS_VALUES}}),
    TimelineEventType.SYSTEM: _object({"message": {"type": "string"}}),
}


def parse_entry_type(value: Any) -> Optional[TimelineEventType]:
    if not isinstance(value, str):
        return None
    try:
        return TimelineEventType(value.strip().upper())
    except ValueError:
        return None


def validate_payload(entry_type: str, payload: Any) -> list[str]:
    if payload is None:
        return []
    validator = Draft202012Validator(TIMELINE_PAYLOAD_SCHEMAS[entry_type])
    errors = []
    for error in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
        path = ".".join(str(p) for p in error.path) if error.path else "payload"
        errors.append(f"{path}: {error.message}")
    return errors


def append_entry(
    case: CaseRequest,
    *,
    entry_type: str,
    author_id: Optional[int],
    title: Optional[str] = None,
    note: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> TimelineEntry:
    errors = validate_payload(entry_type, payload)
    if errors:
        raise ValidationFailed("INVALID_TIMELINE_PAYLOAD", "Payload does not match the entry type.", errors)
    return TimelineEntry.objects.create(
        request=case,
        entry_type=entry_type,
        title=title[:TITLE_MAX_LENGTH] if title else None,
        note=note or None,
        payload_json=payload,
        author_id=author_id,
    )


def append_manual_entry(actor: Actor, case: CaseRequest, body: Dict[str, Any]) -> TimelineEntry:
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")

    entry_type = parse_entry_type(body.get("type"))
    if entry_type is None or entry_type not in PARTICIPANT_WRITABLE_TYPES:
        raise ValidationFailed("INVALID_TIMELINE_TYPE")

    title = body.get("title").strip() if isinstance(body.get("title"), str) else ""
    note = body.get("note").strip() if isinstance(body.get("note"), str) else ""
    payload = body.get("payload")
    if payload is not None and not isinstance(payload, dict):
        raise ValidationFailed("INVALID_TIMELINE_PAYLOAD", "payload must be an object")
    if not title and not note and not payload:
        raise ValidationFailed("EMPTY_TIMELINE_ENTRY", "Provide a title, note or payload.")

    with transaction.atomic():
        entry = append_entry(
            case,
            entry_type=entry_type,
            author_id=actor.user_id,
            title=title,
            note=note,
            payload=payload or None,
        )
        CaseRequest.objects.filter(pk=case.pk).update(updated_at=timezone.now())
    logger.info("timeline entry %s appended to request %s by %s", entry_type, case.pk, actor.user_id)
    return entry


def list_entries(case: CaseRequest) -> List[TimelineEntry]:
    return list(
        TimelineEntry.objects.filter(request=case)
        .select_related("author")
        .order_by("created_at", "id")[:TIMELINE_MAX_ENTRIES]
    )
