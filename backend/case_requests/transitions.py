"""Status transitions for case requests.

``apply_transition`` is the only code path that writes ``CaseRequest.status``.
The guard runs against a row locked with ``select_for_update`` and the status
write, timeline entry, audit row and notifications commit together.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Optional

from django.db import transaction
from django.utils import timezone

from .audit import STATUS_CHANGE, record_audit_event
from .errors import Conflict, PermissionDenied, ValidationFailed
from .models import CaseRequest, RequestStatus, TimelineEventType
from .notifications import INVESTIGATION_STATUS, notify_many
from .roles import Actor
from .timeline import append_entry

logger = logging.getLogger(__name__)

STATUS_TERMINAL: FrozenSet[str] = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.DECLINED, RequestStatus.CANCELLED}
)

STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RequestStatus.MATCHING: frozenset({RequestStatus.ACCEPTED, RequestStatus.DECLINED, RequestStatus.CANCELLED}),
    RequestStatus.ACCEPTED: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.CANCELLED}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.REPORTING, RequestStatus.CANCELLED}),
    RequestStatus.REPORTING: frozenset(
        {RequestStatus.IN_PROGRESS, RequestStatus.COMPLETED, RequestStatus.CANCELLED}
    ),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.DECLINED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

PROVIDER_FORWARD_TARGETS: FrozenSet[str] = frozenset(
    {RequestStatus.ACCEPTED, RequestStatus.IN_PROGRESS, RequestStatus.REPORTING, RequestStatus.COMPLETED}
)

# Verdicts, ordered from least to most permissive.
FORBIDDEN = 0
NOT_ALLOWED = 1
GRANTED = 2

ENTRY_TITLES = {
    RequestStatus.ACCEPTED: "Investigator accepted the request",
    RequestStatus.DECLINED: "Investigator declined the request",
    RequestStatus.IN_PROGRESS: "Investigation in progress",
    RequestStatus.REPORTING: "Final report submitted",
    RequestStatus.COMPLETED: "Investigation completed",
    RequestStatus.CANCELLED: "Request cancelled",
}


def parse_status(value: Any) -> Optional[RequestStatus]:
    if not isinstance(value, str):
        return None
    try:
        return RequestStatus(value.strip().upper())
    except ValueError:
        return None


def _stored_status(value: Any) -> Optional[RequestStatus]:
    try:
        return RequestStatus(value)
    except ValueError:
        return None


def is_allowed_edge(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def _owner_verdict(current: str, target: str) -> int:
    if target == RequestStatus.CANCELLED and current not in STATUS_TERMINAL:
        return GRANTED
    return FORBIDDEN


def _provider_verdict(current: str, target: str) -> int:
    if target in (RequestStatus.CANCELLED, RequestStatus.MATCHING):
        return FORBIDDEN
    if target == RequestStatus.DECLINED:
        return GRANTED if current == RequestStatus.MATCHING else NOT_ALLOWED
    if target in PROVIDER_FORWARD_TARGETS:
        return GRANTED
    return FORBIDDEN


def permission_verdict(actor: Actor, case: CaseRequest, current: str, target: str) -> int:
    if actor.is_admin:
        return GRANTED
    verdicts = [FORBIDDEN]
    if actor.is_owner(case):
        verdicts.append(_owner_verdict(current, target))
    if actor.is_assigned_provider(case):
        verdicts.append(_provider_verdict(current, target))
    return max(verdicts)


def authorize_transition(
    actor: Actor,
    case: CaseRequest,
    target_value: Any,
    *,
    decline_reason: Optional[str] = None,
) -> RequestStatus:
    """Run every guard for ``case -> target_value`` and return the parsed target.

    Raises the typed error for the first failing check; the caller is
    expected to hold the row lock.
    """
    target = parse_status(target_value)
    if target is None:
        raise ValidationFailed("INVALID_STATUS", f"Unknown status: {target_value}")

    current = _stored_status(case.status)
    if current is None:
        if not actor.is_admin:
            raise PermissionDenied("STATUS_CHANGE_FORBIDDEN", "Request has an unrecognized status.")
        logger.warning("admin %s repairing request %s from status %r", actor.user_id, case.pk, case.status)
    else:
        if target == current:
            raise Conflict("STATUS_UNCHANGED", f"Request is already {current}.")
        verdict = permission_verdict(actor, case, current, target)
        if verdict == NOT_ALLOWED:
            raise Conflict("TRANSITION_NOT_ALLOWED", f"Cannot move from {current} to {target}.")
        if verdict != GRANTED:
            raise PermissionDenied("STATUS_CHANGE_FORBIDDEN", f"You may not move this request to {target}.")
        if not is_allowed_edge(current, target):
            raise Conflict("TRANSITION_NOT_ALLOWED", f"Cannot move from {current} to {target}.")

    if target == RequestStatus.DECLINED and not (decline_reason or "").strip():
        raise ValidationFailed("DECLINE_REASON_REQUIRED", "A reason is required to decline a request.")
    return target


def _clean(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _timeline_for(
    actor: Actor,
    case: CaseRequest,
    previous: Optional[RequestStatus],
    target: RequestStatus,
    *,
    decline_reason: Optional[str],
    status_note: Optional[str],
    completion_note: Optional[str],
    final_report_summary: Optional[str],
):
    moved: Dict[str, Any] = {"to": str(target)}
    if previous is not None:
        moved["from"] = str(previous)

    if target == RequestStatus.ACCEPTED:
        return TimelineEventType.INVESTIGATOR_ACCEPTED, status_note, None
    if target == RequestStatus.DECLINED:
        return TimelineEventType.INVESTIGATOR_DECLINED, decline_reason, {"reason": decline_reason}
    if target == RequestStatus.REPORTING:
        payload = {"summary": final_report_summary} if final_report_summary else None
        return TimelineEventType.FINAL_REPORT, status_note, payload
    if target == RequestStatus.COMPLETED:
        if completion_note:
            moved["completion_note"] = completion_note
        return TimelineEventType.STATUS_ADVANCED, completion_note or status_note, moved
    if target == RequestStatus.CANCELLED and actor.is_owner(case):
        payload = {"from": str(previous)} if previous is not None else None
        return TimelineEventType.CUSTOMER_CANCELLED, status_note, payload
    return TimelineEventType.STATUS_ADVANCED, status_note, moved


def apply_transition(
    actor: Actor,
    case: CaseRequest,
    target_value: Any,
    *,
    decline_reason: Optional[str] = None,
    status_note: Optional[str] = None,
    completion_note: Optional[str] = None,
    final_report_summary: Optional[str] = None,
) -> CaseRequest:
    decline_reason = _clean(decline_reason)
    status_note = _clean(status_note)
    completion_note = _clean(completion_note)
    final_report_summary = _clean(final_report_summary)

    with transaction.atomic():
        locked = CaseRequest.objects.select_for_update().select_related("investigator").get(pk=case.pk)
        target = authorize_transition(actor, locked, target_value, decline_reason=decline_reason)
        previous = _stored_status(locked.status)
        previous_raw = locked.status
        now = timezone.now()

        locked.status = target
        dirty = {"status", "updated_at"}
        if target == RequestStatus.ACCEPTED and locked.accepted_at is None:
            locked.accepted_at = now
            dirty.add("accepted_at")
        if target == RequestStatus.DECLINED:
            locked.declined_at = now
            locked.decline_reason = decline_reason
            dirty.update({"declined_at", "decline_reason"})
        elif locked.decline_reason is not None:
            locked.decline_reason = None
            dirty.add("decline_reason")
        if target == RequestStatus.COMPLETED:
            locked.completed_at = now
            dirty.add("completed_at")
        if target == RequestStatus.CANCELLED:
            locked.cancelled_at = now
            dirty.add("cancelled_at")
        locked.save(update_fields=sorted(dirty))

        entry_type, note, payload = _timeline_for(
            actor,
            locked,
            previous,
            target,
            decline_reason=decline_reason,
            status_note=status_note,
            completion_note=completion_note,
            final_report_summary=final_report_summary,
        )
        append_entry(
            locked,
            entry_type=entry_type,
            author_id=actor.user_id,
            title=ENTRY_TITLES.get(target),
            note=note,
            payload=payload,
        )
        record_audit_event(
            actor_id=actor.user_id,
            action=STATUS_CHANGE,
            target_type="case_request",
            target_id=locked.pk,
            metadata={"from": previous_raw, "to": str(target)},
        )
        counterparts = [
            user_id
            for user_id in (locked.user_id, getattr(locked.investigator, "user_id", None))
            if user_id != actor.user_id
        ]
        notify_many(
            counterparts,
            notification_type=INVESTIGATION_STATUS,
            title="Case request status updated",
            message=f'"{locked.title}" is now {target.label}.',
            action_url=f"/case-requests/{locked.pk}",
            metadata={"request_id": locked.pk, "from": previous_raw, "to": str(target)},
        )

    logger.info("request %s moved %s -> %s by %s", locked.pk, previous_raw, target, actor.user_id)
    return locked
