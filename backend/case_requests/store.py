from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from django.db import transaction

from .audit import REQUEST_DELETE, record_audit_event
from .errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from .models import CaseRequest, InvestigatorProfile, RequestStatus, Review, Scenario, TimelineEventType, UserAccount
from .notifications import INVESTIGATION_ASSIGNED, dispatch_notification
from .reviews import recompute_investigator_rating
from .roles import Actor
from .timeline import append_entry
from .transitions import apply_transition, parse_status

logger = logging.getLogger(__name__)

TITLE_MIN_LENGTH = 2
TITLE_MAX_LENGTH = 200
DETAILS_MIN_LENGTH = 5
# PositiveIntegerField upper bound on every supported database.
BUDGET_MAX = 2147483647
OWNER_DELETABLE_STATUSES = frozenset({RequestStatus.MATCHING, RequestStatus.DECLINED, RequestStatus.CANCELLED})
TRANSITION_KEYS = ("decline_reason", "status_note", "completion_note", "final_report_summary")

_RELATED = ("user", "investigator", "investigator__user", "scenario")


def _integer(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def parse_scenario_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    scenario_id = _integer(value)
    if scenario_id is None or scenario_id <= 0:
        raise ValidationFailed("INVALID_SCENARIO_ID")
    return scenario_id


def ensure_scenario_exists(scenario_id: int) -> None:
    if not Scenario.objects.filter(pk=scenario_id).exists():
        raise NotFound("SCENARIO_NOT_FOUND")


def parse_budget(value: Any) -> Optional[int]:
    if value is None:
        return None
    amount = None if isinstance(value, str) else _integer(value)
    if amount is None or amount < 0:
        raise ValidationFailed("INVALID_BUDGET", "Budgets must be non-negative integers.")
    if amount > BUDGET_MAX:
        raise ValidationFailed("INVALID_BUDGET", f"Budgets must not exceed {BUDGET_MAX}.")
    return amount


def _check_budget_range(budget_min: Optional[int], budget_max: Optional[int]) -> None:
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise ValidationFailed("INVALID_BUDGET", "budget_min must not exceed budget_max.")


def _text(body: Mapping[str, Any], key: str) -> str:
    value = body.get(key)
    return value.strip() if isinstance(value, str) else ""


def get_request(request_id: int) -> CaseRequest:
    case = CaseRequest.objects.select_related(*_RELATED).filter(pk=request_id).first()
    if case is None:
        raise NotFound("NOT_FOUND", "Case request not found.")
    return case


def get_request_for(actor: Actor, request_id: int) -> CaseRequest:
    case = get_request(request_id)
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")
    return case


def create_request(actor: Actor, body: Dict[str, Any]) -> CaseRequest:
    title = _text(body, "title")
    details = _text(body, "details")
    if len(title) < TITLE_MIN_LENGTH or len(details) < DETAILS_MIN_LENGTH:
        raise ValidationFailed(
            "INVALID_INPUT",
            f"title needs at least {TITLE_MIN_LENGTH} characters and details at least {DETAILS_MIN_LENGTH}.",
        )
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationFailed("INVALID_INPUT", f"title must be at most {TITLE_MAX_LENGTH} characters.")
    desired_outcome = _text(body, "desired_outcome") or None
    budget_min = parse_budget(body.get("budget_min"))
    budget_max = parse_budget(body.get("budget_max"))
    _check_budget_range(budget_min, budget_max)
    scenario_id = parse_scenario_id(body.get("scenario_id"))

    raw_investigator_id = body.get("investigator_id")
    if raw_investigator_id is None or raw_investigator_id == "":
        raise ValidationFailed("INVESTIGATOR_REQUIRED")
    investigator_id = _integer(raw_investigator_id)
    if investigator_id is None or investigator_id <= 0:
        raise ValidationFailed("INVALID_INVESTIGATOR_ID")

    profile = InvestigatorProfile.objects.select_related("user").filter(pk=investigator_id).first()
    if profile is None:
        raise NotFound("INVESTIGATOR_NOT_FOUND")
    if not profile.is_approved:
        raise Conflict("INVESTIGATOR_NOT_AVAILABLE", "The investigator is not accepting requests.")
    if scenario_id is not None:
        ensure_scenario_exists(scenario_id)

    customer = UserAccount.objects.get(pk=actor.user_id)
    provider_user = profile.user

    with transaction.atomic():
        case = CaseRequest.objects.create(
            title=title,
            details=details,
            desired_outcome=desired_outcome,
            status=RequestStatus.MATCHING,
            user=customer,
            investigator=profile,
            scenario_id=scenario_id,
            budget_min=budget_min,
            budget_max=budget_max,
        )
        append_entry(
            case,
            entry_type=TimelineEventType.REQUEST_CREATED,
            author_id=customer.pk,
            title="Case request created",
            note=f"{customer.name} opened a new case request.",
            payload={"title": title},
        )
        append_entry(
            case,
            entry_type=TimelineEventType.INVESTIGATOR_ASSIGNED,
            author_id=customer.pk,
            title="Investigator assigned",
            note=f"Request sent to {provider_user.name if provider_user else 'the investigator'}.",
            payload={
                "investigator_id": profile.pk,
                "investigator_user_id": provider_user.pk if provider_user else None,
            },
        )
        if provider_user is not None:
            dispatch_notification(
                user_id=provider_user.pk,
                notification_type=INVESTIGATION_ASSIGNED,
                title="A new case request has arrived",
                message=f"{customer.name} sent you a case request: {title}",
                action_url=f"/case-requests/{case.pk}",
                metadata={"request_id": case.pk, "scenario_id": scenario_id},
            )

    logger.info("request %s created by %s for investigator %s", case.pk, actor.user_id, profile.pk)
    return get_request(case.pk)


def list_requests(actor: Actor, params: Mapping[str, Any]) -> List[CaseRequest]:
    qs = CaseRequest.objects.select_related(*_RELATED)

    raw_status = params.get("status")
    if raw_status:
        status = parse_status(raw_status)
        if status is None:
            raise ValidationFailed("INVALID_STATUS")
        qs = qs.filter(status=status)

    raw_investigator_id = params.get("investigator_id")
    if raw_investigator_id:
        investigator_id = _integer(raw_investigator_id)
        if investigator_id is None:
            raise ValidationFailed("INVALID_INVESTIGATOR_ID")
        qs = qs.filter(investigator_id=investigator_id)

    raw_user_id = params.get("user_id")
    if actor.is_admin:
        if raw_user_id:
            user_id = _integer(raw_user_id)
            if user_id is None:
                raise ValidationFailed("INVALID_USER_ID")
            qs = qs.filter(user_id=user_id)
    elif actor.is_investigator and params.get("view") != "customer":
        qs = qs.filter(investigator__user_id=actor.user_id)
    else:
        qs = qs.filter(user_id=actor.user_id)

    return list(qs.order_by("-created_at", "-id"))


def _field_changes(body: Mapping[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if "title" in body:
        title = body["title"].strip() if isinstance(body["title"], str) else ""
        if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
            raise ValidationFailed("INVALID_TITLE")
        changes["title"] = title
    if "details" in body:
        details = body["details"].strip() if isinstance(body["details"], str) else ""
        if len(details) < DETAILS_MIN_LENGTH:
            raise ValidationFailed("INVALID_DETAILS")
        changes["details"] = details
    if "desired_outcome" in body:
        value = body["desired_outcome"]
        if value is not None and not isinstance(value, str):
            raise ValidationFailed("INVALID_DESIRED_OUTCOME")
        changes["desired_outcome"] = (value.strip() or None) if isinstance(value, str) else None
    for key in ("budget_min", "budget_max"):
        if key in body:
            changes[key] = parse_budget(body[key])
    if "scenario_id" in body:
        scenario_id = parse_scenario_id(body["scenario_id"])
        if scenario_id is not None:
            ensure_scenario_exists(scenario_id)
        changes["scenario_id"] = scenario_id
    return changes


def update_request(actor: Actor, request_id: int, body: Dict[str, Any]) -> CaseRequest:
    case = get_request_for(actor, request_id)
    changes = _field_changes(body)
    target = body.get("status")
    wants_transition = target is not None and target != ""
    if not changes and not wants_transition:
        return case

    with transaction.atomic():
        locked = CaseRequest.objects.select_for_update().get(pk=case.pk)
        if changes:
            _check_budget_range(
                changes.get("budget_min", locked.budget_min),
                changes.get("budget_max", locked.budget_max),
            )
            for field, value in changes.items():
                setattr(locked, field, value)
            locked.save(update_fields=sorted(set(changes) | {"updated_at"}))
            logger.info("request %s fields %s updated by %s", locked.pk, sorted(changes), actor.user_id)
        if wants_transition:
            options = {key: body.get(key) for key in TRANSITION_KEYS}
            apply_transition(actor, locked, target, **options)

    return get_request(case.pk)


def delete_request(actor: Actor, request_id: int) -> None:
    case = get_request(request_id)
    if not actor.is_admin and not actor.is_owner(case):
        raise PermissionDenied("FORBIDDEN")

    with transaction.atomic():
        locked = CaseRequest.objects.select_for_update().get(pk=case.pk)
        if not actor.is_admin and locked.status not in OWNER_DELETABLE_STATUSES:
            raise PermissionDenied("DELETE_FORBIDDEN", "Requests can only be deleted before work has started.")
        investigator_id = locked.investigator_id
        had_review = Review.objects.filter(request=locked).exists()
        record_audit_event(
            actor_id=actor.user_id,
            action=REQUEST_DELETE,
            target_type="case_request",
            target_id=locked.pk,
            metadata={"status": locked.status, "title": locked.title},
        )
        locked.delete()
        if had_review:
            recompute_investigator_rating(investigator_id)

    logger.info("request %s deleted by %s", request_id, actor.user_id)
