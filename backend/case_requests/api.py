from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Dict

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from . import chat, notifications, reviews, store, timeline
from .errors import CaseRequestError, ValidationFailed
from .roles import Capability, require_capability
from .serializers import (
    case_request_to_payload,
    chat_message_to_payload,
    chat_room_to_payload,
    notification_to_payload,
    review_to_payload,
    timeline_entry_to_payload,
    user_to_payload,
)

logger = logging.getLogger(__name__)


def _parse_json(request: HttpRequest) -> Dict[str, Any]:
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailed("INVALID_JSON", "Request body is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise ValidationFailed("INVALID_PAYLOAD", "Request body must be a JSON object.")
    return payload


def _method_not_allowed() -> JsonResponse:
    return JsonResponse({"error": "METHOD_NOT_ALLOWED"}, status=405)


def api_endpoint(view):
    """Turn domain errors into ``{"error", "message"}`` responses.

    Anything unexpected is logged with its traceback and reported as a bare
    ``INTERNAL_ERROR`` so internals never reach the client.
    """

    @wraps(view)
    def _wrapped(request: HttpRequest, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except CaseRequestError as exc:
            return JsonResponse(exc.to_payload(), status=exc.status_code)
        except Exception:
            logger.exception("unhandled error on %s %s", request.method, request.path)
            return JsonResponse({"error": "INTERNAL_ERROR"}, status=500)

    return _wrapped


def _detail_payload(case) -> Dict[str, Any]:
    return case_request_to_payload(case, timeline=timeline.list_entries(case))


@require_capability(Capability.REQUEST_READ)
def _list_case_requests(request: HttpRequest) -> JsonResponse:
    cases = store.list_requests(request.actor, request.GET)
    return JsonResponse({"case_requests": [case_request_to_payload(case) for case in cases]})


@require_capability(Capability.REQUEST_CREATE)
def _create_case_request(request: HttpRequest) -> JsonResponse:
    case = store.create_request(request.actor, _parse_json(request))
    return JsonResponse(_detail_payload(case), status=201)


@csrf_exempt
@api_endpoint
def case_requests_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "GET":
        return _list_case_requests(request)
    if request.method == "POST":
        return _create_case_request(request)
    return _method_not_allowed()


@csrf_exempt
@api_endpoint
@require_capability(Capability.REQUEST_READ)
def case_request_detail(request: HttpRequest, request_id: int) -> HttpResponse:
    actor = request.actor
    if request.method == "GET":
        return JsonResponse(_detail_payload(store.get_request_for(actor, request_id)))
    if request.method == "PATCH":
        case = store.update_request(actor, request_id, _parse_json(request))
        return JsonResponse(_detail_payload(case))
    if request.method == "DELETE":
        store.delete_request(actor, request_id)
        return HttpResponse(status=204)
    return _method_not_allowed()


@csrf_exempt
@api_endpoint
@require_capability(Capability.REQUEST_READ)
def case_request_timeline(request: HttpRequest, request_id: int) -> JsonResponse:
    if request.method not in ("GET", "POST"):
        return _method_not_allowed()
    case = store.get_request_for(request.actor, request_id)
    if request.method == "POST":
        entry = timeline.append_manual_entry(request.actor, case, _parse_json(request))
        return JsonResponse({"entry": timeline_entry_to_payload(entry)}, status=201)
    entries = timeline.list_entries(case)
    return JsonResponse({"timeline": [timeline_entry_to_payload(entry) for entry in entries]})


@require_capability(Capability.CONVERSATION_READ)
def _read_chat(request: HttpRequest, request_id: int) -> JsonResponse:
    case = store.get_request(request_id)
    room, messages = chat.read_channel(request.actor, case)
    people = chat.participants(case)
    return JsonResponse(
        {
            "room": chat_room_to_payload(room),
            "messages": [chat_message_to_payload(message) for message in messages],
            "participants": {role: user_to_payload(user) for role, user in people.items()},
        }
    )


@require_capability(Capability.CONVERSATION_WRITE)
def _send_chat(request: HttpRequest, request_id: int) -> JsonResponse:
    case = store.get_request(request_id)
    message = chat.send_message(request.actor, case, _parse_json(request))
    return JsonResponse({"message": chat_message_to_payload(message)}, status=201)


@csrf_exempt
@api_endpoint
def case_request_chat(request: HttpRequest, request_id: int) -> JsonResponse:
    if request.method == "GET":
        return _read_chat(request, request_id)
    if request.method == "POST":
        return _send_chat(request, request_id)
    return _method_not_allowed()


@csrf_exempt
@api_endpoint
@require_capability(Capability.REQUEST_READ)
def case_request_review(request: HttpRequest, request_id: int) -> JsonResponse:
    actor = request.actor
    case = store.get_request(request_id)
    if request.method == "GET":
        return JsonResponse({"review": review_to_payload(reviews.get_review(actor, case))})
    if request.method == "POST":
        review = reviews.create_review(actor, case, _parse_json(request))
        return JsonResponse({"review": review_to_payload(review)}, status=201)
    if request.method == "PATCH":
        review = reviews.update_review(actor, case, _parse_json(request))
        return JsonResponse({"review": review_to_payload(review)})
    return _method_not_allowed()


@csrf_exempt
@api_endpoint
@require_capability()
def notifications_collection(request: HttpRequest) -> JsonResponse:
    user_id = request.actor.user_id
    if request.method == "GET":
        items, unread_count = notifications.list_notifications(
            user_id,
            unread_only=request.GET.get("unread", "").lower() in ("1", "true", "yes"),
            limit=request.GET.get("limit"),
            since=request.GET.get("since"),
        )
        return JsonResponse(
            {
                "notifications": [notification_to_payload(item) for item in items],
                "unread_count": unread_count,
            }
        )
    if request.method == "PATCH":
        payload = _parse_json(request)
        updated = notifications.mark_read(user_id, ids=payload.get("ids"), mark_all=payload.get("mark_all") is True)
        return JsonResponse({"updated": updated})
    return _method_not_allowed()
