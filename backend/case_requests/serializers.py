from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from rest_framework import serializers

from .models import (
    CaseRequest,
    ChatMessage,
    ChatRoom,
    InvestigatorProfile,
    Notification,
    Review,
    TimelineEntry,
    UserAccount,
)


def user_to_payload(user: Optional[UserAccount]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


def investigator_to_payload(profile: InvestigatorProfile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "status": profile.status,
        "contact_phone": profile.contact_phone or None,
        "service_area": profile.service_area or None,
        "specialties": profile.specialties or [],
        "rating_average": profile.rating_average,
        "rating_count": profile.rating_count,
        "user": user_to_payload(profile.user),
    }


def review_to_payload(review: Optional[Review]) -> Optional[Dict[str, Any]]:
    if review is None:
        return None
    return {
        "id": review.id,
        "request_id": review.request_id,
        "investigator_id": review.investigator_id,
        "customer_id": review.customer_id,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
    }


def timeline_entry_to_payload(entry: TimelineEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.entry_type,
        "title": entry.title,
        "note": entry.note,
        "payload": entry.payload_json,
        "author": user_to_payload(entry.author),
        "created_at": entry.created_at,
    }


def case_request_to_payload(
    case: CaseRequest,
    *,
    timeline: Optional[Iterable[TimelineEntry]] = None,
) -> Dict[str, Any]:
    scenario = case.scenario
    data: Dict[str, Any] = {
        "id": case.id,
        "title": case.title,
        "details": case.details,
        "desired_outcome": case.desired_outcome,
        "status": case.status,
        "budget_min": case.budget_min,
        "budget_max": case.budget_max,
        "decline_reason": case.decline_reason,
        "user_id": case.user_id,
        "investigator_id": case.investigator_id,
        "scenario_id": case.scenario_id,
        "scenario": (
            {
                "id": scenario.id,
                "title": scenario.title,
                "category": scenario.category or None,
                "difficulty": scenario.difficulty or None,
            }
            if scenario
            else None
        ),
        "user": user_to_payload(case.user),
        "investigator": investigator_to_payload(case.investigator),
        "review": review_to_payload(Review.objects.filter(request_id=case.id).first()),
        "accepted_at": case.accepted_at,
        "declined_at": case.declined_at,
        "cancelled_at": case.cancelled_at,
        "completed_at": case.completed_at,
        "created_at": case.created_at,
        "updated_at": case.updated_at,
    }
    if timeline is not None:
        data["timeline"] = [timeline_entry_to_payload(entry) for entry in timeline]
    return data


def chat_room_to_payload(room: ChatRoom) -> Dict[str, Any]:
    return {
        "id": room.id,
        "request_id": room.request_id,
        "customer_id": room.customer_id,
        "investigator_user_id": room.investigator_user_id,
        "last_message_preview": room.last_message_preview,
        "last_message_at": room.last_message_at,
        "created_at": room.created_at,
        "updated_at": room.updated_at,
    }


def chat_message_to_payload(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "room_id": message.room_id,
        "sender_id": message.sender_id,
        "sender": user_to_payload(message.sender),
        "content": message.content,
        "attachments": message.attachments or [],
        "created_at": message.created_at,
    }


def notification_to_payload(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.notification_type,
        "title": notification.title,
        "message": notification.message,
        "action_url": notification.action_url,
        "metadata": notification.metadata_json,
        "read_at": notification.read_at,
        "created_at": notification.created_at,
    }


class DirectoryUserSerializer(serializers.ModelSerializer):
    class Meta:
        model = UserAccount
        fields = ["id", "name"]


class InvestigatorDirectorySerializer(serializers.ModelSerializer):
    user = DirectoryUserSerializer(read_only=True)

    class Meta:
        model = InvestigatorProfile
        fields = [
            "id",
            "user",
            "service_area",
            "specialties",
            "rating_average",
            "rating_count",
        ]
        read_only_fields = fields
