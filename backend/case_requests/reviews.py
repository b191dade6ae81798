from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, Sum

from .errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from .models import CaseRequest, InvestigatorProfile, RequestStatus, Review
from .roles import Actor

logger = logging.getLogger(__name__)

REVIEW_COMMENT_MAX = 2000

_UNSET = object()


def parse_rating(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationFailed("INVALID_RATING", "rating must be an integer from 1 to 5")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 1 or value > 5:
        raise ValidationFailed("INVALID_RATING", "rating must be an integer from 1 to 5")
    return value


def parse_comment(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed("INVALID_COMMENT")
    trimmed = value.strip()
    return trimmed[:REVIEW_COMMENT_MAX] if trimmed else None


def recompute_investigator_rating(investigator_id: int) -> InvestigatorProfile:
    """Rebuild the provider's denormalized rating from all of its reviews.

    Must run inside a transaction; the profile row is locked so concurrent
    review writes for the same provider recompute one after the other.
    """
    profile = InvestigatorProfile.objects.select_for_update().get(pk=investigator_id)
    aggregate = Review.objects.filter(investigator_id=investigator_id).aggregate(
        count=Count("id"),
        total=Sum("rating"),
        average=Avg("rating"),
    )
    profile.rating_count = aggregate["count"] or 0
    profile.rating_sum = aggregate["total"] or 0
    profile.rating_average = float(aggregate["average"]) if aggregate["average"] is not None else None
    profile.save(update_fields=["rating_count", "rating_sum", "rating_average", "updated_at"])
    return profile


def review_exists(case: CaseRequest) -> bool:
    return Review.objects.filter(request=case).exists()


def _locked_request(case: CaseRequest) -> CaseRequest:
    return CaseRequest.objects.select_for_update().select_related("investigator").get(pk=case.pk)


def get_review(actor: Actor, case: CaseRequest) -> Optional[Review]:
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")
    return Review.objects.filter(request=case).first()


def create_review(actor: Actor, case: CaseRequest, body: Dict[str, Any]) -> Review:
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")

    with transaction.atomic():
        locked = _locked_request(case)
        if locked.status != RequestStatus.COMPLETED:
            raise Conflict("REQUEST_NOT_COMPLETED", "Reviews can only be written for completed requests.")
        if review_exists(locked):
            raise Conflict("REVIEW_ALREADY_EXISTS")

        rating = parse_rating(body.get("rating"))
        comment = parse_comment(body.get("comment"))
        try:
            with transaction.atomic():
                review = Review.objects.create(
                    request=locked,
                    investigator_id=locked.investigator_id,
                    customer_id=locked.user_id,
                    rating=rating,
                    comment=comment,
                )
        except IntegrityError as exc:
            raise Conflict("REVIEW_ALREADY_EXISTS") from exc
        recompute_investigator_rating(locked.investigator_id)

    logger.info("review %s created for request %s rating=%s", review.pk, case.pk, rating)
    return review


def update_review(actor: Actor, case: CaseRequest, body: Dict[str, Any]) -> Review:
    if not actor.can_access(case):
        raise PermissionDenied("FORBIDDEN")

    rating = parse_rating(body["rating"]) if "rating" in body and body["rating"] is not None else None
    comment = parse_comment(body["comment"]) if "comment" in body else _UNSET
    if rating is None and comment is _UNSET:
        raise ValidationFailed("NO_CHANGES")

    with transaction.atomic():
        locked = _locked_request(case)
        review = Review.objects.select_for_update().filter(request=locked).first()
        if review is None:
            raise NotFound("REVIEW_NOT_FOUND")
        dirty = {"updated_at"}
        if rating is not None:
            review.rating = rating
            dirty.add("rating")
        if comment is not _UNSET:
            review.comment = comment
            dirty.add("comment")
        review.save(update_fields=sorted(dirty))
        recompute_investigator_rating(review.investigator_id)

    logger.info("review %s updated for request %s", review.pk, case.pk)
    return review
