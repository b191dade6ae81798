import logging
from typing import Any, Dict, Optional

import jwt
from django.conf import settings

from case_requests.models import UserAccount
from case_requests.roles import Actor, parse_role

logger = logging.getLogger(__name__)


class BearerActorMiddleware:
    """Resolve ``Authorization: Bearer <jwt>`` into ``request.actor``.

    The role is read from the stored account rather than the token so role
    changes apply to tokens that are already issued. A token that fails any
    check leaves the request anonymous with ``request.auth_error`` set.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.actor = None
        token = _extract_bearer_token(request)
        if token:
            claims = _verify_token(token)
            actor = _actor_from_claims(claims) if claims else None
            if actor:
                request.actor = actor
            else:
                request.auth_error = "INVALID_TOKEN"
        return self.get_response(request)


def _extract_bearer_token(request) -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        return ""
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def _verify_token(token: str) -> Optional[Dict[str, Any]]:
    secret = settings.LIRA_JWT_SECRET
    if not secret:
        logger.warning("bearer token presented but LIRA_JWT_SECRET is not configured")
        return None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.LIRA_JWT_AUDIENCE,
            issuer=settings.LIRA_JWT_ISSUER,
            options={"verify_exp": True, "require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.info("rejected bearer token: %s", exc)
        return None


def _actor_from_claims(claims: Dict[str, Any]) -> Optional[Actor]:
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
    user = UserAccount.objects.filter(id=user_id).only("id", "role").first()
    if not user:
        return None
    role = parse_role(user.role)
    if role is None:
        return None
    return Actor(user_id=user.id, role=role)
