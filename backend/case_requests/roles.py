from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Dict, FrozenSet, Optional

from django.db import models
from django.http import HttpRequest, JsonResponse


class Role(models.TextChoices):
    USER = "USER", "User"
    INVESTIGATOR = "INVESTIGATOR", "Investigator"
    ENTERPRISE = "ENTERPRISE", "Enterprise"
    ADMIN = "ADMIN", "Admin"
    SUPER_ADMIN = "SUPER_ADMIN", "Super Admin"


class Capability(models.TextChoices):
    SCENARIO_READ = "scenario.read", "Read scenarios"
    REQUEST_CREATE = "investigation.request.create", "Create case requests"
    REQUEST_READ = "investigation.request.read", "Read case requests"
    MATCH_READ = "investigation.match.read", "Read matches"
    PROFILE_READ = "investigator.profile.read", "Read investigator profiles"
    INVESTIGATOR_APPROVE = "investigator.approve", "Approve investigators"
    CONVERSATION_READ = "conversation.read", "Read conversations"
    CONVERSATION_WRITE = "conversation.write", "Write conversations"
    ADMIN_DASHBOARD = "admin.dashboard", "Admin dashboard"
    SYSTEM_MANAGE = "system.manage", "System management"


ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.USER: frozenset(
        {
            Capability.SCENARIO_READ,
            Capability.REQUEST_CREATE,
            Capability.REQUEST_READ,
            Capability.CONVERSATION_READ,
            Capability.CONVERSATION_WRITE,
        }
    ),
    Role.INVESTIGATOR: frozenset(
        {
            Capability.SCENARIO_READ,
            Capability.PROFILE_READ,
            Capability.REQUEST_READ,
            Capability.MATCH_READ,
            Capability.CONVERSATION_READ,
            Capability.CONVERSATION_WRITE,
        }
    ),
    Role.ENTERPRISE: frozenset(
        {
            Capability.SCENARIO_READ,
            Capability.REQUEST_CREATE,
            Capability.REQUEST_READ,
            Capability.MATCH_READ,
            Capability.CONVERSATION_READ,
            Capability.CONVERSATION_WRITE,
        }
    ),
    Role.ADMIN: frozenset(
        {
            Capability.SCENARIO_READ,
            Capability.INVESTIGATOR_APPROVE,
            Capability.PROFILE_READ,
            Capability.REQUEST_READ,
            Capability.MATCH_READ,
            Capability.CONVERSATION_READ,
            Capability.ADMIN_DASHBOARD,
        }
    ),
    Role.SUPER_ADMIN: frozenset(
        {
            Capability.SCENARIO_READ,
            Capability.INVESTIGATOR_APPROVE,
            Capability.PROFILE_READ,
            Capability.REQUEST_READ,
            Capability.MATCH_READ,
            Capability.CONVERSATION_READ,
            Capability.ADMIN_DASHBOARD,
            Capability.SYSTEM_MANAGE,
        }
    ),
}


def parse_role(value) -> Optional[Role]:
    try:
        return Role(str(value or "").strip().upper())
    except ValueError:
        return None


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def list_capabilities(role: Role) -> list[str]:
    return sorted(str(cap) for cap in ROLE_CAPABILITIES.get(role, frozenset()))


@dataclass(frozen=True)
class Actor:
    """An already verified caller: who it is and what role it acts under."""

    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_investigator(self) -> bool:
        return self.role == Role.INVESTIGATOR

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)

    def is_owner(self, case) -> bool:
        return case.user_id == self.user_id

    def is_assigned_provider(self, case) -> bool:
        provider_user_id = getattr(case.investigator, "user_id", None)
        return provider_user_id is not None and provider_user_id == self.user_id

    def is_participant(self, case) -> bool:
        return self.is_owner(case) or self.is_assigned_provider(case)

    def can_access(self, case) -> bool:
        return self.is_admin or self.is_participant(case)


def require_capability(capability: Optional[Capability] = None):
    def decorator(view):
        @wraps(view)
        def _wrapped(request: HttpRequest, *args, **kwargs):
            actor = getattr(request, "actor", None)
            if actor is None:
                code = getattr(request, "auth_error", "") or "AUTH_REQUIRED"
                return JsonResponse({"error": code}, status=401)
            if capability is not None and not actor.can(capability):
                return JsonResponse({"error": "FORBIDDEN", "message": f"Missing capability: {capability}"}, status=403)
            return view(request, *args, **kwargs)

        return _wrapped

    return decorator
