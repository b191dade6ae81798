import json
import time

import jwt
from django.test import TestCase, override_settings

from case_requests.models import CaseRequest, InvestigatorProfile, RequestStatus, Scenario, UserAccount
from case_requests.roles import Actor, Role
from case_requests.store import create_request

TEST_JWT_SECRET = "test-secret"
TEST_JWT_ISSUER = "lira"
TEST_JWT_AUDIENCE = "lira-api"


def issue_token(user_id, *, secret=TEST_JWT_SECRET, issuer=TEST_JWT_ISSUER, audience=TEST_JWT_AUDIENCE, ttl=3600):
    now = int(time.time())
    payload = {"iss": issuer, "aud": audience, "iat": now, "exp": now + ttl, "sub": str(user_id)}
    return jwt.encode(payload, secret, algorithm="HS256")


def actor_for(user: UserAccount) -> Actor:
    return Actor(user_id=user.id, role=Role(user.role))


@override_settings(
    LIRA_JWT_SECRET=TEST_JWT_SECRET,
    LIRA_JWT_ISSUER=TEST_JWT_ISSUER,
    LIRA_JWT_AUDIENCE=TEST_JWT_AUDIENCE,
)
class CaseRequestTestCase(TestCase):
    def setUp(self):
        self.customer = UserAccount.objects.create(name="Dana Customer", email="dana@example.com", role=Role.USER)
        self.investigator_user = UserAccount.objects.create(
            name="Ivan Investigator", email="ivan@example.com", role=Role.INVESTIGATOR
        )
        self.profile = InvestigatorProfile.objects.create(
            user=self.investigator_user,
            status="APPROVED",
            service_area="Seoul",
            specialties=["surveillance"],
        )
        self.admin = UserAccount.objects.create(name="Ada Admin", email="ada@example.com", role=Role.ADMIN)
        self.stranger = UserAccount.objects.create(name="Sam Stranger", email="sam@example.com", role=Role.USER)
        self.scenario = Scenario.objects.create(title="Infidelity", category="family", difficulty="medium")

    def _headers(self, user):
        return {"HTTP_AUTHORIZATION": f"Bearer {issue_token(user.id)}"}

    def _get(self, path, user, params=None):
        return self.client.get(path, data=params or {}, **self._headers(user))

    def _post(self, path, user, payload):
        return self.client.post(path, data=json.dumps(payload), content_type="application/json", **self._headers(user))

    def _patch(self, path, user, payload):
        return self.client.patch(path, data=json.dumps(payload), content_type="application/json", **self._headers(user))

    def _delete(self, path, user):
        return self.client.delete(path, **self._headers(user))

    def _create_case(self, owner=None, **overrides) -> CaseRequest:
        body = {
            "title": "Spouse surveillance",
            "details": "Need evidence of weekday movements.",
            "investigator_id": self.profile.id,
        }
        body.update(overrides)
        return create_request(actor_for(owner or self.customer), body)

    def _force_status(self, case: CaseRequest, status: str) -> CaseRequest:
        CaseRequest.objects.filter(pk=case.pk).update(status=status)
        case.refresh_from_db()
        return case

    def _completed_case(self) -> CaseRequest:
        case = self._create_case()
        return self._force_status(case, RequestStatus.COMPLETED)
