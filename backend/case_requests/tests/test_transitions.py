from unittest.mock import patch

from django.db import DatabaseError

from case_requests.models import AuditLog, CaseRequest, Notification, RequestStatus, TimelineEntry
from case_requests.transitions import (
    FORBIDDEN,
    GRANTED,
    NOT_ALLOWED,
    STATUS_TERMINAL,
    STATUS_TRANSITIONS,
    is_allowed_edge,
    permission_verdict,
)

from .support import CaseRequestTestCase, actor_for


class TransitionTableTests(CaseRequestTestCase):
    def test_edges_match_lifecycle(self):
        expected = {
            "MATCHING": {"ACCEPTED", "DECLINED", "CANCELLED"},
            "ACCEPTED": {"IN_PROGRESS", "CANCELLED"},
            "IN_PROGRESS": {"REPORTING", "CANCELLED"},
            "REPORTING": {"IN_PROGRESS", "COMPLETED", "CANCELLED"},
            "COMPLETED": set(),
            "DECLINED": set(),
            "CANCELLED": set(),
        }
        self.assertEqual({str(k): {str(v) for v in vs} for k, vs in STATUS_TRANSITIONS.items()}, expected)
        for status in STATUS_TERMINAL:
            self.assertEqual(STATUS_TRANSITIONS[status], frozenset())

    def test_non_edges_are_rejected(self):
        self.assertFalse(is_allowed_edge("MATCHING", "COMPLETED"))
        self.assertFalse(is_allowed_edge("ACCEPTED", "DECLINED"))
        self.assertFalse(is_allowed_edge("COMPLETED", "CANCELLED"))
        self.assertTrue(is_allowed_edge("REPORTING", "IN_PROGRESS"))

    def test_permission_verdicts(self):
        case = self._create_case()
        owner = actor_for(self.customer)
        provider = actor_for(self.investigator_user)
        admin = actor_for(self.admin)
        stranger = actor_for(self.stranger)

        self.assertEqual(permission_verdict(owner, case, "ACCEPTED", "CANCELLED"), GRANTED)
        self.assertEqual(permission_verdict(owner, case, "COMPLETED", "CANCELLED"), FORBIDDEN)
        self.assertEqual(permission_verdict(owner, case, "MATCHING", "ACCEPTED"), FORBIDDEN)
        self.assertEqual(permission_verdict(provider, case, "MATCHING", "DECLINED"), GRANTED)
        self.assertEqual(permission_verdict(provider, case, "ACCEPTED", "DECLINED"), NOT_ALLOWED)
        self.assertEqual(permission_verdict(provider, case, "ACCEPTED", "CANCELLED"), FORBIDDEN)
        self.assertEqual(permission_verdict(provider, case, "REPORTING", "MATCHING"), FORBIDDEN)
        self.assertEqual(permission_verdict(admin, case, "COMPLETED", "MATCHING"), GRANTED)
        self.assertEqual(permission_verdict(stranger, case, "MATCHING", "CANCELLED"), FORBIDDEN)


class TransitionApiTests(CaseRequestTestCase):
    def setUp(self):
        super().setUp()
        self.case = self._create_case()
        self.url = f"/api/case-requests/{self.case.id}"

    def test_provider_accepts(self):
        response = self._patch(self.url, self.investigator_user, {"status": "ACCEPTED"})
        self.assertEqual(response.status_code, 200, response.content.decode())
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.ACCEPTED)
        self.assertIsNotNone(self.case.accepted_at)
        self.assertEqual(
            TimelineEntry.objects.filter(request=self.case, entry_type="INVESTIGATOR_ACCEPTED").count(), 1
        )
        audit = AuditLog.objects.get(action="status.change", target_id=str(self.case.id))
        self.assertEqual(audit.metadata_json, {"from": "MATCHING", "to": "ACCEPTED"})
        self.assertEqual(audit.actor_id, self.investigator_user.id)
        owner_notes = Notification.objects.filter(user=self.customer, notification_type="INVESTIGATION_STATUS")
        self.assertEqual(owner_notes.count(), 1)
        self.assertFalse(
            Notification.objects.filter(user=self.investigator_user, notification_type="INVESTIGATION_STATUS").exists()
        )

    def test_provider_cannot_decline_after_accepting(self):
        self._patch(self.url, self.investigator_user, {"status": "ACCEPTED"})
        response = self._patch(self.url, self.investigator_user, {"status": "DECLINED", "decline_reason": "Busy"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "TRANSITION_NOT_ALLOWED")
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.ACCEPTED)
        self.assertIsNone(self.case.decline_reason)

    def test_owner_cannot_complete_directly(self):
        response = self._patch(self.url, self.customer, {"status": "COMPLETED"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "STATUS_CHANGE_FORBIDDEN")
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.MATCHING)
        self.assertFalse(AuditLog.objects.filter(action="status.change").exists())

    def test_same_status_is_conflict(self):
        response = self._patch(self.url, self.admin, {"status": "MATCHING"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "STATUS_UNCHANGED")

    def test_unknown_status_is_rejected(self):
        response = self._patch(self.url, self.admin, {"status": "DONE"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "INVALID_STATUS")

    def test_decline_requires_reason(self):
        response = self._patch(self.url, self.investigator_user, {"status": "DECLINED", "decline_reason": "   "})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "DECLINE_REASON_REQUIRED")
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.MATCHING)

    def test_provider_declines_with_reason(self):
        response = self._patch(
            self.url, self.investigator_user, {"status": "DECLINED", "decline_reason": "  Outside my area  "}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["decline_reason"], "Outside my area")
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.DECLINED)
        self.assertIsNotNone(self.case.declined_at)
        entry = TimelineEntry.objects.get(request=self.case, entry_type="INVESTIGATOR_DECLINED")
        self.assertEqual(entry.note, "Outside my area")
        self.assertEqual(entry.payload_json, {"reason": "Outside my area"})

    def test_owner_cancels_in_flight_request(self):
        self._force_status(self.case, RequestStatus.IN_PROGRESS)
        response = self._patch(self.url, self.customer, {"status": "CANCELLED", "status_note": "Resolved privately"})
        self.assertEqual(response.status_code, 200)
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.CANCELLED)
        self.assertIsNotNone(self.case.cancelled_at)
        entry = TimelineEntry.objects.get(request=self.case, entry_type="CUSTOMER_CANCELLED")
        self.assertEqual(entry.payload_json, {"from": "IN_PROGRESS"})
        self.assertEqual(entry.note, "Resolved privately")
        self.assertEqual(
            Notification.objects.filter(user=self.investigator_user, notification_type="INVESTIGATION_STATUS").count(),
            1,
        )

    def test_owner_cannot_cancel_terminal_request(self):
        self._force_status(self.case, RequestStatus.COMPLETED)
        response = self._patch(self.url, self.customer, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "STATUS_CHANGE_FORBIDDEN")

    def test_provider_cannot_cancel(self):
        response = self._patch(self.url, self.investigator_user, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "STATUS_CHANGE_FORBIDDEN")

    def test_provider_cannot_skip_ahead(self):
        response = self._patch(self.url, self.investigator_user, {"status": "IN_PROGRESS"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "TRANSITION_NOT_ALLOWED")

    def test_admin_still_follows_edges(self):
        response = self._patch(self.url, self.admin, {"status": "COMPLETED"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "TRANSITION_NOT_ALLOWED")

    def test_admin_cancel_notifies_both_participants(self):
        response = self._patch(self.url, self.admin, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(TimelineEntry.objects.filter(request=self.case, entry_type="STATUS_ADVANCED").exists())
        recipients = set(
            Notification.objects.filter(notification_type="INVESTIGATION_STATUS").values_list("user_id", flat=True)
        )
        self.assertEqual(recipients, {self.customer.id, self.investigator_user.id})

    def test_stranger_is_forbidden(self):
        response = self._patch(self.url, self.stranger, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "FORBIDDEN")

    def test_full_forward_path(self):
        for payload in (
            {"status": "ACCEPTED"},
            {"status": "IN_PROGRESS", "status_note": "Started fieldwork"},
            {"status": "REPORTING", "final_report_summary": "Subject seen twice"},
            {"status": "IN_PROGRESS"},
            {"status": "REPORTING"},
            {"status": "COMPLETED", "completion_note": "Delivered"},
        ):
            response = self._patch(self.url, self.investigator_user, payload)
            self.assertEqual(response.status_code, 200, response.content.decode())

        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.COMPLETED)
        self.assertIsNotNone(self.case.completed_at)
        types = list(
            TimelineEntry.objects.filter(request=self.case).order_by("created_at", "id").values_list("entry_type", flat=True)
        )
        self.assertEqual(
            types,
            [
                "REQUEST_CREATED",
                "INVESTIGATOR_ASSIGNED",
                "INVESTIGATOR_ACCEPTED",
                "STATUS_ADVANCED",
                "FINAL_REPORT",
                "STATUS_ADVANCED",
                "FINAL_REPORT",
                "STATUS_ADVANCED",
            ],
        )
        reports = TimelineEntry.objects.filter(request=self.case, entry_type="FINAL_REPORT").order_by("id")
        self.assertEqual(reports[0].payload_json, {"summary": "Subject seen twice"})
        self.assertIsNone(reports[1].payload_json)
        completed = TimelineEntry.objects.filter(request=self.case, entry_type="STATUS_ADVANCED").order_by("-id").first()
        self.assertEqual(completed.payload_json["completion_note"], "Delivered")
        self.assertEqual(completed.note, "Delivered")
        self.assertEqual(AuditLog.objects.filter(action="status.change").count(), 6)

    def test_owner_who_is_also_provider_gets_best_verdict(self):
        case = self._create_case(owner=self.investigator_user)
        response = self._patch(f"/api/case-requests/{case.id}", self.investigator_user, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 200)
        case.refresh_from_db()
        self.assertEqual(case.status, RequestStatus.CANCELLED)

    def test_unrecognized_status_only_repairable_by_admin(self):
        self._force_status(self.case, "LEGACY")
        response = self._patch(self.url, self.customer, {"status": "CANCELLED"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "STATUS_CHANGE_FORBIDDEN")

        response = self._patch(self.url, self.admin, {"status": "ACCEPTED"})
        self.assertEqual(response.status_code, 200)
        self.case.refresh_from_db()
        self.assertEqual(self.case.status, RequestStatus.ACCEPTED)
        audit = AuditLog.objects.get(action="status.change")
        self.assertEqual(audit.metadata_json, {"from": "LEGACY", "to": "ACCEPTED"})

    def test_notification_failure_does_not_block_transition(self):
        before = Notification.objects.count()
        with patch(
            "case_requests.notifications.Notification.objects.create", side_effect=DatabaseError("inbox down")
        ), self.assertLogs("case_requests.notifications", level="ERROR"):
            response = self._patch(self.url, self.investigator_user, {"status": "ACCEPTED"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(CaseRequest.objects.get(pk=self.case.pk).status, RequestStatus.ACCEPTED)
        self.assertEqual(Notification.objects.count(), before)


class TransitionSweepTests(CaseRequestTestCase):
    def _timeline_count(self, case):
        return TimelineEntry.objects.filter(request=case).count()

    def test_every_status_pair_follows_the_table(self):
        for current in RequestStatus.values:
            for target in RequestStatus.values:
                with self.subTest(current=current, target=target):
                    case = self._force_status(self._create_case(), current)
                    before = self._timeline_count(case)
                    response = self._patch(
                        f"/api/case-requests/{case.id}",
                        self.admin,
                        {"status": target, "decline_reason": "Conflict of interest"},
                    )
                    case.refresh_from_db()
                    if current == target:
                        self.assertEqual(response.status_code, 409)
                        self.assertEqual(response.json()["error"], "STATUS_UNCHANGED")
                    elif is_allowed_edge(current, target):
                        self.assertEqual(response.status_code, 200, response.content.decode())
                        self.assertEqual(case.status, target)
                        self.assertEqual(self._timeline_count(case), before + 1)
                        continue
                    else:
                        self.assertEqual(response.status_code, 409)
                        self.assertEqual(response.json()["error"], "TRANSITION_NOT_ALLOWED")
                    self.assertEqual(case.status, current)
                    self.assertEqual(self._timeline_count(case), before)

    def test_decline_without_reason_always_fails(self):
        actors = {
            "owner": self.customer,
            "provider": self.investigator_user,
            "admin": self.admin,
            "stranger": self.stranger,
        }
        for current in RequestStatus.values:
            for label, user in actors.items():
                with self.subTest(current=current, actor=label):
                    case = self._force_status(self._create_case(), current)
                    before = self._timeline_count(case)
                    response = self._patch(f"/api/case-requests/{case.id}", user, {"status": "DECLINED"})
                    self.assertIn(response.status_code, (400, 403, 409))
                    if current == RequestStatus.MATCHING and label in ("provider", "admin"):
                        self.assertEqual(response.json()["error"], "DECLINE_REASON_REQUIRED")
                    case.refresh_from_db()
                    self.assertEqual(case.status, current)
                    self.assertIsNone(case.decline_reason)
                    self.assertEqual(self._timeline_count(case), before)
