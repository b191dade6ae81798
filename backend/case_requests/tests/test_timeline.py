from django.test import SimpleTestCase

from case_requests.errors import ValidationFailed
from case_requests.models import CaseRequest, RequestStatus, TimelineEntry, TimelineEventType
from case_requests.timeline import TIMELINE_PAYLOAD_SCHEMAS, append_entry, validate_payload

from .support import CaseRequestTestCase


class TimelinePayloadSchemaTests(SimpleTestCase):
    def test_every_entry_type_has_a_schema(self):
        self.assertEqual(set(TIMELINE_PAYLOAD_SCHEMAS), set(TimelineEventType.values))

    def test_status_enums_follow_request_statuses(self):
        moved = TIMELINE_PAYLOAD_SCHEMAS[TimelineEventType.STATUS_ADVANCED]["properties"]
        cancelled = TIMELINE_PAYLOAD_SCHEMAS[TimelineEventType.CUSTOMER_CANCELLED]["properties"]
        for enum in (moved["from"]["enum"], moved["to"]["enum"], cancelled["from"]["enum"]):
            self.assertEqual(enum, RequestStatus.values)
        self.assertNotEqual(validate_payload("STATUS_ADVANCED", {"from": "MATCHING", "to": "ARCHIVED"}), [])

    def test_schema_errors_are_reported(self):
        self.assertEqual(validate_payload("PROGRESS_NOTE", None), [])
        self.assertEqual(validate_payload("PROGRESS_NOTE", {"details": "Checked records"}), [])
        errors = validate_payload("PROGRESS_NOTE", {"details": 5, "extra": True})
        self.assertEqual(len(errors), 2)
        errors = validate_payload("ATTACHMENT_SHARED", {"attachments": []})
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith("attachments"))
        self.assertEqual(validate_payload("INVESTIGATOR_DECLINED", {"reason": "Busy"}), [])
        self.assertTrue(validate_payload("INVESTIGATOR_DECLINED", {}))


class TimelineApiTests(CaseRequestTestCase):
    def setUp(self):
        super().setUp()
        self.case = self._create_case()
        self.url = f"/api/case-requests/{self.case.id}/timeline"

    def test_read_in_order(self):
        response = self._get(self.url, self.investigator_user)
        self.assertEqual(response.status_code, 200)
        entries = response.json()["timeline"]
        self.assertEqual([entry["type"] for entry in entries], ["REQUEST_CREATED", "INVESTIGATOR_ASSIGNED"])
        self.assertEqual(entries[0]["author"]["id"], self.customer.id)

    def test_provider_appends_progress_note(self):
        before = CaseRequest.objects.get(pk=self.case.pk).updated_at
        response = self._post(
            self.url,
            self.investigator_user,
            {"type": "progress_note", "title": "Day one", "note": "Followed the subject", "payload": {"details": "3h"}},
        )
        self.assertEqual(response.status_code, 201, response.content.decode())
        entry = response.json()["entry"]
        self.assertEqual(entry["type"], "PROGRESS_NOTE")
        self.assertEqual(entry["payload"], {"details": "3h"})
        self.assertEqual(entry["author"]["id"], self.investigator_user.id)
        self.assertGreaterEqual(CaseRequest.objects.get(pk=self.case.pk).updated_at, before)
        self.assertEqual(TimelineEntry.objects.filter(request=self.case).count(), 3)

    def test_rejects_system_types(self):
        for entry_type in ("REQUEST_CREATED", "CUSTOMER_CANCELLED", "SYSTEM", "BOGUS", None):
            with self.subTest(entry_type=entry_type):
                response = self._post(self.url, self.customer, {"type": entry_type, "note": "hi"})
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["error"], "INVALID_TIMELINE_TYPE")

    def test_requires_content(self):
        response = self._post(self.url, self.customer, {"type": "PROGRESS_NOTE", "title": "  ", "note": ""})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "EMPTY_TIMELINE_ENTRY")

    def test_invalid_payload_lists_errors(self):
        response = self._post(
            self.url,
            self.customer,
            {"type": "ATTACHMENT_SHARED", "payload": {"attachments": [{"name": "photo.jpg"}]}},
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error"], "INVALID_TIMELINE_PAYLOAD")
        self.assertTrue(body["errors"])
        self.assertEqual(TimelineEntry.objects.filter(request=self.case).count(), 2)

    def test_stranger_cannot_read_or_write(self):
        self.assertEqual(self._get(self.url, self.stranger).status_code, 403)
        response = self._post(self.url, self.stranger, {"type": "PROGRESS_NOTE", "note": "hello"})
        self.assertEqual(response.status_code, 403)

    def test_admin_can_append(self):
        response = self._post(self.url, self.admin, {"type": "INTERIM_REPORT", "payload": {"summary": "Halfway"}})
        self.assertEqual(response.status_code, 201)

    def test_append_entry_validates_payload(self):
        with self.assertRaises(ValidationFailed) as ctx:
            append_entry(self.case, entry_type="REQUEST_CREATED", author_id=None, payload={"name": "x"})
        self.assertEqual(ctx.exception.code, "INVALID_TIMELINE_PAYLOAD")
