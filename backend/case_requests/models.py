from django.db import models
from django.db.models import Q

from .roles import Role


class RequestStatus(models.TextChoices):
    MATCHING = "MATCHING", "Matching"
    ACCEPTED = "ACCEPTED", "Accepted"
    IN_PROGRESS = "IN_PROGRESS", "In Progress"
    REPORTING = "REPORTING", "Reporting"
    COMPLETED = "COMPLETED", "Completed"
    DECLINED = "DECLINED", "Declined"
    CANCELLED = "CANCELLED", "Cancelled"


class TimelineEventType(models.TextChoices):
    REQUEST_CREATED = "REQUEST_CREATED", "Request Created"
    INVESTIGATOR_ASSIGNED = "INVESTIGATOR_ASSIGNED", "Investigator Assigned"
    INVESTIGATOR_ACCEPTED = "INVESTIGATOR_ACCEPTED", "Investigator Accepted"
    INVESTIGATOR_DECLINED = "INVESTIGATOR_DECLINED", "Investigator Declined"
    STATUS_ADVANCED = "STATUS_ADVANCED", "Status Advanced"
    PROGRESS_NOTE = "PROGRESS_NOTE", "Progress Note"
    INTERIM_REPORT = "INTERIM_REPORT", "Interim Report"
    FINAL_REPORT = "FINAL_REPORT", "Final Report"
    ATTACHMENT_SHARED = "ATTACHMENT_SHARED", "Attachment Shared"
    CUSTOMER_CANCELLED = "CUSTOMER_CANCELLED", "Customer Cancelled"
    SYSTEM = "SYSTEM", "System"


class UserAccount(models.Model):
    name = models.CharField(max_length=200)
    email = models.CharField(max_length=240, unique=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.USER)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


class InvestigatorProfile(models.Model):
    STATUS_CHOICES = [
        ("PENDING", "Pending"),
        ("APPROVED", "Approved"),
        ("REJECTED", "Rejected"),
    ]

    user = models.OneToOneField(
        UserAccount, null=True, blank=True, on_delete=models.SET_NULL, related_name="investigator_profile"
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="PENDING")
    contact_phone = models.CharField(max_length=40, blank=True, default="")
    service_area = models.CharField(max_length=200, blank=True, default="")
    specialties = models.JSONField(default=list, blank=True)
    rating_average = models.FloatField(null=True, blank=True)
    rating_count = models.PositiveIntegerField(default=0)
    rating_sum = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [models.Index(fields=["status"], name="investigator_status_idx")]

    def __str__(self) -> str:
        return f"investigator:{self.id} ({self.status})"

    @property
    def is_approved(self) -> bool:
        return self.status == "APPROVED"


class Scenario(models.Model):
    title = models.CharField(max_length=200)
    category = models.CharField(max_length=120, blank=True, default="")
    difficulty = models.CharField(max_length=40, blank=True, default="")

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return self.title


class CaseRequest(models.Model):
    title = models.CharField(max_length=200)
    details = models.TextField()
    desired_outcome = models.TextField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=RequestStatus.choices, default=RequestStatus.MATCHING)
    user = models.ForeignKey(UserAccount, on_delete=models.CASCADE, related_name="case_requests")
    investigator = models.ForeignKey(
        InvestigatorProfile, on_delete=models.PROTECT, related_name="case_requests"
    )
    scenario = models.ForeignKey(
        Scenario, null=True, blank=True, on_delete=models.SET_NULL, related_name="case_requests"
    )
    budget_min = models.PositiveIntegerField(null=True, blank=True)
    budget_max = models.PositiveIntegerField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.TextField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "status"], name="case_request_user_status_idx"),
            models.Index(fields=["investigator", "status"], name="case_request_inv_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.title} ({self.status})"


class TimelineEntry(models.Model):
    request = models.ForeignKey(CaseRequest, on_delete=models.CASCADE, related_name="timeline")
    entry_type = models.CharField(max_length=40, choices=TimelineEventType.choices)
    title = models.CharField(max_length=200, null=True, blank=True)
    note = models.TextField(null=True, blank=True)
    payload_json = models.JSONField(null=True, blank=True)
    author = models.ForeignKey(
        UserAccount, null=True, blank=True, on_delete=models.SET_NULL, related_name="timeline_entries"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [models.Index(fields=["request", "created_at"], name="timeline_request_created_idx")]

    def __str__(self) -> str:
        return f"{self.entry_type}:{self.request_id}"


class ChatRoom(models.Model):
    request = models.OneToOneField(CaseRequest, on_delete=models.CASCADE, related_name="chat_room")
    customer = models.ForeignKey(UserAccount, on_delete=models.CASCADE, related_name="customer_chat_rooms")
    investigator_user = models.ForeignKey(
        UserAccount, on_delete=models.CASCADE, related_name="investigator_chat_rooms"
    )
    last_message_preview = models.CharField(max_length=280, null=True, blank=True)
    last_message_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]

    def __str__(self) -> str:
        return f"chat:{self.request_id}"


class ChatMessage(models.Model):
    room = models.ForeignKey(ChatRoom, on_delete=models.CASCADE, related_name="messages")
    sender = models.ForeignKey(UserAccount, on_delete=models.CASCADE, related_name="chat_messages")
    content = models.TextField()
    attachments = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [models.Index(fields=["room", "created_at"], name="chat_message_room_created_idx")]


class Review(models.Model):
    request = models.OneToOneField(CaseRequest, on_delete=models.CASCADE, related_name="review")
    investigator = models.ForeignKey(InvestigatorProfile, on_delete=models.CASCADE, related_name="reviews")
    customer = models.ForeignKey(UserAccount, on_delete=models.CASCADE, related_name="reviews")
    rating = models.PositiveSmallIntegerField()
    comment = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(rating__gte=1) & Q(rating__lte=5),
                name="review_rating_range",
            ),
        ]

    def __str__(self) -> str:
        return f"review:{self.request_id} ({self.rating})"


class Notification(models.Model):
    TYPE_CHOICES = [
        ("INVESTIGATION_ASSIGNED", "Investigation Assigned"),
        ("INVESTIGATION_STATUS", "Investigation Status"),
        ("CHAT_MESSAGE", "Chat Message"),
        ("SYSTEM", "System"),
    ]

    user = models.ForeignKey(UserAccount, on_delete=models.CASCADE, related_name="notifications")
    notification_type = models.CharField(max_length=40, choices=TYPE_CHOICES)
    title = models.CharField(max_length=200)
    message = models.TextField(null=True, blank=True)
    action_url = models.CharField(max_length=300, null=True, blank=True)
    metadata_json = models.JSONField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["user", "read_at"], name="notification_user_read_idx")]

    def __str__(self) -> str:
        return f"{self.notification_type}:{self.user_id}"


class AuditLog(models.Model):
    actor = models.ForeignKey(
        UserAccount, null=True, blank=True, on_delete=models.SET_NULL, related_name="audit_logs"
    )
    action = models.CharField(max_length=80)
    target_type = models.CharField(max_length=80)
    target_id = models.CharField(max_length=80)
    metadata_json = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["target_type", "target_id"], name="audit_log_target_idx")]

    def __str__(self) -> str:
        return f"{self.action} {self.target_type}:{self.target_id}"
