from django.contrib import admin

from .models import (
    AuditLog,
    CaseRequest,
    ChatMessage,
    ChatRoom,
    InvestigatorProfile,
    Notification,
    Review,
    Scenario,
    TimelineEntry,
    UserAccount,
)


class TimelineEntryInline(admin.TabularInline):
    model = TimelineEntry
    extra = 0
    fields = ("entry_type", "title", "note", "author", "created_at")
    readonly_fields = ("entry_type", "title", "note", "author", "created_at")
    can_delete = False


@admin.register(UserAccount)
class UserAccountAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("name", "email")


@admin.register(InvestigatorProfile)
class InvestigatorProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "status", "service_area", "rating_average", "rating_count")
    list_filter = ("status",)
    search_fields = ("user__name", "user__email", "service_area")
    readonly_fields = ("rating_average", "rating_count", "rating_sum")


@admin.register(Scenario)
class ScenarioAdmin(admin.ModelAdmin):
    list_display = ("title", "category", "difficulty")
    search_fields = ("title", "category")


@admin.register(CaseRequest)
class CaseRequestAdmin(admin.ModelAdmin):
    list_display = ("title", "status", "user", "investigator", "created_at", "updated_at")
    list_filter = ("status",)
    search_fields = ("title", "details")
    ordering = ("-created_at",)
    # Status only moves through the transition API so timeline and audit stay complete.
    readonly_fields = (
        "status",
        "investigator",
        "accepted_at",
        "declined_at",
        "decline_reason",
        "cancelled_at",
        "completed_at",
    )
    inlines = [TimelineEntryInline]


@admin.register(ChatRoom)
class ChatRoomAdmin(admin.ModelAdmin):
    list_display = ("request", "customer", "investigator_user", "last_message_at")


@admin.register(ChatMessage)
class ChatMessageAdmin(admin.ModelAdmin):
    list_display = ("room", "sender", "created_at")


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("request", "investigator", "customer", "rating", "created_at")
    list_filter = ("rating",)
    readonly_fields = ("request", "investigator", "customer", "rating")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "notification_type", "title", "read_at", "created_at")
    list_filter = ("notification_type",)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "target_type", "target_id", "actor", "created_at")
    list_filter = ("action", "target_type")
    search_fields = ("target_id",)
