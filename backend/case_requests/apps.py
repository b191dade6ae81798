from django.apps import AppConfig


class CaseRequestsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "case_requests"
    label = "case_requests"
    verbose_name = "Case requests"
