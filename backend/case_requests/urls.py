from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import api
from .directory import InvestigatorDirectoryViewSet

router = DefaultRouter()
router.register(r"investigators", InvestigatorDirectoryViewSet, basename="investigator")

urlpatterns = [
    path("case-requests", api.case_requests_collection, name="case-requests"),
    path("case-requests/<int:request_id>", api.case_request_detail, name="case-request-detail"),
    path("case-requests/<int:request_id>/timeline", api.case_request_timeline, name="case-request-timeline"),
    path("case-requests/<int:request_id>/chat", api.case_request_chat, name="case-request-chat"),
    path("case-requests/<int:request_id>/review", api.case_request_review, name="case-request-review"),
    path("notifications", api.notifications_collection, name="notifications"),
    path("", include(router.urls)),
]
