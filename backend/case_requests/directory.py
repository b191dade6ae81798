from django.db.models import F
from rest_framework import viewsets
from rest_framework.permissions import AllowAny

from .models import InvestigatorProfile
from .serializers import InvestigatorDirectorySerializer


class InvestigatorDirectoryViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = InvestigatorDirectorySerializer
    permission_classes = [AllowAny]
    authentication_classes = []

    def get_queryset(self):
        return (
            InvestigatorProfile.objects.filter(status="APPROVED")
            .select_related("user")
            .order_by(F("rating_average").desc(nulls_last=True), "-rating_count", "id")
        )
