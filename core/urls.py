from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, CompanyViewSet, healthz, readyz

router = DefaultRouter()
router.register(r"companies", CompanyViewSet, basename="company")
router.register(r"audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
