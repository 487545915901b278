from django.urls import include, path

from core.views import healthz, readyz

# Mirrors pinegenie.urls without admin/docs so tests do not pull in extra apps.
urlpatterns = [
    path("payments/", include(("payments.urls", "payments"), namespace="payments")),
    path("apis/v1/payments/", include("payments.urls_v1")),
    path("healthz", healthz, name="healthz"),
    path("readyz", readyz, name="readyz"),
]
