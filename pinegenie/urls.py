from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from core.views import healthz, readyz

urlpatterns = [
    path("admin/", admin.site.urls),

    # Gateway-facing endpoints (form posts from PayU, no session)
    path("payments/", include(("payments.urls", "payments"), namespace="payments")),

    # Versioned API (DRF-only), per-app mounts
    path("apis/v1/schema/", SpectacularAPIView.as_view(), name="v1-schema"),
    path("apis/v1/docs/", SpectacularSwaggerView.as_view(url_name="v1-schema"), name="v1-docs"),
    path("apis/v1/payments/", include("payments.urls_v1")),

    # Health
    path("healthz", healthz, name="healthz"),
    path("readyz", readyz, name="readyz"),
]
