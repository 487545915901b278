from django.urls import path

from .views import PayUReturnView, PayUWebhookView

urlpatterns = [
    path("payu/webhook/", PayUWebhookView.as_view(), name="payu-webhook"),
    path("payu/return/", PayUReturnView.as_view(), name="payu-return"),
]
