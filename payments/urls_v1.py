from django.urls import path

from .views_v1 import CheckoutInitV1, TransactionStatusV1

urlpatterns = [
    path("checkout/", CheckoutInitV1.as_view(), name="v1-payments-checkout"),
    path("transactions/<str:txnid>/", TransactionStatusV1.as_view(), name="v1-payments-transaction"),
]
