from django.core.exceptions import ImproperlyConfigured, ValidationError as DjangoValidationError
from django.shortcuts import get_object_or_404
from django.urls import reverse
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from subscriptions.models import PaymentRecord

from .builder import PaymentIntent, RequestBuilder
from .config import GatewayConfig
from .models import Transaction
from .serializers_v1 import (
    CheckoutInitV1ResponseSerializer,
    CheckoutInitV1Serializer,
    TransactionStatusV1Serializer,
)


class CheckoutInitV1(APIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = CheckoutInitV1Serializer

    @extend_schema(
        request=CheckoutInitV1Serializer,
        responses=CheckoutInitV1ResponseSerializer,
        summary="Create a signed PayU payment request for a payment record",
        tags=["Payments"],
    )
    def post(self, request):
        ser = self.serializer_class(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        record = get_object_or_404(
            PaymentRecord.objects.select_related("subscription__plan"),
            pk=data["payment_record_id"],
            user=request.user,
        )
        # Failed and cancelled records may be retried; each retry gets a fresh txnid.
        if record.status == PaymentRecord.Status.PAID:
            return Response(
                {"ok": False, "error": "payment_already_paid"},
                status=status.HTTP_409_CONFLICT,
            )

        try:
            config = GatewayConfig.from_settings()
        except ImproperlyConfigured:
            return Response(
                {"ok": False, "error": "gateway_not_configured"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        return_url = request.build_absolute_uri(reverse("payments:payu-return"))
        subscription = record.subscription
        intent = PaymentIntent(
            amount=record.amount,
            product_info=record.description,
            first_name=data.get("first_name") or request.user.first_name or request.user.get_username(),
            email=request.user.email,
            phone=data.get("phone", ""),
            success_url=return_url,
            failure_url=return_url,
            payment_record_id=record.pk,
            user_ref=str(request.user.pk),
            plan_code=subscription.plan.code if subscription else "",
            subscription_ref=str(subscription.pk) if subscription else "",
        )
        try:
            txn_request = RequestBuilder(config).build(intent)
        except DjangoValidationError as exc:
            return Response(
                {"ok": False, "errors": exc.message_dict},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(
            {
                "ok": True,
                "txnid": txn_request.txnid,
                "action": txn_request.action_url,
                "fields": txn_request.as_form(),
            },
            status=status.HTTP_201_CREATED,
        )


class TransactionStatusV1(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(
        responses=TransactionStatusV1Serializer,
        summary="State of one of the caller's PayU transactions",
        tags=["Payments"],
    )
    def get(self, request, txnid: str):
        txn = get_object_or_404(Transaction, txnid=txnid, user_ref=str(request.user.pk))
        return Response(TransactionStatusV1Serializer(txn).data)
