from rest_framework import serializers

from .enums import TxnState


class CheckoutInitV1Serializer(serializers.Serializer):
    payment_record_id = serializers.IntegerField(min_value=1)
    first_name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)


class CheckoutInitV1ResponseSerializer(serializers.Serializer):
    ok = serializers.BooleanField()
    txnid = serializers.CharField()
    action = serializers.URLField()
    fields = serializers.DictField(child=serializers.CharField(allow_blank=True))


class TransactionStatusV1Serializer(serializers.Serializer):
    txnid = serializers.CharField()
    state = serializers.ChoiceField(choices=TxnState.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    gateway_txn_id = serializers.CharField(allow_blank=True)
    error_message = serializers.CharField(allow_blank=True)
    closed_at = serializers.DateTimeField(allow_null=True)
    updated_at = serializers.DateTimeField()
