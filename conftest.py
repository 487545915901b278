import pytest

from payments.audit import CountingSideEffect, RecordingAlert
from payments.builder import PaymentIntent, RequestBuilder
from payments.config import GatewayConfig, RetryPolicy
from payments.reconciler import Reconciler
from payments.repository import TransactionRepository
from payments.verifier import ResponseVerifier


@pytest.fixture
def gateway_config():
    return GatewayConfig(merchant_key="TESTKEY", merchant_salt="test-salt")


@pytest.fixture
def repository():
    return TransactionRepository()


@pytest.fixture
def side_effect():
    return CountingSideEffect()


@pytest.fixture
def alert():
    return RecordingAlert()


@pytest.fixture
def verifier(gateway_config, repository, alert):
    return ResponseVerifier(gateway_config, repository, alert=alert)


@pytest.fixture
def reconciler(repository, side_effect, alert):
    return Reconciler(
        repository,
        side_effect=side_effect,
        retry_policy=RetryPolicy(base_delay=0),
        alert=alert,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def build_request(gateway_config, repository):
    def _build(amount="499.00", **overrides):
        fields = dict(
            amount=amount,
            product_info="Pro plan",
            first_name="Asha",
            email="asha@example.com",
            success_url="https://app.example.com/payments/payu/return/",
            failure_url="https://app.example.com/payments/payu/return/",
            payment_record_id=42,
            user_ref="7",
            plan_code="pro",
        )
        fields.update(overrides)
        return RequestBuilder(gateway_config, repository).build(PaymentIntent(**fields))

    return _build
