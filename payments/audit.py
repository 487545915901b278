"""
Conformance harness for the PayU pipeline.

Each `Scenario` has exactly one fixture in `FIXTURES`; the module refuses to
import otherwise. A fixture is either a `BuildFixture` (the request builder
must refuse the intent) or a `DeliveryFixture` (a request is built, a gateway
response is forged from it, optionally damaged, and delivered through the
verifier and reconciler).

Every fixture runs inside a transaction that is rolled back, with throwaway
merchant credentials, a counting side effect and a recording alert sink, so
running the audit against a live database leaves no trace.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import transaction

from . import signing
from .builder import PaymentIntent, RequestBuilder, generate_txnid
from .config import GatewayConfig, RetryPolicy
from .enums import ReconcileStatus, RejectionReason, TxnState
from .models import Transaction
from .reconciler import Reconciler
from .repository import TransactionRepository
from .verifier import GatewayMessage, Rejection, ResponseVerifier

logger = logging.getLogger(__name__)

AUDIT_CONFIG = GatewayConfig(merchant_key="AUDITKEY", merchant_salt="audit-salt", environment="test")
FOREIGN_SALT = "not-the-merchant-salt"
AUDIT_RETURN_URL = "https://audit.invalid/payments/payu/return/"


class Scenario(enum.Enum):
    WELL_FORMED_SUCCESS = "well_formed_success"
    WELL_FORMED_FAILURE = "well_formed_failure"
    WELL_FORMED_CANCELLATION = "well_formed_cancellation"
    PENDING_STATUS = "pending_status"
    MALFORMED_PAYLOAD = "malformed_payload"
    TAMPERED_SIGNATURE = "tampered_signature"
    AMOUNT_MISMATCH = "amount_mismatch"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    DUPLICATE_TERMINAL_DELIVERY = "duplicate_terminal_delivery"
    NEGATIVE_AMOUNT = "negative_amount"
    ZERO_AMOUNT = "zero_amount"


@dataclass(frozen=True)
class Observation:
    rejection: str | None = None
    reconcile: str | None = None
    state: str | None = None
    side_effects: int = 0
    alerts: int = 0
    invalid_fields: tuple[str, ...] = ()
    transactions_created: int = 0


@dataclass(frozen=True)
class BuildFixture:
    description: str
    amount: str
    expected: Observation
    remediation: str


@dataclass(frozen=True)
class DeliveryFixture:
    description: str
    expected: Observation
    remediation: str
    amount: str = "499.00"
    status: str = "success"
    response_amount: str | None = None
    signing_salt: str | None = None
    drop_fields: tuple[str, ...] = ()
    unknown_txnid: bool = False
    deliveries: int = 1


Fixture = BuildFixture | DeliveryFixture

FIXTURES: dict[Scenario, Fixture] = {
    Scenario.WELL_FORMED_SUCCESS: DeliveryFixture(
        description="Signed success for 499.00 closes the transaction and grants once.",
        expected=Observation(
            reconcile=ReconcileStatus.APPLIED, state=TxnState.SUCCESS,
            side_effects=1, transactions_created=1,
        ),
        remediation="Check the response hash order and the SUCCESS transition in the reconciler.",
    ),
    Scenario.WELL_FORMED_FAILURE: DeliveryFixture(
        description="Signed failure closes the transaction as FAILURE.",
        status="failure",
        expected=Observation(
            reconcile=ReconcileStatus.APPLIED, state=TxnState.FAILURE,
            side_effects=1, transactions_created=1,
        ),
        remediation="The status table must map 'failure' to FAILURE.",
    ),
    Scenario.WELL_FORMED_CANCELLATION: DeliveryFixture(
        description="Signed cancel closes the transaction as CANCELLED.",
        status="cancel",
        expected=Observation(
            reconcile=ReconcileStatus.APPLIED, state=TxnState.CANCELLED,
            side_effects=1, transactions_created=1,
        ),
        remediation="The status table must map 'cancel' to CANCELLED.",
    ),
    Scenario.PENDING_STATUS: DeliveryFixture(
        description="Signed pending moves INITIATED to PENDING without a side effect.",
        status="pending",
        expected=Observation(
            reconcile=ReconcileStatus.APPLIED, state=TxnState.PENDING, transactions_created=1,
        ),
        remediation="Pending must transition without invoking the side effect.",
    ),
    Scenario.MALFORMED_PAYLOAD: DeliveryFixture(
        description="Response without mihpayid and hash is rejected before any lookup.",
        drop_fields=("mihpayid", "hash"),
        expected=Observation(
            rejection=RejectionReason.MALFORMED_MESSAGE, state=TxnState.INITIATED,
            transactions_created=1,
        ),
        remediation="The structural check must require txnid, status, amount, mihpayid and hash.",
    ),
    Scenario.TAMPERED_SIGNATURE: DeliveryFixture(
        description="Response hashed with a different salt is rejected and alerted.",
        signing_salt=FOREIGN_SALT,
        expected=Observation(
            rejection=RejectionReason.SIGNATURE_MISMATCH, state=TxnState.INITIATED,
            alerts=1, transactions_created=1,
        ),
        remediation="Verify the response hash with the merchant salt and raise an alert on mismatch.",
    ),
    Scenario.AMOUNT_MISMATCH: DeliveryFixture(
        description="Correctly signed response for 500.00 against a 499.00 request.",
        response_amount="500.00",
        expected=Observation(
            rejection=RejectionReason.AMOUNT_MISMATCH, state=TxnState.INITIATED,
            alerts=1, transactions_created=1,
        ),
        remediation="Compare canonical amounts against the stored request, not the message alone.",
    ),
    Scenario.UNKNOWN_TRANSACTION: DeliveryFixture(
        description="Signed response for a txnid we never issued creates nothing.",
        unknown_txnid=True,
        expected=Observation(
            rejection=RejectionReason.UNKNOWN_OR_CLOSED_TRANSACTION, state=TxnState.INITIATED,
            transactions_created=1,
        ),
        remediation="Never create transactions from inbound messages; look them up by txnid.",
    ),
    Scenario.DUPLICATE_TERMINAL_DELIVERY: DeliveryFixture(
        description="The same success delivered twice applies once.",
        deliveries=2,
        expected=Observation(
            reconcile=ReconcileStatus.DUPLICATE_NOTIFICATION, state=TxnState.SUCCESS,
            side_effects=1, transactions_created=1,
        ),
        remediation="Claim the ledger key before the side effect and treat closed transactions as duplicates.",
    ),
    Scenario.NEGATIVE_AMOUNT: BuildFixture(
        description="Intent for -1.00 is refused before anything is stored.",
        amount="-1.00",
        expected=Observation(invalid_fields=("amount",)),
        remediation="The builder must reject negative amounts with ValidationError.",
    ),
    Scenario.ZERO_AMOUNT: BuildFixture(
        description="Intent for 0.00 is refused before anything is stored.",
        amount="0.00",
        expected=Observation(invalid_fields=("amount",)),
        remediation="The builder must enforce the minimum amount.",
    ),
}

_missing = [s.value for s in Scenario if s not in FIXTURES]
if _missing:
    raise ImproperlyConfigured(f"Audit fixtures missing for: {', '.join(_missing)}")


class CountingSideEffect:
    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []

    def __call__(self, payment_record_id, outcome, *, timeout=None):
        self.calls.append((payment_record_id, str(outcome)))


class RecordingAlert:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def __call__(self, reason, **kwargs) -> None:
        self.calls.append({"reason": str(reason), **kwargs})


def gateway_response_for(
    request_fields: Mapping[str, Any],
    *,
    status: str,
    gateway_txn_id: str,
    secret: str,
    amount: str | None = None,
    error: str = "",
    error_message: str = "",
) -> dict[str, str]:
    """A PayU-style response/webhook body for a built request, hashed with `secret`."""
    response = {
        name: str(request_fields.get(name) or "")
        for name in (*signing.REQUEST_FIELDS, "phone")
    }
    if amount is not None:
        response["amount"] = amount
    response.update(
        mihpayid=gateway_txn_id,
        status=status,
        error=error,
        error_Message=error_message,
    )
    response["hash"] = signing.sign_response(response, secret)
    return response


@dataclass(frozen=True)
class AuditFinding:
    scenario: Scenario
    description: str
    passed: bool
    expected: Observation
    observed: Observation
    remediation: str
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario.value,
            "description": self.description,
            "passed": self.passed,
            "expected": asdict(self.expected),
            "observed": asdict(self.observed),
            "remediation": "" if self.passed else self.remediation,
            "error": self.error,
        }


@dataclass
class AuditReport:
    findings: list[AuditFinding] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(f.passed for f in self.findings)

    @property
    def failures(self) -> list[AuditFinding]:
        return [f for f in self.findings if not f.passed]

    def as_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "total": len(self.findings),
            "failed": len(self.failures),
            "findings": [f.as_dict() for f in self.findings],
        }


def run_audit(scenarios=None, *, config: GatewayConfig = AUDIT_CONFIG) -> AuditReport:
    report = AuditReport()
    for scenario in scenarios or list(Scenario):
        report.findings.append(_run_fixture(scenario, FIXTURES[scenario], config))
    logger.info(
        "payments.audit.done",
        extra={"total": len(report.findings), "failed": len(report.failures)},
    )
    return report


def _run_fixture(scenario: Scenario, fixture: Fixture, config: GatewayConfig) -> AuditFinding:
    error = ""
    with transaction.atomic():
        try:
            if isinstance(fixture, BuildFixture):
                observed = _drive_build(fixture, config)
            else:
                observed = _drive_delivery(fixture, config)
        except Exception as exc:  # a crash is a finding, not an abort
            logger.exception("payments.audit.fixture_crashed", extra={"scenario": scenario.value})
            observed = Observation()
            error = f"{type(exc).__name__}: {exc}"
        finally:
            transaction.set_rollback(True)
    return AuditFinding(
        scenario=scenario,
        description=fixture.description,
        passed=not error and observed == fixture.expected,
        expected=fixture.expected,
        observed=observed,
        remediation=fixture.remediation,
        error=error,
    )


def _intent(amount: str) -> PaymentIntent:
    return PaymentIntent(
        amount=amount,
        product_info="Audit plan",
        first_name="Audit",
        email="audit@example.com",
        success_url=AUDIT_RETURN_URL,
        failure_url=AUDIT_RETURN_URL,
        payment_record_id=1,
        user_ref="audit",
        plan_code="audit",
    )


def _drive_build(fixture: BuildFixture, config: GatewayConfig) -> Observation:
    before = Transaction.objects.count()
    try:
        RequestBuilder(config, TransactionRepository()).build(_intent(fixture.amount))
    except ValidationError as exc:
        invalid = tuple(sorted(exc.message_dict))
    else:
        invalid = ()
    return Observation(
        invalid_fields=invalid,
        transactions_created=Transaction.objects.count() - before,
    )


def _drive_delivery(fixture: DeliveryFixture, config: GatewayConfig) -> Observation:
    repository = TransactionRepository()
    side_effect = CountingSideEffect()
    alert = RecordingAlert()
    verifier = ResponseVerifier(config, repository, alert=alert)
    reconciler = Reconciler(
        repository,
        side_effect=side_effect,
        retry_policy=RetryPolicy(base_delay=0),
        alert=alert,
        sleep=lambda seconds: None,
    )

    before = Transaction.objects.count()
    request = RequestBuilder(config, repository).build(_intent(fixture.amount))
    fields = request.as_form()
    if fixture.unknown_txnid:
        fields["txnid"] = generate_txnid()
    response = gateway_response_for(
        fields,
        status=fixture.status,
        gateway_txn_id=f"AUDIT{request.txnid[-8:]}",
        secret=fixture.signing_salt or config.merchant_salt,
        amount=fixture.response_amount,
    )
    for name in fixture.drop_fields:
        response.pop(name, None)

    rejection = reconcile = None
    for _ in range(fixture.deliveries):
        verified = verifier.verify(GatewayMessage.from_payload(response))
        if isinstance(verified, Rejection):
            rejection, reconcile = verified.reason, None
        else:
            rejection, reconcile = None, reconciler.reconcile(verified).status

    txn = repository.load_transaction(request.txnid)
    return Observation(
        rejection=rejection,
        reconcile=reconcile,
        state=txn.state if txn else None,
        side_effects=len(side_effect.calls),
        alerts=len(alert.calls),
        transactions_created=Transaction.objects.count() - before,
    )
