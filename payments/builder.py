from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from django.core.exceptions import ValidationError
from django.core.validators import URLValidator, validate_email
from django.db import IntegrityError, transaction

from . import signing
from .config import GatewayConfig
from .exceptions import InvalidFieldError
from .models import Transaction
from .repository import TransactionRepository

logger = logging.getLogger(__name__)

TXNID_PREFIX = "PG"
TXNID_ATTEMPTS = 3
UDF_MAX_LENGTH = 255

# Intent field -> Transaction column it is stored in; the column bounds its length.
INTENT_COLUMNS = {
    "product_info": "product_info",
    "first_name": "first_name",
    "email": "email",
    "phone": "phone",
    "success_url": "success_url",
    "failure_url": "failure_url",
    "plan_code": "udf1",
    "subscription_ref": "udf2",
    "user_ref": "user_ref",
}


def generate_txnid(prefix: str = TXNID_PREFIX) -> str:
    """Millisecond timestamp plus a random suffix, upper-cased (PG1718000000000A1B2C3D4)."""
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(4)}".upper()


@dataclass
class PaymentIntent:
    amount: Any
    product_info: str
    first_name: str
    email: str
    success_url: str
    failure_url: str
    payment_record_id: int
    user_ref: str = ""
    plan_code: str = ""
    subscription_ref: str = ""
    phone: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionRequest:
    key: str
    txnid: str
    amount: str
    productinfo: str
    firstname: str
    email: str
    phone: str
    surl: str
    furl: str
    udf1: str
    udf2: str
    udf3: str
    udf4: str
    udf5: str
    hash: str
    action_url: str

    def as_form(self) -> dict[str, str]:
        """Fields the browser posts to PayU."""
        form = asdict(self)
        form.pop("action_url")
        return form


class RequestBuilder:
    def __init__(self, config: GatewayConfig, repository: TransactionRepository | None = None):
        self.config = config
        self.repository = repository or TransactionRepository()

    def build(self, intent: PaymentIntent) -> TransactionRequest:
        amount = self._validate(intent)
        base = {
            "key": self.config.merchant_key,
            "amount": signing.canonical_amount(amount),
            "productinfo": intent.product_info.strip(),
            "firstname": intent.first_name.strip(),
            "email": intent.email.strip(),
            "udf1": str(intent.plan_code or ""),
            "udf2": str(intent.subscription_ref or ""),
            "udf3": str(intent.user_ref or ""),
            "udf4": str(intent.payment_record_id),
            "udf5": _metadata(intent.metadata),
        }

        for attempt in range(1, TXNID_ATTEMPTS + 1):
            fields = {**base, "txnid": generate_txnid()}
            digest = signing.sign(fields, self.config.merchant_salt)
            try:
                with transaction.atomic():
                    self.repository.create_transaction(
                        txnid=fields["txnid"],
                        merchant_key=fields["key"],
                        amount=Decimal(fields["amount"]),
                        product_info=fields["productinfo"],
                        first_name=fields["firstname"],
                        email=fields["email"],
                        phone=intent.phone,
                        success_url=intent.success_url,
                        failure_url=intent.failure_url,
                        udf1=fields["udf1"],
                        udf2=fields["udf2"],
                        udf3=fields["udf3"],
                        udf4=fields["udf4"],
                        udf5=fields["udf5"],
                        request_hash=digest,
                        payment_record_id=intent.payment_record_id,
                        user_ref=fields["udf3"],
                    )
            except IntegrityError:
                logger.warning(
                    "payments.request.txnid_collision",
                    extra={"txnid": fields["txnid"], "attempt": attempt},
                )
                continue
            logger.info(
                "payments.request.built",
                extra={
                    "txnid": fields["txnid"],
                    "amount": fields["amount"],
                    "payment_record_id": intent.payment_record_id,
                },
            )
            return TransactionRequest(
                phone=intent.phone,
                surl=intent.success_url,
                furl=intent.failure_url,
                hash=digest,
                action_url=self.config.base_url,
                **fields,
            )
        raise IntegrityError("Could not allocate a unique transaction id.")

    def _validate(self, intent: PaymentIntent) -> Decimal:
        errors: dict[str, list[str]] = {}

        def add(name: str, message: str) -> None:
            errors.setdefault(name, []).append(message)

        amount = None
        try:
            amount = signing.parse_amount(intent.amount)
        except InvalidFieldError as exc:
            add("amount", exc.message)
        if amount is not None:
            if amount < 0:
                add("amount", "Amount must not be negative.")
            elif amount < self.config.min_amount:
                add("amount", f"Amount must be at least {self.config.min_amount}.")
            elif amount > self.config.max_amount:
                add("amount", f"Amount must not exceed {self.config.max_amount}.")
            if "amount" not in errors and amount != amount.quantize(signing.AMOUNT_QUANTUM):
                add("amount", "Amount must have at most two decimal places.")

        email = (intent.email or "").strip()
        if not email:
            add("email", "Payer email is required.")
        else:
            try:
                validate_email(email)
            except ValidationError as exc:
                errors.setdefault("email", []).extend(exc.messages)

        if not (intent.first_name or "").strip():
            add("first_name", "Payer first name is required.")
        if not (intent.product_info or "").strip():
            add("product_info", "Product description is required.")

        schemes = ["https"] if self.config.is_production else ["http", "https"]
        validate_url = URLValidator(schemes=schemes)
        for name in ("success_url", "failure_url"):
            try:
                validate_url(getattr(intent, name) or "")
            except ValidationError:
                add(name, f"Must be an absolute {' or '.join(schemes)} URL.")

        for name in ("product_info", "first_name", "email", "phone", "plan_code", "subscription_ref", "user_ref"):
            if signing.SEPARATOR in str(getattr(intent, name) or ""):
                add(name, f"Must not contain {signing.SEPARATOR!r}.")
        for name, column in INTENT_COLUMNS.items():
            limit = Transaction._meta.get_field(column).max_length
            if len(str(getattr(intent, name) or "").strip()) > limit:
                add(name, f"Must be at most {limit} characters.")
        try:
            _metadata(intent.metadata)
        except ValueError as exc:
            add("metadata", str(exc))

        if errors:
            raise ValidationError(errors)
        return amount


def _metadata(value: dict[str, Any] | None) -> str:
    if not value:
        return ""
    text = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    if signing.SEPARATOR in text:
        raise ValueError(f"Metadata must not contain {signing.SEPARATOR!r}.")
    if len(text) > UDF_MAX_LENGTH:
        raise ValueError(f"Metadata must serialize to at most {UDF_MAX_LENGTH} characters.")
    return text
