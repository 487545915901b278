"""
PayU hash computation.

All digests are SHA-512 over `|`-joined field values, rendered as lowercase
hex. Requests and responses use different field orders:

    request:  key|txnid|amount|productinfo|firstname|email|udf1..udf5|||||| salt
    response: salt|status||||||udf5..udf1|email|firstname|productinfo|amount|txnid|key

The five empty slots are reserved by PayU and must stay in the string.
Amounts always go through `canonical_amount`, so "10", "10.0" and "10.00"
sign identically. Nothing here touches the database or the network.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import InvalidFieldError

SEPARATOR = "|"
AMOUNT_QUANTUM = Decimal("0.01")
RESERVED_SLOTS = 5

UDF_FIELDS = ("udf1", "udf2", "udf3", "udf4", "udf5")
REQUEST_FIELDS = ("key", "txnid", "amount", "productinfo", "firstname", "email", *UDF_FIELDS)
RESPONSE_FIELDS = ("status", *reversed(UDF_FIELDS), "email", "firstname", "productinfo", "amount", "txnid", "key")


def parse_amount(value) -> Decimal:
    """Parse a wire or model amount into a finite Decimal.

    Raises InvalidFieldError for booleans, non-numeric text and NaN/Infinity.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidFieldError("amount", "Amount is missing or not numeric.")
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip()
        if not text:
            raise InvalidFieldError("amount", "Amount is empty.")
        try:
            amount = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidFieldError("amount", f"Amount {text!r} is not numeric.") from exc
    if not amount.is_finite():
        raise InvalidFieldError("amount", "Amount must be finite.")
    return amount


def canonical_amount(value) -> str:
    """The single textual form of an amount used in every hash: two decimals, half-up."""
    amount = parse_amount(value)
    try:
        amount = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise InvalidFieldError("amount", "Amount is out of range.") from exc
    if amount.is_zero():
        amount = abs(amount)
    return format(amount, "f")


def _field(fields: Mapping, name: str) -> str:
    value = fields.get(name)
    if name == "amount":
        return canonical_amount(value)
    text = "" if value is None else str(value)
    if SEPARATOR in text:
        raise InvalidFieldError(name, f"Field {name!r} contains the separator character.")
    return text


def _secret(secret) -> str:
    text = "" if secret is None else str(secret)
    if not text:
        raise InvalidFieldError("secret", "Signing secret is empty.")
    if SEPARATOR in text:
        raise InvalidFieldError("secret", "Signing secret contains the separator character.")
    return text


def request_sequence(fields: Mapping, secret) -> list[str]:
    values = [_field(fields, name) for name in REQUEST_FIELDS]
    return [*values, *([""] * RESERVED_SLOTS), _secret(secret)]


def response_sequence(fields: Mapping, secret) -> list[str]:
    values = [_field(fields, name) for name in RESPONSE_FIELDS]
    return [_secret(secret), values[0], *([""] * RESERVED_SLOTS), *values[1:]]


def _digest(parts: list[str]) -> str:
    return hashlib.sha512(SEPARATOR.join(parts).encode("utf-8")).hexdigest()


def _matches(expected: str, candidate) -> bool:
    if not isinstance(candidate, str) or not candidate.strip():
        return False
    given = candidate.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected.encode("ascii"), given)


def sign(fields: Mapping, secret) -> str:
    """Hash for an outbound payment request."""
    return _digest(request_sequence(fields, secret))


def verify(fields: Mapping, secret, candidate) -> bool:
    try:
        expected = sign(fields, secret)
    except InvalidFieldError:
        return False
    return _matches(expected, candidate)


def sign_response(fields: Mapping, secret) -> str:
    """Hash PayU attaches to redirect responses and webhooks."""
    return _digest(response_sequence(fields, secret))


def verify_response(fields: Mapping, secret, candidate) -> bool:
    try:
        expected = sign_response(fields, secret)
    except InvalidFieldError:
        return False
    return _matches(expected, candidate)


def sign_command(key, command: str, var1, secret) -> str:
    """Hash for PayU's merchant postservice API (`verify_payment` and friends)."""
    parts = [_field({"key": key}, "key"), _field({"command": command}, "command"),
             _field({"var1": var1}, "var1"), _secret(secret)]
    return _digest(parts)
