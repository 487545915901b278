from unittest import mock

import pytest
import requests

from payments import gateway_client, signing
from payments.enums import MessageSource
from payments.exceptions import GatewayError


def fake_response(status_code=200, payload=None, json_error=False):
    response = mock.Mock(status_code=status_code)
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload or {}
    return response


def test_posts_signed_command(gateway_config):
    payload = {
        "status": 1,
        "transaction_details": {
            "PG1": {"mihpayid": "403993715521", "status": "success", "amt": "499.00", "udf4": "42"}
        },
    }
    with mock.patch("payments.gateway_client.requests.post", return_value=fake_response(payload=payload)) as post:
        message = gateway_client.verify_payment(gateway_config, "PG1")

    data = post.call_args.kwargs["data"]
    assert data["command"] == "verify_payment"
    assert data["var1"] == "PG1"
    assert data["hash"] == signing.sign_command("TESTKEY", "verify_payment", "PG1", "test-salt")
    assert message.source == MessageSource.VERIFY_API
    assert message.get("status") == "success"
    assert message.get("amount") == "499.00"
    assert message.get("mihpayid") == "403993715521"
    assert not message.signed


def test_not_found_returns_none(gateway_config):
    payload = {"transaction_details": {"PG1": {"status": "Not Found"}}}
    with mock.patch("payments.gateway_client.requests.post", return_value=fake_response(payload=payload)):
        assert gateway_client.verify_payment(gateway_config, "PG1") is None


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"side_effect": requests.ConnectionError("refused")}, "payu_network_error"),
        ({"return_value": fake_response(status_code=502)}, "payu_unavailable"),
        ({"return_value": fake_response(json_error=True)}, "payu_invalid_json"),
    ],
)
def test_transport_problems_raise(gateway_config, kwargs, code):
    with mock.patch("payments.gateway_client.requests.post", **kwargs):
        with pytest.raises(GatewayError) as exc:
            gateway_client.verify_payment(gateway_config, "PG1")
    assert exc.value.code == code
