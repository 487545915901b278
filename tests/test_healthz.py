import pytest
from django.urls import reverse

pytestmark = pytest.mark.django_db


def test_healthz_ok(client):
    r = client.get(reverse("healthz"))
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["gateway"]["environment"] == "test"


def test_healthz_degraded_without_credentials(client, settings):
    settings.PAYU_MERCHANT_SALT = ""
    r = client.get(reverse("healthz"))
    assert r.status_code == 503
    assert r.json()["gateway"]["missing"] == ["PAYU_MERCHANT_SALT"]


def test_readyz(client):
    assert client.get(reverse("readyz")).status_code == 200


def test_request_id_is_echoed(client):
    r = client.get(reverse("readyz"), HTTP_X_REQUEST_ID="abc-123")
    assert r["X-Request-ID"] == "abc-123"
