import pytest
import requests

from turnstile.services import providers
from turnstile.services.provider_adapter import CanonicalStatus
from turnstile.services.providers import (
    MercadoPagoClient,
    MercadoPagoConfig,
    ProviderError,
    ProviderNotFound,
    UnicobrosClient,
    UnicobrosConfig,
    get_provider,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ("" if payload is None else "json")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _unicobros():
    return UnicobrosClient(UnicobrosConfig(base_url="https://api.example.test/", api_key="k", access_token="t"))


def test_unicobros_get_payment(monkeypatch):
    seen = {}

    def fake_request(method, url, headers, timeout):
        seen.update(method=method, url=url, headers=headers)
        return FakeResponse(200, {"data": {"id": 42, "status": {"code": 200}, "external_reference": "order-1"}})

    monkeypatch.setattr(providers.requests, "request", fake_request)
    p = _unicobros().get_payment("42")
    assert seen["method"] == "GET"
    assert seen["url"] == "https://api.example.test/p/operations/42"
    assert seen["headers"]["x-api-key"] == "k"
    assert (p.payment_id, p.order_id, p.raw_status, p.status) == ("42", "order-1", "200", CanonicalStatus.APPROVED)


def test_unicobros_404_is_not_found(monkeypatch):
    monkeypatch.setattr(providers.requests, "request", lambda **kw: FakeResponse(404, text="missing"))
    with pytest.raises(ProviderNotFound):
        _unicobros().get_payment("42")


def test_unicobros_network_failure(monkeypatch):
    def boom(**kw):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(providers.requests, "request", boom)
    with pytest.raises(ProviderError) as exc:
        _unicobros().get_payment("42")
    assert not isinstance(exc.value, ProviderNotFound)


def test_unicobros_requires_credentials():
    client = UnicobrosClient(UnicobrosConfig(base_url="https://api.example.test", api_key="", access_token=""))
    with pytest.raises(ProviderError):
        client.get_payment("1")


def test_mercadopago_get_payment(monkeypatch):
    monkeypatch.setattr(providers.requests, "get", lambda url, headers, timeout: FakeResponse(
        200, {"id": 9, "status": "refunded", "external_reference": "order-2"}))
    client = MercadoPagoClient(MercadoPagoConfig(base_url="https://mp.example.test", access_token="tok"))
    p = client.get_payment("9")
    assert p.status == CanonicalStatus.REFUNDED
    assert p.order_id == "order-2"


def test_get_provider():
    assert get_provider("unicobros").name == "unicobros"
    assert get_provider("MercadoPago").name == "mercadopago"
    with pytest.raises(ValueError):
        get_provider("stripe")
