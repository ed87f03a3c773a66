from dataclasses import dataclass
from typing import Any, Protocol

import requests

from turnstile.core.config import settings
from turnstile.services.provider_adapter import CanonicalStatus, canonicalize, extract_unicobros_code


class ProviderError(RuntimeError):
    pass


class ProviderNotFound(ProviderError):
    """The provider does not know the id (yet). Not a rejection."""


@dataclass
class ProviderPayment:
    payment_id: str
    order_id: str | None  # external reference we sent at checkout
    raw_status: str
    status: CanonicalStatus


class PaymentProvider(Protocol):
    name: str

    def get_payment(self, payment_id: str) -> ProviderPayment: ...


@dataclass
class UnicobrosConfig:
    base_url: str
    api_key: str
    access_token: str
    timeout: int = 15


class UnicobrosClient:
    name = "unicobros"

    def __init__(self, cfg: UnicobrosConfig):
        self.cfg = cfg

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.cfg.api_key,
            "x-access-token": self.cfg.access_token,
        }

    def request(self, method: str, path: str) -> dict:
        if not (self.cfg.api_key and self.cfg.access_token):
            raise ProviderError("Unicobros credentials are not configured")
        url = f"{self.cfg.base_url.rstrip('/')}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, headers=self._headers(), timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Unicobros unreachable: {e}") from e
        if r.status_code == 404:
            raise ProviderNotFound(f"Unicobros 404 for {path}")
        if r.status_code >= 400:
            raise ProviderError(f"Unicobros {r.status_code}: {r.text[:300]}")
        try:
            return r.json() if r.text else {}
        except ValueError as e:
            raise ProviderError(f"Unicobros returned invalid JSON: {r.text[:300]}") from e

    def get_payment(self, payment_id: str) -> ProviderPayment:
        data = self.request("GET", f"/p/operations/{payment_id}")
        payment: Any = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payment, dict):
            raise ProviderError(f"Unicobros operation {payment_id} has no data")
        code = extract_unicobros_code(payment)
        reference = payment.get("external_reference") or payment.get("reference")
        return ProviderPayment(
            payment_id=str(payment.get("id") or payment_id),
            order_id=str(reference) if reference else None,
            raw_status="" if code is None else str(code),
            status=canonicalize(self.name, payment),
        )


@dataclass
class MercadoPagoConfig:
    base_url: str
    access_token: str
    timeout: int = 15


class MercadoPagoClient:
    name = "mercadopago"

    def __init__(self, cfg: MercadoPagoConfig):
        self.cfg = cfg

    def get_payment(self, payment_id: str) -> ProviderPayment:
        if not self.cfg.access_token:
            raise ProviderError("Mercado Pago access token is not configured")
        url = f"{self.cfg.base_url.rstrip('/')}/v1/payments/{payment_id}"
        try:
            r = requests.get(url, headers={"Authorization": f"Bearer {self.cfg.access_token}"}, timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Mercado Pago unreachable: {e}") from e
        if r.status_code == 404:
            raise ProviderNotFound(f"Mercado Pago payment {payment_id} not found")
        if r.status_code >= 400:
            raise ProviderError(f"Mercado Pago {r.status_code}: {r.text[:300]}")
        try:
            data = r.json()
        except ValueError as e:
            raise ProviderError(f"Mercado Pago returned invalid JSON: {r.text[:300]}") from e
        raw = str(data.get("status") or "")
        reference = data.get("external_reference")
        return ProviderPayment(
            payment_id=str(data.get("id") or payment_id),
            order_id=str(reference) if reference else None,
            raw_status=raw,
            status=canonicalize(self.name, raw),
        )


def get_provider(name: str | None = None) -> PaymentProvider:
    name = (name or settings.PAYMENT_PROVIDER).lower()
    if name == "unicobros":
        return UnicobrosClient(UnicobrosConfig(
            base_url=settings.UNICOBROS_BASE_URL,
            api_key=settings.UNICOBROS_API_KEY,
            access_token=settings.UNICOBROS_ACCESS_TOKEN,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        ))
    if name == "mercadopago":
        return MercadoPagoClient(MercadoPagoConfig(
            base_url=settings.MERCADOPAGO_BASE_URL,
            access_token=settings.MERCADOPAGO_ACCESS_TOKEN,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        ))
    raise ValueError(f"unknown payment provider: {name}")
