"""Normalise provider payment statuses into one canonical four-value enum.

Provider encodings differ (Unicobros sends numeric codes, sometimes as strings
or nested under ``status.code``; Mercado Pago sends lowercase words). Nothing
outside this module branches on a provider-specific value. Unknown codes map to
PENDING and are logged so the tables can be extended; they never map to
APPROVED.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CanonicalStatus(str, Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"


UNICOBROS_STATUS_MAP: dict[int, CanonicalStatus] = {
    200: CanonicalStatus.APPROVED,
    2: CanonicalStatus.PENDING,
    4: CanonicalStatus.PENDING,
    0: CanonicalStatus.REJECTED,
    3: CanonicalStatus.REJECTED,
    401: CanonicalStatus.REJECTED,
    603: CanonicalStatus.REFUNDED,
}

MERCADOPAGO_STATUS_MAP: dict[str, CanonicalStatus] = {
    "approved": CanonicalStatus.APPROVED,
    "pending": CanonicalStatus.PENDING,
    "in_process": CanonicalStatus.PENDING,
    "in_mediation": CanonicalStatus.PENDING,
    "authorized": CanonicalStatus.PENDING,
    "rejected": CanonicalStatus.REJECTED,
    "cancelled": CanonicalStatus.REJECTED,
    "refunded": CanonicalStatus.REFUNDED,
    "charged_back": CanonicalStatus.REFUNDED,
}


def extract_unicobros_code(payment: Any) -> int | None:
    """Pull the numeric status out of the shapes Unicobros has been seen to send.

    ``{"status": 200}``, ``{"status": "200"}``, ``{"status": {"code": 200}}``,
    ``{"status_code": 200}`` and ``{"code": 200}`` are all accepted; a bare
    number or string is accepted too.
    """
    raw: Any = payment
    if isinstance(payment, dict):
        status = payment.get("status")
        if isinstance(status, dict):
            raw = status.get("code")
        elif status is not None:
            raw = status
        else:
            raw = payment.get("status_code", payment.get("code"))
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def map_unicobros_status(payment: Any) -> CanonicalStatus:
    code = extract_unicobros_code(payment)
    status = UNICOBROS_STATUS_MAP.get(code) if code is not None else None
    if status is None:
        logger.warning(f"Unmapped Unicobros status {payment!r}; treating as PENDING")
        return CanonicalStatus.PENDING
    return status


def map_mercadopago_status(raw: Any) -> CanonicalStatus:
    key = str(raw or "").strip().lower()
    status = MERCADOPAGO_STATUS_MAP.get(key)
    if status is None:
        logger.warning(f"Unmapped Mercado Pago status {raw!r}; treating as PENDING")
        return CanonicalStatus.PENDING
    return status


_MAPPERS = {
    "unicobros": map_unicobros_status,
    "mercadopago": map_mercadopago_status,
}


def canonicalize(provider: str, raw: Any) -> CanonicalStatus:
    mapper = _MAPPERS.get((provider or "").lower())
    if mapper is None:
        raise ValueError(f"unknown payment provider: {provider}")
    return mapper(raw)
