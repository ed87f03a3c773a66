import pytest

from turnstile.services.provider_adapter import (
    CanonicalStatus,
    canonicalize,
    extract_unicobros_code,
    map_mercadopago_status,
    map_unicobros_status,
)


@pytest.mark.parametrize("code,expected", [
    (200, CanonicalStatus.APPROVED),
    (2, CanonicalStatus.PENDING),
    (4, CanonicalStatus.PENDING),
    (0, CanonicalStatus.REJECTED),
    (3, CanonicalStatus.REJECTED),
    (401, CanonicalStatus.REJECTED),
    (603, CanonicalStatus.REFUNDED),
])
def test_unicobros_table(code, expected):
    assert map_unicobros_status({"status": code}) == expected


def test_unicobros_shapes():
    assert extract_unicobros_code({"status": "200"}) == 200
    assert extract_unicobros_code({"status": {"code": 603}}) == 603
    assert extract_unicobros_code({"status_code": 3}) == 3
    assert extract_unicobros_code({"code": "4"}) == 4
    assert extract_unicobros_code(200) == 200
    assert extract_unicobros_code({"status": "approved"}) is None
    assert extract_unicobros_code({"status": True}) is None


@pytest.mark.parametrize("payment", [{"status": 999}, {"status": "weird"}, {}, None, {"status": {"code": None}}])
def test_unicobros_unknown_is_pending(payment, caplog):
    assert map_unicobros_status(payment) == CanonicalStatus.PENDING
    assert "Unmapped Unicobros status" in caplog.text


@pytest.mark.parametrize("raw,expected", [
    ("approved", CanonicalStatus.APPROVED),
    ("pending", CanonicalStatus.PENDING),
    ("in_process", CanonicalStatus.PENDING),
    ("authorized", CanonicalStatus.PENDING),
    ("rejected", CanonicalStatus.REJECTED),
    ("cancelled", CanonicalStatus.REJECTED),
    ("refunded", CanonicalStatus.REFUNDED),
    ("charged_back", CanonicalStatus.REFUNDED),
    (" APPROVED ", CanonicalStatus.APPROVED),
])
def test_mercadopago_table(raw, expected):
    assert map_mercadopago_status(raw) == expected


def test_unknown_never_approves():
    assert map_mercadopago_status("approved_maybe") == CanonicalStatus.PENDING
    assert map_mercadopago_status(None) == CanonicalStatus.PENDING


def test_canonicalize_dispatches_by_provider():
    assert canonicalize("unicobros", {"status": 200}) == CanonicalStatus.APPROVED
    assert canonicalize("MercadoPago", "rejected") == CanonicalStatus.REJECTED
    with pytest.raises(ValueError):
        canonicalize("paypal", "approved")
