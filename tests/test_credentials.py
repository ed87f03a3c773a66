import pytest

from turnstile.core.errors import NotFoundError
from turnstile.services.credential_service import (
    generate_access_token,
    generate_credential_hash,
    generate_readable_code,
    is_access_token,
    is_credential_hash,
    issue,
)
from turnstile.services.ledger_service import get_order
from turnstile.services.provider_adapter import CanonicalStatus


def test_token_formats():
    token = generate_access_token()
    assert len(token) == 64 and is_access_token(token)
    assert generate_access_token() != token
    h = generate_credential_hash()
    assert len(h) == 32 and is_credential_hash(h)
    assert not is_access_token("abc")
    assert not is_access_token(token.upper())
    assert not is_access_token(None)
    assert not is_credential_hash(h.lower())


def test_readable_code_uses_order_stem():
    code = generate_readable_code("ORD-K7Q2XM9A", 0)
    assert code.startswith("K7Q2XM-")
    assert code.endswith("-01")


def test_issue_is_idempotent(db, make_order):
    order = make_order(1)
    first = issue(db, order.id)
    second = issue(db, order.id)
    assert first == second
    assert get_order(db, order.id).access_token == first


def test_issue_unknown_order(db):
    with pytest.raises(NotFoundError):
        issue(db, "missing")


def test_approval_keeps_a_previously_issued_token(db, recon, make_order):
    order = make_order(1)
    early = issue(db, order.id)
    result = recon.confirm(db, order.id, "pay-1", CanonicalStatus.APPROVED, "webhook")
    assert result.access_token == early
    assert issue(db, order.id) == early


def test_tickets_get_distinct_credentials(db, make_order):
    order = make_order(5)
    o = get_order(db, order.id)
    assert len({t.credential_hash for t in o.tickets}) == 5
    assert len({t.code for t in o.tickets}) == 5
    assert all(is_credential_hash(t.credential_hash) for t in o.tickets)
