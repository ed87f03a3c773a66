"""Independent sessions on separate threads racing for the same order or ticket."""
import threading

from sqlalchemy import func, select

from turnstile.core.errors import ALREADY_USED, ConflictError
from turnstile.db.session import SessionLocal
from turnstile.models.order import PaymentStatus
from turnstile.models.ticket import TicketStatus
from turnstile.models.validation_record import ValidationRecord
from turnstile.services.dedup_cache import MemoryDedupCache
from turnstile.services.ledger_service import get_order
from turnstile.services.provider_adapter import CanonicalStatus
from turnstile.services.reconciliation_service import ReconciliationEngine
from turnstile.services.validation_service import validate


def _race(n, fn):
    barrier = threading.Barrier(n)
    results, errors = [None] * n, [None] * n

    def run(i):
        s = SessionLocal()
        try:
            barrier.wait()
            results[i] = fn(s, i)
        except Exception as e:
            errors[i] = e
        finally:
            s.close()

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results, errors


def test_concurrent_approvals_commit_once(db, dispatcher, make_order):
    order = make_order(3)
    sources = ["webhook", "poll", "sweep", "webhook", "poll", "sweep"]
    # one engine per caller, as if each ran in its own process
    engines = [ReconciliationEngine(MemoryDedupCache(), dispatcher) for _ in sources]

    results, errors = _race(len(sources), lambda s, i: engines[i].confirm(
        s, order.id, "pay-1", CanonicalStatus.APPROVED, sources[i]))

    assert errors == [None] * len(sources)
    assert sum(1 for r in results if r.accepted) == 1
    assert all(r.payment_status == PaymentStatus.COMPLETED for r in results)
    tokens = {r.access_token for r in results}
    assert len(tokens) == 1 and None not in tokens
    assert len(dispatcher.sent) == 1

    db.expire_all()
    o = get_order(db, order.id)
    assert o.payment_status == PaymentStatus.COMPLETED
    assert o.access_token in tokens
    assert [t.status for t in o.tickets] == [TicketStatus.PAID] * 3


def test_concurrent_approval_and_rejection_never_downgrade(db, dispatcher, make_order):
    order = make_order(2)
    engine = ReconciliationEngine(MemoryDedupCache(), dispatcher)
    statuses = [CanonicalStatus.APPROVED, CanonicalStatus.REJECTED] * 3

    results, errors = _race(len(statuses), lambda s, i: engine.confirm(
        s, order.id, f"pay-{i}", statuses[i], "webhook"))

    assert errors == [None] * len(statuses)
    db.expire_all()
    final = get_order(db, order.id).payment_status
    if final == PaymentStatus.COMPLETED:
        # once completed, nothing moved it again
        assert len(dispatcher.sent) == 1
    else:
        assert final == PaymentStatus.FAILED


def test_concurrent_scans_admit_once(db, recon, make_order, operator, other_operator):
    order = make_order(1)
    recon.confirm(db, order.id, "pay-1", CanonicalStatus.APPROVED, "webhook")
    db.expire_all()
    code = get_order(db, order.id).tickets[0].credential_hash
    ops = [operator, other_operator] * 4

    results, errors = _race(len(ops), lambda s, i: validate(s, code, ops[i], ip=f"10.0.0.{i}"))

    successes = [r for r in results if r is not None]
    conflicts = [e for e in errors if e is not None]
    assert len(successes) == 1
    assert len(conflicts) == len(ops) - 1
    assert all(isinstance(e, ConflictError) and e.code == ALREADY_USED for e in conflicts)
    winner = successes[0]
    assert all(e.details["validatedBy"]["id"] == winner.validated_by["id"] for e in conflicts)

    count = db.execute(select(func.count(ValidationRecord.id))).scalar_one()
    assert count == 1
    db.expire_all()
    assert get_order(db, order.id).tickets[0].status == TicketStatus.VALIDATED
