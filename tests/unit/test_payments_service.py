import pytest
from unittest.mock import MagicMock

from impactly.errors import LedgerApplicationError
from impactly.payments import service as payments_service
from impactly.payments.metadata import make_metadata

def _completed_event(session_id="cs_1", ids=("t1", "t2"), user_id="user-1"):
    return {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "payment_intent": "pi_1",
            "payment_status": "paid",
            "metadata": make_metadata(user_id, list(ids)),
        }},
    }

@pytest.fixture()
def queue():
    return MagicMock(name="task_queue")

def test_completed_event_marks_rows_and_applies_ledger(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.add_purchase("t2")
    memory_store.preferences["user-1"] = ["water"]

    result = payments_service.handle_event(MagicMock(), queue, _completed_event())

    assert result["status"] == "ok"
    assert result["completed"] == 2
    assert result["ledger"] == "applied"
    assert result["fulfillment"] == "queued"
    assert memory_store.transactions["t1"]["status"] == "completed"
    assert memory_store.transactions["t1"]["stripe_payment_id"] == "pi_1"
    assert memory_store.transactions["t2"]["stripe_session_id"] == "cs_1"
    assert memory_store.sessions["cs_1"] == "completed"
    assert memory_store.accounts["user-1"]["balance"] == 44
    queue.enqueue.assert_called_once_with("fulfill", {"session_id": "cs_1", "transaction_ids": ["t1", "t2"]})

def test_redelivered_event_has_no_side_effects(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    event = _completed_event(ids=("t1",))

    first = payments_service.handle_event(MagicMock(), queue, event)
    second = payments_service.handle_event(MagicMock(), queue, event)

    assert first["status"] == "ok"
    assert second["status"] == "duplicate"
    assert memory_store.accounts["user-1"]["balance"] == 22
    assert len(memory_store.contributions) == 1
    assert queue.enqueue.call_count == 1

def test_nothing_transitioned_is_a_duplicate(memory_store, queue, monkeypatch):
    memory_store.add_purchase("t1")
    # Une livraison concurrente a complété la ligne entre la lecture et la mise à jour
    monkeypatch.setattr("impactly.payments.repository.mark_completed", lambda db, ids, **kw: [])

    result = payments_service.handle_event(MagicMock(), queue, _completed_event(ids=("t1",)))

    assert result["status"] == "duplicate"
    assert memory_store.applied_sessions == []
    queue.enqueue.assert_not_called()

def test_success_for_failed_rows_is_not_resurrected(memory_store, queue):
    memory_store.add_purchase("t1", status="failed", failure_reason="checkout.session.expired")

    result = payments_service.handle_event(MagicMock(), queue, _completed_event(ids=("t1",)))

    assert result["status"] == "conflict"
    assert memory_store.transactions["t1"]["status"] == "failed"
    assert memory_store.applied_sessions == []

def test_ledger_failure_is_deferred_and_completion_kept(memory_store, queue, monkeypatch):
    memory_store.add_purchase("t1")

    def boom(db, session_id, purchases, **kwargs):
        raise LedgerApplicationError("db down")

    monkeypatch.setattr("impactly.payments.service.ledger_service.apply_completed_batch", boom)

    result = payments_service.handle_event(MagicMock(), queue, _completed_event(ids=("t1",)))

    assert result["status"] == "ok"
    assert result["ledger"] == "deferred"
    assert memory_store.transactions["t1"]["status"] == "completed"
    kinds = [c.args[0] for c in queue.enqueue.call_args_list]
    assert kinds == ["apply_ledger", "fulfill"]

def test_enqueue_failure_does_not_fail_the_event(memory_store):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    queue = MagicMock()
    queue.enqueue.side_effect = ConnectionError("redis down")

    result = payments_service.handle_event(MagicMock(), queue, _completed_event(ids=("t1",)))

    assert result["status"] == "ok"
    assert result["fulfillment"] == "not_queued"

def test_completed_event_without_ids_is_ignored(memory_store, queue):
    event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_x", "metadata": {"user_id": "u"}}}}
    assert payments_service.handle_event(MagicMock(), queue, event)["status"] == "ignored"

def test_legacy_single_id_key_is_accepted(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    event = {"type": "checkout.session.completed", "data": {"object": {
        "id": "cs_legacy", "payment_intent": "pi_9", "metadata": {"user_id": "user-1", "transaction_id": "t1"},
    }}}
    assert payments_service.handle_event(MagicMock(), queue, event)["status"] == "ok"

def test_expired_session_marks_pending_rows_failed(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.add_purchase("t2", status="completed")
    event = {"type": "checkout.session.expired", "data": {"object": {
        "id": "cs_1", "metadata": make_metadata("user-1", ["t1", "t2"]),
    }}}

    result = payments_service.handle_event(MagicMock(), queue, event)

    assert result == {"status": "expired", "failed": 1}
    assert memory_store.transactions["t1"]["status"] == "failed"
    assert memory_store.transactions["t2"]["status"] == "completed"
    assert memory_store.sessions["cs_1"] == "expired"
    queue.enqueue.assert_not_called()

def test_payment_failed_uses_intent_metadata(memory_store, queue):
    memory_store.add_purchase("t1")
    event = {"type": "payment_intent.payment_failed", "data": {"object": {
        "id": "pi_1", "metadata": make_metadata("user-1", ["t1"]),
    }}}

    result = payments_service.handle_event(MagicMock(), queue, event)

    assert result["status"] == "failed"
    assert memory_store.transactions["t1"]["failure_reason"] == "payment_intent.payment_failed"
    assert memory_store.sessions == {}

def test_unknown_event_type_is_ignored(queue):
    result = payments_service.handle_event(MagicMock(), queue, {"type": "customer.created", "data": {"object": {}}})
    assert result == {"status": "ignored", "type": "customer.created"}

def test_reconcile_replays_paid_session(memory_store, queue, monkeypatch):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    monkeypatch.setattr("impactly.payments.service.stripe_client.resolve_secret_key", lambda db: "sk_test")
    monkeypatch.setattr(
        "impactly.payments.service.stripe_client.get_session",
        lambda api_key, session_id: {
            "id": session_id, "payment_status": "paid", "payment_intent": "pi_7",
            "metadata": make_metadata("user-1", ["t1"]),
        },
    )
    result = payments_service.reconcile_session(MagicMock(), queue, "cs_9")
    assert result["status"] == "ok"
    assert memory_store.transactions["t1"]["stripe_session_id"] == "cs_9"

def test_reconcile_ignores_unpaid_session(queue, monkeypatch):
    monkeypatch.setattr("impactly.payments.service.stripe_client.resolve_secret_key", lambda db: "sk_test")
    monkeypatch.setattr(
        "impactly.payments.service.stripe_client.get_session",
        lambda api_key, session_id: {"id": session_id, "payment_status": "unpaid", "metadata": {}},
    )
    assert payments_service.reconcile_session(MagicMock(), queue, "cs_9") == {"status": "not_paid", "payment_status": "unpaid"}

def _declined_event(ids=("t1",)):
    return {"type": "payment_intent.payment_failed", "data": {"object": {
        "id": "pi_declined", "metadata": make_metadata("user-1", list(ids)),
    }}}

def test_declined_card_then_success_in_same_session_completes(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]

    declined = payments_service.handle_event(MagicMock(), queue, _declined_event())
    result = payments_service.handle_event(MagicMock(), queue, _completed_event(ids=("t1",)))

    assert declined["status"] == "failed"
    assert result["status"] == "ok"
    assert result["completed"] == 1
    assert result["failed"] == 0
    assert memory_store.transactions["t1"]["status"] == "completed"
    assert memory_store.transactions["t1"]["failure_reason"] is None
    assert memory_store.accounts["user-1"]["balance"] == 22
    queue.enqueue.assert_called_once_with("fulfill", {"session_id": "cs_1", "transaction_ids": ["t1"]})

def _failing_once(memory_store, monkeypatch):
    calls = {"n": 0}

    def apply(db, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("rpc timeout")
        return memory_store.apply_session_ledger(db, **kwargs)

    monkeypatch.setattr("impactly.ledger.repository.apply_session_ledger", apply)
    return calls

def test_ledger_failure_without_queue_is_recovered_on_redelivery(memory_store, monkeypatch):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    _failing_once(memory_store, monkeypatch)
    event = _completed_event(ids=("t1",))

    with pytest.raises(LedgerApplicationError):
        payments_service.handle_event(MagicMock(), None, event)
    assert memory_store.transactions["t1"]["status"] == "completed"
    assert memory_store.accounts == {}

    replay = payments_service.handle_event(MagicMock(), None, event)

    assert replay["status"] == "duplicate"
    assert replay["ledger"] == "applied"
    assert replay["fulfillment"] == "not_queued"
    assert memory_store.accounts["user-1"]["balance"] == 22

def test_interrupted_session_is_recovered_by_reconcile(memory_store, queue, monkeypatch):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    _failing_once(memory_store, monkeypatch)
    with pytest.raises(LedgerApplicationError):
        payments_service.handle_event(MagicMock(), None, _completed_event(ids=("t1",)))

    monkeypatch.setattr("impactly.payments.service.stripe_client.resolve_secret_key", lambda db: "sk_test")
    monkeypatch.setattr(
        "impactly.payments.service.stripe_client.get_session",
        lambda api_key, session_id: {
            "id": session_id, "payment_status": "paid", "payment_intent": "pi_1",
            "metadata": make_metadata("user-1", ["t1"]),
        },
    )
    result = payments_service.reconcile_session(MagicMock(), queue, "cs_1")
    again = payments_service.reconcile_session(MagicMock(), queue, "cs_1")

    assert result["ledger"] == "applied"
    assert again["ledger"] == "already_applied"
    assert memory_store.accounts["user-1"]["balance"] == 22
    assert len(memory_store.contributions) == 1
    # la réconciliation relance le fulfillment des lignes encore en attente
    assert [c.args[0] for c in queue.enqueue.call_args_list] == ["fulfill", "fulfill"]

def test_redelivery_after_fulfillment_dispatch_enqueues_nothing(memory_store, queue):
    memory_store.add_purchase("t1")
    memory_store.preferences["user-1"] = ["water"]
    event = _completed_event(ids=("t1",))
    payments_service.handle_event(MagicMock(), queue, event)

    replay = payments_service.handle_event(MagicMock(), queue, event)

    assert replay["ledger"] == "already_applied"
    assert replay["fulfillment"] == "none"
    assert queue.enqueue.call_count == 1
