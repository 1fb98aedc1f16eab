import time

from unittest.mock import MagicMock

from impactly.errors import LedgerApplicationError
from impactly.tasks import worker

def test_enqueue_reserve_ack(task_queue):
    task_queue.enqueue("fulfill", {"transaction_ids": ["t1"]})

    task = task_queue.reserve()
    assert task.kind == "fulfill"
    assert task.payload == {"transaction_ids": ["t1"]}
    assert task_queue.stats()["processing"] == 1

    task_queue.ack(task)
    assert task_queue.stats() == {"queued": 0, "processing": 0, "delayed": 0, "dead": 0}
    assert task_queue.reserve() is None

def test_tasks_are_consumed_in_order(task_queue):
    task_queue.enqueue("fulfill", {"n": 1})
    task_queue.enqueue("fulfill", {"n": 2})
    assert task_queue.reserve().payload == {"n": 1}
    assert task_queue.reserve().payload == {"n": 2}

def test_unacked_tasks_are_recovered(task_queue):
    task_queue.enqueue("apply_ledger", {"session_id": "cs_1"})
    task_queue.reserve()  # worker tué avant l'ack

    assert task_queue.recover_stale() == 1
    assert task_queue.reserve().payload == {"session_id": "cs_1"}

def test_retry_then_dead_letter(task_queue):
    task_queue.enqueue("fulfill", {"transaction_ids": ["t1"]})
    task = task_queue.reserve()

    assert task_queue.retry(task, "boom") is True
    assert task_queue.stats()["delayed"] == 1
    assert task_queue.reserve() is None  # pas encore éligible

    assert task_queue.promote_due(now=time.time() + 3600) == 1
    task = task_queue.reserve()
    assert task.attempts == 1
    assert task.last_error == "boom"

    task_queue.retry(task, "boom")
    task_queue.promote_due(now=time.time() + 3600)
    task = task_queue.reserve()
    assert task_queue.retry(task, "boom") is False
    assert task_queue.stats() == {"queued": 0, "processing": 0, "delayed": 0, "dead": 1}

def test_malformed_task_goes_to_dead_letter(task_queue):
    task_queue.redis.lpush(task_queue.name, "{not json")
    assert task_queue.reserve() is None
    assert task_queue.stats()["dead"] == 1

def test_retry_delay_is_capped(task_queue):
    assert task_queue.retry_delay(1) == 1
    assert task_queue.retry_delay(3) == 4
    assert task_queue.retry_delay(20) == 300

def test_worker_acks_successful_fulfillment(task_queue, monkeypatch):
    monkeypatch.setattr("impactly.tasks.worker.fulfillment_service.fulfill_purchases",
                        lambda db, catalog, ids: [{"transaction_id": t, "status": "fulfilled"} for t in ids])
    task_queue.enqueue("fulfill", {"session_id": "cs_1", "transaction_ids": ["t1", "t2"]})

    task = worker.run_once(task_queue, MagicMock(), MagicMock())

    assert task.kind == "fulfill"
    assert task_queue.stats()["processing"] == 0
    assert task_queue.stats()["delayed"] == 0

def test_worker_retries_only_rows_left_in_error(task_queue, monkeypatch):
    monkeypatch.setattr("impactly.tasks.worker.fulfillment_service.fulfill_purchases", lambda db, catalog, ids: [
        {"transaction_id": "t1", "status": "fulfilled"},
        {"transaction_id": "t2", "status": "error", "error": "timeout"},
    ])
    task_queue.enqueue("fulfill", {"session_id": "cs_1", "transaction_ids": ["t1", "t2"]})

    worker.run_once(task_queue, MagicMock(), MagicMock())
    task_queue.promote_due(now=time.time() + 3600)
    retried = task_queue.reserve()

    assert retried.payload == {"session_id": "cs_1", "transaction_ids": ["t2"]}
    assert retried.attempts == 1

def test_worker_retries_failed_ledger_application(task_queue, monkeypatch):
    calls = []

    def reapply(db, session_id, ids):
        calls.append((session_id, ids))
        raise LedgerApplicationError("db down")

    monkeypatch.setattr("impactly.tasks.worker.ledger_service.reapply_session", reapply)
    task_queue.enqueue("apply_ledger", {"session_id": "cs_1", "transaction_ids": ["t1"]})

    worker.run_once(task_queue, MagicMock(), MagicMock())

    assert calls == [("cs_1", ["t1"])]
    assert task_queue.stats()["delayed"] == 1
    assert task_queue.stats()["processing"] == 0

def test_worker_buries_unknown_task_kind(task_queue):
    task_queue.enqueue("send_newsletter", {})
    worker.run_once(task_queue, MagicMock(), MagicMock())
    assert task_queue.stats() == {"queued": 0, "processing": 0, "delayed": 0, "dead": 1}
