import os

# Avant tout import de l'application: pas de Redis réel ni de rate limiting en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("USE_FAKE_REDIS_FOR_TESTS", "1")

import threading
from typing import Any, Dict, Generator, List
from unittest.mock import MagicMock

import fakeredis
import pytest
from fastapi.testclient import TestClient

from impactly.app_setup.dependencies import get_catalog, get_db
from impactly.app_setup.factory import create_app
from impactly.payments.repository import RECOVERABLE_FAILURES
from impactly.pricing import PricingConfig
from impactly.tasks.queue import TaskQueue
from impactly.utils.money import D
from impactly.utils.security import require_user

TEST_USER: Dict[str, Any] = {"id": "test-user", "email": "test@example.com"}

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture()
def fake_db() -> MagicMock:
    return MagicMock(name="supabase")

@pytest.fixture()
def fake_catalog() -> MagicMock:
    return MagicMock(name="catalog")

@pytest.fixture()
def pricing_config() -> PricingConfig:
    return PricingConfig(
        markup_percent=D("5"),
        company_split_percent=D("50"),
        charity_split_percent=D("50"),
        credits_multiplier=D("10"),
    )

@pytest.fixture()
def task_queue() -> TaskQueue:
    server = fakeredis.FakeServer()
    return TaskQueue(fakeredis.FakeRedis(server=server, decode_responses=True), "test:tasks", max_attempts=3, retry_base_delay=1)

@pytest.fixture()
def app(fake_db, fake_catalog):
    application = create_app()
    application.dependency_overrides[get_db] = lambda: fake_db
    application.dependency_overrides[get_catalog] = lambda: fake_catalog
    application.dependency_overrides[require_user] = lambda: dict(TEST_USER)
    yield application
    application.dependency_overrides.clear()

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

class MemoryStore:
    """
    Double en mémoire des tables transactions / ledger.
    Chaque écriture prend un verrou, comme une transaction Postgres: les mises à jour
    conditionnelles et la réservation de session se comportent comme en base.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, str] = {}
        self.applied_sessions: List[str] = []
        self.accounts: Dict[str, Dict[str, int]] = {}
        self.contributions: List[Dict[str, Any]] = []
        self.history: List[Dict[str, Any]] = []
        self.preferences: Dict[str, List[str]] = {}

    def add_purchase(self, tid: str, user_id: str = "user-1", *, charity_share="2.25", credits=22, status="pending", failure_reason=None):
        self.transactions[tid] = {
            "id": tid,
            "user_id": user_id,
            "product_id": 1,
            "product_name": "Test Card",
            "product_amount": "100.00",
            "purchase_price": "94.50",
            "profit_amount": "4.50",
            "charity_share": charity_share,
            "credits_earned": credits,
            "status": status,
            "failure_reason": failure_reason,
            "fulfillment_status": "pending",
        }

    # payments.repository
    def fetch_purchases(self, db, transaction_ids):
        return [dict(self.transactions[t]) for t in transaction_ids if t in self.transactions]

    def mark_completed(self, db, transaction_ids, *, payment_ref, session_id):
        with self.lock:
            moved = []
            for tid in transaction_ids:
                row = self.transactions.get(tid)
                declined = row and row["status"] == "failed" and row.get("failure_reason") in RECOVERABLE_FAILURES
                if row and (row["status"] == "pending" or declined):
                    row.update(status="completed", stripe_payment_id=payment_ref, stripe_session_id=session_id, failure_reason=None)
                    moved.append(dict(row))
            return moved

    def mark_failed(self, db, transaction_ids, reason):
        with self.lock:
            moved = []
            for tid in transaction_ids:
                row = self.transactions.get(tid)
                if row and row["status"] == "pending":
                    row.update(status="failed", failure_reason=reason)
                    moved.append(dict(row))
            return moved

    def update_session_status(self, db, session_id, status):
        if session_id:
            self.sessions[session_id] = status
        return True

    # ledger.repository
    def fetch_charity_preferences(self, db, user_id):
        return list(self.preferences.get(user_id, []))

    def apply_session_ledger(self, db, *, session_id, user_id, credits, contributions, purchases):
        with self.lock:
            if session_id in self.applied_sessions:
                return False
            self.applied_sessions.append(session_id)
            account = self.accounts.setdefault(user_id, {"balance": 0, "lifetime_earned": 0})
            account["balance"] += credits
            account["lifetime_earned"] += credits
            for c in contributions:
                self.contributions.append({"session_id": session_id, "user_id": user_id, **c})
            self.history.extend(purchases)
            return True

    def install(self, monkeypatch):
        for name in ("fetch_purchases", "mark_completed", "mark_failed", "update_session_status"):
            monkeypatch.setattr(f"impactly.payments.repository.{name}", getattr(self, name))
        for name in ("fetch_charity_preferences", "apply_session_ledger"):
            monkeypatch.setattr(f"impactly.ledger.repository.{name}", getattr(self, name))
        return self

@pytest.fixture()
def memory_store(monkeypatch) -> MemoryStore:
    return MemoryStore().install(monkeypatch)
