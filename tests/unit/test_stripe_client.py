import hashlib
import hmac
import json
import time

import pytest
import stripe
from unittest.mock import MagicMock

from impactly.errors import ConfigurationError, InvalidSignature, PaymentSystemUnavailable
from impactly.payments import stripe_client

SECRET = "whsec_test_secret"

def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"

def test_verify_event_accepts_valid_signature():
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}).encode()
    event = stripe_client.verify_event(payload, sign(payload), SECRET)
    assert isinstance(event, dict)
    assert event["data"]["object"]["id"] == "cs_1"

@pytest.mark.parametrize("header", [None, "", "t=1,v1=deadbeef"])
def test_verify_event_rejects_bad_signature(header):
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
    with pytest.raises(InvalidSignature):
        stripe_client.verify_event(payload, header, SECRET)

def test_verify_event_rejects_signature_from_other_secret():
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
    with pytest.raises(InvalidSignature):
        stripe_client.verify_event(payload, sign(payload, "whsec_other"), SECRET)

def test_verify_event_requires_secret():
    with pytest.raises(ConfigurationError):
        stripe_client.verify_event(b"{}", "t=1,v1=x", "")

def test_resolve_keys_env_then_settings(monkeypatch):
    monkeypatch.setattr("impactly.payments.stripe_client.config.STRIPE_SECRET_KEY", "")
    monkeypatch.setattr("impactly.payments.stripe_client.settings_repository.get_setting",
                        lambda db, key: {"stripe_secret_key": "sk_from_db"}.get(key))
    assert stripe_client.resolve_secret_key(MagicMock()) == "sk_from_db"

    monkeypatch.setattr("impactly.payments.stripe_client.config.STRIPE_SECRET_KEY", "sk_from_env")
    assert stripe_client.resolve_secret_key(MagicMock()) == "sk_from_env"

def test_create_session_passes_api_key_per_call(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return MagicMock(id="cs_1", url="https://checkout.stripe.test/cs_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    md = {"user_id": "u1", "transaction_ids": "t1,t2"}

    session = stripe_client.create_session(
        api_key="sk_test", line_items=[], success_url="https://s", cancel_url="https://c", metadata=md,
    )

    assert session == {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
    assert captured["api_key"] == "sk_test"
    assert captured["mode"] == "payment"
    assert captured["payment_intent_data"] == {"metadata": md}
    assert stripe.api_key != "sk_test"

def test_create_session_wraps_stripe_errors(monkeypatch):
    def failing_create(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", failing_create)
    with pytest.raises(PaymentSystemUnavailable):
        stripe_client.create_session(api_key="sk_test", line_items=[], success_url="s", cancel_url="c", metadata={})
