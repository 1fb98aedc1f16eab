"""
Cas d'usage 'payments': machine d'état déclenchée par les événements Stripe.

- checkout.session.completed: pending -> completed (conditionnel), puis ledger, puis fulfillment (file)
- checkout.session.expired / payment_intent.payment_failed: pending -> failed
  (un refus de carte reste rattrapable par le succès de la même session)
- tout autre type: acquitté et ignoré
Une livraison répétée ne crédite ni n'émet rien deux fois: elle réapplique seulement le ledger,
idempotent par session, pour reprendre une chaîne interrompue.
"""
from typing import Any, Dict, List, Optional
import logging

from impactly.errors import LedgerApplicationError
from impactly.ledger import service as ledger_service
from . import repository
from . import stripe_client
from . import metadata as meta

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = {"checkout.session.completed"}
FAILURE_EVENTS = {
    "checkout.session.expired": "expired",
    "payment_intent.payment_failed": "failed",
}
COMPLETED_STATUSES = ledger_service.COMPLETED_STATUSES

def _payment_ref(obj: Dict[str, Any]) -> Optional[str]:
    """Identifiant du PaymentIntent (chaîne, ou objet développé)."""
    ref = obj.get("payment_intent")
    if isinstance(ref, dict):
        ref = ref.get("id")
    return ref or None

def _enqueue(queue, kind: str, payload: Dict[str, Any]) -> bool:
    if queue is None:
        logger.error("payments.enqueue skipped kind=%s payload=%s reason=no_queue", kind, payload)
        return False
    try:
        queue.enqueue(kind, payload)
        return True
    except Exception:
        logger.exception("payments.enqueue failed kind=%s payload=%s", kind, payload)
        return False

def _is_recoverable(row: Dict[str, Any]) -> bool:
    return row.get("status") == "failed" and row.get("failure_reason") in repository.RECOVERABLE_FAILURES

def _apply_ledger(db, queue, session_id: str, batch: List[Dict[str, Any]], default_cause: Optional[str]) -> str:
    """
    Applique le ledger du lot (idempotent par session).
    En échec, un rejeu 'apply_ledger' est planifié; sans file disponible l'erreur remonte
    (500) et c'est la livraison suivante de Stripe qui rejoue la session.
    """
    try:
        result = ledger_service.apply_completed_batch(db, session_id, batch, default_cause=default_cause)
        return "applied" if result.applied else "already_applied"
    except LedgerApplicationError:
        logger.exception("payments.completed ledger failed session_id=%s", session_id)
        ids = [str(r.get("id")) for r in batch]
        if _enqueue(queue, "apply_ledger", {"session_id": session_id, "transaction_ids": ids}):
            return "deferred"
        raise

def _dispatch_fulfillment(queue, session_id: str, rows: List[Dict[str, Any]]) -> str:
    ids = [
        str(r.get("id")) for r in rows
        if r.get("status") == "completed" and (r.get("fulfillment_status") or "pending") == "pending"
    ]
    if not ids:
        return "none"
    queued = _enqueue(queue, "fulfill", {"session_id": session_id, "transaction_ids": ids})
    return "queued" if queued else "not_queued"

def replay_completed(
    db,
    queue,
    session_id: str,
    rows: List[Dict[str, Any]],
    *,
    default_cause: Optional[str] = None,
    redispatch: bool = False,
) -> Dict[str, Any]:
    """
    Session déjà complétée (livraison répétée ou réconciliation).
    - Le ledger est réappliqué: sans effet si la session l'a déjà été.
    - S'il vient d'être appliqué (ou replanifié), la chaîne s'était interrompue avant le
      fulfillment: il est relancé.
    - redispatch=True (réconciliation) relance le fulfillment des lignes encore en attente.
    """
    batch = [r for r in rows if r.get("status") in COMPLETED_STATUSES and r.get("stripe_session_id") == session_id]
    if not batch:
        logger.info("payments.completed duplicate session_id=%s", session_id)
        return {"status": "duplicate", "session_id": session_id}

    ledger_status = _apply_ledger(db, queue, session_id, batch, default_cause)
    fulfillment = "none"
    if redispatch or ledger_status in ("applied", "deferred"):
        fulfillment = _dispatch_fulfillment(queue, session_id, batch)
    if ledger_status == "applied":
        logger.warning("payments.completed recovered interrupted session session_id=%s", session_id)
    else:
        logger.info("payments.completed duplicate session_id=%s ledger=%s", session_id, ledger_status)
    return {
        "status": "duplicate",
        "session_id": session_id,
        "ledger": ledger_status,
        "fulfillment": fulfillment,
    }

def handle_completed(
    db,
    queue,
    obj: Dict[str, Any],
    *,
    default_cause: Optional[str] = None,
    redispatch: bool = False,
) -> Dict[str, Any]:
    session_id = obj.get("id") or ""
    transaction_ids = meta.extract_transaction_ids(obj.get("metadata"))
    if not transaction_ids:
        logger.warning("payments.completed ignored session_id=%s reason=no_transaction_ids", session_id)
        return {"status": "ignored", "reason": "no_transaction_ids"}

    rows = repository.fetch_purchases(db, transaction_ids)
    if not rows:
        logger.error("payments.completed unknown transactions session_id=%s ids=%s", session_id, transaction_ids)
        return {"status": "ignored", "reason": "unknown_transactions"}

    failed = [r.get("id") for r in rows if r.get("status") == "failed" and not _is_recoverable(r)]
    if failed:
        # Paiement reçu pour des lignes déjà échouées: à réconcilier manuellement
        logger.error("payments.completed on failed rows session_id=%s ids=%s", session_id, failed)
    pending_ids = [str(r.get("id")) for r in rows if r.get("status") == "pending" or _is_recoverable(r)]
    if not pending_ids:
        if any(r.get("status") in COMPLETED_STATUSES for r in rows):
            return replay_completed(db, queue, session_id, rows, default_cause=default_cause, redispatch=redispatch)
        return {"status": "conflict", "session_id": session_id, "failed": len(failed)}

    transitioned = repository.mark_completed(
        db, pending_ids, payment_ref=_payment_ref(obj), session_id=session_id,
    )
    if not transitioned:
        status = "conflict" if failed else "duplicate"
        logger.info("payments.completed nothing transitioned session_id=%s status=%s", session_id, status)
        return {"status": status, "session_id": session_id, "failed": len(failed)}

    repository.update_session_status(db, session_id, "completed")
    logger.info("payments.completed session_id=%s completed=%s", session_id, len(transitioned))

    # La complétion n'est jamais annulée: les erreurs aval sont isolées
    ledger_status = _apply_ledger(db, queue, session_id, transitioned, default_cause)
    completed_ids = [str(r.get("id")) for r in transitioned]
    queued = _enqueue(queue, "fulfill", {"session_id": session_id, "transaction_ids": completed_ids})
    return {
        "status": "ok",
        "session_id": session_id,
        "completed": len(completed_ids),
        "failed": len(failed),
        "ledger": ledger_status,
        "fulfillment": "queued" if queued else "not_queued",
    }

def handle_failed(db, event_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
    session_status = FAILURE_EVENTS[event_type]
    transaction_ids = meta.extract_transaction_ids(obj.get("metadata"))
    if not transaction_ids:
        logger.warning("payments.%s ignored object_id=%s reason=no_transaction_ids", session_status, obj.get("id"))
        return {"status": "ignored", "reason": "no_transaction_ids"}

    rows = repository.mark_failed(db, transaction_ids, reason=event_type)
    # Seules les sessions Checkout portent un id "cs_..."; un PaymentIntent n'a pas de session connue
    session_id = obj.get("id") if event_type.startswith("checkout.session.") else None
    repository.update_session_status(db, session_id, session_status)
    logger.info("payments.%s object_id=%s failed=%s", session_status, obj.get("id"), len(rows))
    return {"status": session_status, "failed": len(rows)}

def handle_event(db, queue, event: Dict[str, Any], *, default_cause: Optional[str] = None) -> Dict[str, Any]:
    """
    Point d'entrée du webhook (événement déjà authentifié).
    - Retour: {"status": "ok" | "duplicate" | "conflict" | "expired" | "failed" | "ignored", ...}
    - Les erreurs de lecture/écriture avant complétion sont propagées (Stripe réessaie).
    """
    event_type = (event or {}).get("type") or ""
    obj = meta.extract_object(event)
    logger.info("payments.event id=%s type=%s object_id=%s", event.get("id"), event_type, obj.get("id"))
    if event_type in SUCCESS_EVENTS:
        return handle_completed(db, queue, obj, default_cause=default_cause)
    if event_type in FAILURE_EVENTS:
        return handle_failed(db, event_type, obj)
    return {"status": "ignored", "type": event_type}

def reconcile_session(db, queue, session_id: str, *, default_cause: Optional[str] = None) -> Dict[str, Any]:
    """
    Alternative sans webhook: relit la session Stripe et la rejoue si elle est payée.
    Idempotent: repose sur les mêmes transitions conditionnelles que le webhook.
    Une session déjà complétée voit son ledger réappliqué (sans effet s'il l'est déjà)
    et le fulfillment de ses lignes encore en attente relancé.
    """
    api_key = stripe_client.resolve_secret_key(db)
    session = stripe_client.get_session(api_key=api_key, session_id=session_id)
    payment_status = session.get("payment_status")
    if payment_status != "paid":
        logger.info("payments.reconcile not paid session_id=%s payment_status=%s", session_id, payment_status)
        return {"status": "not_paid", "payment_status": payment_status}
    logger.info("payments.reconcile replay session_id=%s", session_id)
    return handle_completed(db, queue, session, default_cause=default_cause, redispatch=True)
