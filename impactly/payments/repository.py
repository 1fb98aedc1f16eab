"""
Accès aux données pour la feature 'payments' (tables 'transactions', 'payment_sessions').

Les transitions de statut sont conditionnelles (`.eq("status", "pending")`): seule la
première livraison d'un événement fait passer une ligne, les suivantes ne touchent rien.
Exception: un refus de carte n'est pas terminal tant que la session Checkout est ouverte.
"""
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# Refus de carte: la session Checkout reste ouverte et peut encore aboutir
RECOVERABLE_FAILURES = ("payment_intent.payment_failed",)

# module impactly.payments.repository
def fetch_purchases(db, transaction_ids: List[str]) -> List[Dict[str, Any]]:
    """
    Lit les achats par identifiants.
    Les erreurs sont propagées: le webhook doit répondre 500 pour que Stripe réessaie.
    """
    if not transaction_ids:
        return []
    try:
        res = (
            db.table("transactions")
            .select("*")
            .in_("id", [str(t) for t in transaction_ids])
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("payments.repository.fetch_purchases failed ids=%s", transaction_ids)
        raise

def mark_completed(
    db,
    transaction_ids: List[str],
    *,
    payment_ref: Optional[str],
    session_id: str,
) -> List[Dict[str, Any]]:
    """
    pending -> completed, en enregistrant la référence de paiement et la session.
    Une ligne échouée sur un refus de carte (RECOVERABLE_FAILURES) repasse aussi en completed:
    Checkout laisse le client réessayer dans la même session.
    Retourne uniquement les lignes effectivement transitionnées par cet appel.
    """
    if not transaction_ids:
        return []
    values = {
        "status": "completed",
        "stripe_payment_id": payment_ref,
        "stripe_session_id": session_id,
    }
    try:
        res = (
            db.table("transactions")
            .update(values)
            .in_("id", transaction_ids)
            .eq("status", "pending")
            .execute()
        )
        recovered = (
            db.table("transactions")
            .update({**values, "failure_reason": None})
            .in_("id", transaction_ids)
            .eq("status", "failed")
            .in_("failure_reason", list(RECOVERABLE_FAILURES))
            .execute()
        )
    except Exception:
        logger.exception("payments.repository.mark_completed failed session_id=%s", session_id)
        raise
    if recovered.data:
        logger.warning(
            "payments.repository.mark_completed recovered declined rows session_id=%s ids=%s",
            session_id, [r.get("id") for r in recovered.data],
        )
    return (res.data or []) + (recovered.data or [])

def mark_failed(db, transaction_ids: List[str], reason: str) -> List[Dict[str, Any]]:
    """pending -> failed; une ligne déjà complétée n'est jamais rétrogradée."""
    if not transaction_ids:
        return []
    try:
        res = (
            db.table("transactions")
            .update({"status": "failed", "failure_reason": reason})
            .in_("id", transaction_ids)
            .eq("status", "pending")
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("payments.repository.mark_failed failed ids=%s", transaction_ids)
        raise

def update_session_status(db, session_id: Optional[str], status: str) -> bool:
    """Met à jour le miroir local de la session (best-effort)."""
    if not session_id:
        return False
    try:
        db.table("payment_sessions").update({"status": status}).eq("id", session_id).execute()
        return True
    except Exception:
        logger.exception("payments.repository.update_session_status failed session_id=%s", session_id)
        return False
