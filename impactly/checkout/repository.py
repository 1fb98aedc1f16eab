"""
Accès aux données pour la prise de commande (tables 'transactions', 'payment_sessions').
"""
from typing import Any, Dict, List
import logging

logger = logging.getLogger(__name__)

# module impactly.checkout.repository
def insert_pending_purchases(db, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Insère toutes les lignes 'pending' en un seul appel (une seule instruction SQL: tout ou rien).
    Les erreurs sont journalisées puis propagées: la prise de commande doit échouer.
    """
    if not rows:
        return []
    try:
        res = db.table("transactions").insert(rows).execute()
        return res.data or []
    except Exception:
        logger.exception("checkout.repository.insert_pending_purchases failed count=%s", len(rows))
        raise

def abandon_pending_purchases(db, transaction_ids: List[str], reason: str) -> int:
    """
    Nettoyage best-effort quand la session de paiement n'a pas pu être créée.
    - Ne touche que les lignes encore 'pending' (jamais de complétion automatique).
    """
    if not transaction_ids:
        return 0
    try:
        res = (
            db.table("transactions")
            .update({"status": "failed", "failure_reason": reason})
            .in_("id", transaction_ids)
            .eq("status", "pending")
            .execute()
        )
        return len(res.data or [])
    except Exception:
        logger.exception("checkout.repository.abandon_pending_purchases failed ids=%s", transaction_ids)
        return 0

def record_payment_session(db, session_id: str, user_id: str, transaction_ids: List[str]) -> bool:
    """Miroir local de la session (best-effort: les métadonnées Stripe restent la référence)."""
    try:
        db.table("payment_sessions").insert({
            "id": session_id,
            "user_id": user_id,
            "transaction_ids": transaction_ids,
            "status": "pending",
        }).execute()
        return True
    except Exception:
        logger.exception("checkout.repository.record_payment_session failed session_id=%s", session_id)
        return False
