"""
Accès aux données pour la feature 'fulfillment' (tables 'transactions', 'user_purchases').
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# module impactly.fulfillment.repository
def fetch_purchases(db, transaction_ids: List[str]) -> List[Dict[str, Any]]:
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
        logger.exception("fulfillment.repository.fetch_purchases failed ids=%s", transaction_ids)
        raise

def get_user_email(db, user_id: str) -> Optional[str]:
    """Email du compte Supabase Auth (best-effort, None si introuvable)."""
    if not user_id:
        return None
    try:
        res = db.auth.admin.get_user_by_id(user_id)
        user = getattr(res, "user", None)
        return getattr(user, "email", None) or None
    except Exception:
        logger.exception("fulfillment.repository.get_user_email failed user_id=%s", user_id)
        return None

def mark_fulfilled(db, transaction_id: str, *, code: str, recipient_email: str) -> bool:
    """
    completed -> fulfilled avec le code émis.
    Conditionnel sur fulfillment_status='pending': un second passage ne réécrit rien.
    """
    try:
        res = (
            db.table("transactions")
            .update({
                "status": "fulfilled",
                "fulfillment_status": "fulfilled",
                "gift_card_code": code,
                "recipient_email": recipient_email,
                "fulfillment_error": None,
                "fulfilled_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("id", transaction_id)
            .eq("fulfillment_status", "pending")
            .execute()
        )
        return bool(res.data)
    except Exception:
        logger.exception("fulfillment.repository.mark_fulfilled failed id=%s", transaction_id)
        raise

def copy_code_to_history(db, transaction_id: str, *, code: str, recipient_email: str) -> bool:
    """Recopie le code sur la ligne d'historique (best-effort)."""
    try:
        (
            db.table("user_purchases")
            .update({"gift_card_code": code, "recipient_email": recipient_email})
            .eq("transaction_id", transaction_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("fulfillment.repository.copy_code_to_history failed id=%s", transaction_id)
        return False

def mark_fulfillment_failed(db, transaction_id: str, error: str) -> bool:
    """Échec définitif (pas de nouvelle tentative automatique). Le statut de paiement reste 'completed'."""
    try:
        (
            db.table("transactions")
            .update({"fulfillment_status": "failed", "fulfillment_error": error})
            .eq("id", transaction_id)
            .eq("fulfillment_status", "pending")
            .execute()
        )
        return True
    except Exception:
        logger.exception("fulfillment.repository.mark_fulfillment_failed failed id=%s", transaction_id)
        return False

def record_fulfillment_error(db, transaction_id: str, error: str, attempts: int) -> bool:
    """Erreur transitoire: la ligne reste 'pending' côté fulfillment et sera retentée."""
    try:
        (
            db.table("transactions")
            .update({"fulfillment_error": error, "fulfillment_attempts": attempts})
            .eq("id", transaction_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("fulfillment.repository.record_fulfillment_error failed id=%s", transaction_id)
        return False

def record_provider_order(db, transaction_id: str, provider_transaction_id: int) -> bool:
    """Mémorise la transaction Reloadly d'une commande acceptée (best-effort, journalisé en erreur)."""
    try:
        (
            db.table("transactions")
            .update({"provider_transaction_id": provider_transaction_id})
            .eq("id", transaction_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception(
            "fulfillment.repository.record_provider_order failed id=%s provider_transaction=%s",
            transaction_id, provider_transaction_id,
        )
        return False
