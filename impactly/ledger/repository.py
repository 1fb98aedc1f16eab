"""
Accès aux données du ledger.
- Écriture: un seul appel RPC 'apply_session_ledger' (transaction Postgres) qui
  réserve la session dans ledger_applications (clé unique), incrémente le compte
  par delta atomique et insère contributions + historique.
- Lectures: préférences caritatives (obligatoire, propagée) et vues d'impact (best-effort).
"""
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# module impactly.ledger.repository
def fetch_charity_preferences(db, user_id: str) -> List[str]:
    """
    Causes choisies par l'utilisateur, triées par priority_order.
    Erreur propagée: sans préférences fiables on ne doit pas tout attribuer à la cause par défaut.
    """
    try:
        res = (
            db.table("user_charity_preferences")
            .select("nonprofit_slug, priority_order")
            .eq("user_id", user_id)
            .order("priority_order")
            .execute()
        )
    except Exception:
        logger.exception("ledger.repository.fetch_charity_preferences failed user_id=%s", user_id)
        raise
    return [str(r.get("nonprofit_slug")) for r in (res.data or []) if r.get("nonprofit_slug")]

def apply_session_ledger(
    db,
    *,
    session_id: str,
    user_id: str,
    credits: int,
    contributions: List[Dict[str, Any]],
    purchases: List[Dict[str, Any]],
) -> bool:
    """
    Applique le lot d'une session de façon atomique.
    Retourne False si la session était déjà appliquée (contrainte unique sur ledger_applications).
    """
    params = {
        "p_session_id": session_id,
        "p_user_id": user_id,
        "p_credits": int(credits),
        "p_contributions": contributions,
        "p_purchases": purchases,
    }
    try:
        res = db.rpc("apply_session_ledger", params).execute()
    except Exception:
        logger.exception("ledger.repository.apply_session_ledger failed session_id=%s", session_id)
        raise
    data = res.data
    if isinstance(data, list):
        data = data[0] if data else False
    return bool(data)

def get_ledger_account(db, user_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            db.table("user_pact_credits")
            .select("balance, lifetime_earned")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("ledger.repository.get_ledger_account failed user_id=%s", user_id)
        return None

def list_contributions(db, user_id: str) -> List[Dict[str, Any]]:
    try:
        res = (
            db.table("charity_treasury")
            .select("nonprofit_slug, amount, session_id, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("ledger.repository.list_contributions failed user_id=%s", user_id)
        return []

def list_purchase_history(db, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    try:
        res = (
            db.table("user_purchases")
            .select("transaction_id, product_name, purchase_amount, profit_amount, charity_split_amount, credits_earned, gift_card_code, purchase_date")
            .eq("user_id", user_id)
            .order("purchase_date", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("ledger.repository.list_purchase_history failed user_id=%s", user_id)
        return []
