"""
Cas d'usage 'fulfillment': émet une carte par achat complété, ligne par ligne.

- éligible: status='completed' et fulfillment_status='pending' (sinon ignoré)
- email du destinataire: celui de la ligne, sinon celui du compte utilisateur
- une erreur fournisseur est enregistrée sur la ligne et n'interrompt pas le lot
- la transaction Reloadly est mémorisée dès la commande: une nouvelle tentative relit les codes
  au lieu de commander une seconde fois
- aucun code factice n'est jamais produit
"""
from typing import Any, Dict, List, Optional
import logging

from impactly.errors import CatalogUnavailable, FulfillmentError, ImpactlyError
from . import repository

logger = logging.getLogger(__name__)

def is_eligible(row: Dict[str, Any]) -> bool:
    return row.get("status") == "completed" and (row.get("fulfillment_status") or "pending") == "pending"

def resolve_recipient_email(db, row: Dict[str, Any]) -> Optional[str]:
    return row.get("recipient_email") or repository.get_user_email(db, str(row.get("user_id") or ""))

def fulfill_one(db, catalog, row: Dict[str, Any]) -> Dict[str, Any]:
    tid = str(row.get("id"))
    email = resolve_recipient_email(db, row)
    if not email:
        error = "Aucun email destinataire"
        repository.mark_fulfillment_failed(db, tid, error)
        logger.error("fulfillment.failed id=%s reason=no_email", tid)
        return {"transaction_id": tid, "status": "failed", "error": error}

    provider_id = row.get("provider_transaction_id")
    try:
        issued = catalog.issue_gift_card(
            int(row.get("product_id")),
            1,
            row.get("product_amount"),
            email,
            custom_identifier=tid,
            provider_transaction_id=int(provider_id) if provider_id else None,
            on_order_placed=lambda order_id: repository.record_provider_order(db, tid, order_id),
        )
    except (FulfillmentError, CatalogUnavailable) as e:
        attempts = int(row.get("fulfillment_attempts") or 0) + 1
        repository.record_fulfillment_error(db, tid, e.detail, attempts)
        logger.warning("fulfillment.error id=%s attempts=%s error=%s", tid, attempts, e.detail)
        return {"transaction_id": tid, "status": "error", "error": e.detail, "retryable": True}
    except ImpactlyError as e:
        # Configuration fournisseur absente, produit disparu...: pas de nouvelle tentative automatique
        repository.mark_fulfillment_failed(db, tid, e.detail)
        logger.error("fulfillment.failed id=%s error=%s", tid, e.detail)
        return {"transaction_id": tid, "status": "failed", "error": e.detail}

    if not repository.mark_fulfilled(db, tid, code=issued.code, recipient_email=email):
        # Un autre passage a terminé la ligne entre-temps
        logger.warning("fulfillment.already_fulfilled id=%s provider_transaction=%s", tid, issued.transaction_id)
        return {"transaction_id": tid, "status": "skipped"}
    repository.copy_code_to_history(db, tid, code=issued.code, recipient_email=email)
    logger.info("fulfillment.fulfilled id=%s provider_transaction=%s", tid, issued.transaction_id)
    return {"transaction_id": tid, "status": "fulfilled"}

def fulfill_purchases(db, catalog, transaction_ids: List[str]) -> List[Dict[str, Any]]:
    """
    Émet les cartes des achats donnés.
    Retour: une entrée par identifiant {transaction_id, status: fulfilled|skipped|failed|error|not_found}.
    """
    rows = {str(r.get("id")): r for r in repository.fetch_purchases(db, transaction_ids)}
    results: List[Dict[str, Any]] = []
    for tid in transaction_ids:
        row = rows.get(str(tid))
        if row is None:
            results.append({"transaction_id": str(tid), "status": "not_found"})
        elif not is_eligible(row):
            results.append({"transaction_id": str(tid), "status": "skipped"})
        else:
            results.append(fulfill_one(db, catalog, row))
    return results

def retryable_ids(results: List[Dict[str, Any]]) -> List[str]:
    return [r["transaction_id"] for r in results if r.get("status") == "error"]
