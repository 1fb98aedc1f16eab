# module impactly.checkout.views

"""Endpoints de la prise de commande.
- /api/v1/checkout/create-session: crée les achats 'pending' et la session Stripe (authentifié, rate-limité).
Sécurité:
- require_user: l'identifiant utilisateur vient du token, jamais du corps de la requête.
- optional_rate_limit: limite la fréquence de création de sessions.
"""
from typing import Any, Dict, List
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from impactly.app_setup.dependencies import get_catalog, get_db
from impactly.utils.rate_limit import optional_rate_limit
from impactly.utils.security import require_user
from . import service as checkout_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])

class CheckoutRequest(BaseModel):
    # Lignes brutes validées par checkout.cart.parse_cart (EmptyCart/InvalidCartItem)
    items: List[Dict[str, Any]] = []

@router.post("/create-session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_session(
    body: CheckoutRequest,
    user: Dict[str, Any] = Depends(require_user),
    db=Depends(get_db),
    catalog=Depends(get_catalog),
):
    """
    Crée une session Checkout Stripe pour le panier de l'utilisateur authentifié.
    - Entrée JSON: { "items": [ { "productId": 123, "denomination": 25, "quantity": 2 }, ... ] }
    - Sortie: { "sessionId": "cs_...", "url": "https://checkout.stripe.com/..." }
    - Erreurs: 400 (panier/valeur faciale), 401, 500 (configuration), 502/503 (catalogue/Stripe)
    Les appels bloquants (Supabase, Reloadly, Stripe) tournent dans le threadpool.
    """
    urls = checkout_service.default_return_urls()
    return await run_in_threadpool(
        checkout_service.create_checkout_session,
        db,
        catalog,
        user_id=user.get("id"),
        items=body.items,
        success_url=urls["success_url"],
        cancel_url=urls["cancel_url"],
        customer_email=user.get("email"),
    )
