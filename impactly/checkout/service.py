"""
Cas d'usage 'checkout': orchestre catalogue, moteur de prix, repository et Stripe.

Ordre des opérations (aucune écriture tant que tout le panier n'est pas validé):
  1) validation du panier et de la configuration (prix, clé Stripe)
  2) pour chaque ligne: produit du catalogue, contrôle de la valeur faciale, calcul du prix
  3) insertion en un seul appel des N lignes 'pending' (une par unité)
  4) création de la session Stripe avec les identifiants en métadonnées
"""
from typing import Any, Dict, List
from uuid import uuid4
import logging

from impactly import config
from impactly.errors import PaymentSystemUnavailable, Unauthorized
from impactly.pricing import compute_pricing, load_pricing_config
from impactly.payments import metadata as meta
from impactly.payments import stripe_client
from . import cart as cart_logic
from . import repository

logger = logging.getLogger(__name__)

def default_return_urls(base_url: str | None = None) -> Dict[str, str]:
    base = (base_url or config.BASE_URL).rstrip("/")
    return {
        "success_url": f"{base}{config.CHECKOUT_SUCCESS_PATH}",
        "cancel_url": f"{base}{config.CHECKOUT_CANCEL_PATH}",
    }

def build_purchases(catalog, lines: List[cart_logic.CartLine], user_id: str, pricing_config, currency: str):
    """
    Construit (rows, line_items) sans aucune écriture.
    - La valeur faciale est contrôlée contre la liste du catalogue (InvalidDenomination sinon).
    - Une ligne 'transactions' par unité de quantité, identifiant généré ici (uuid4).
    """
    rows: List[Dict[str, Any]] = []
    line_items: List[Dict[str, Any]] = []
    products = {}
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            product = catalog.get_product_by_id(line.product_id)
            products[line.product_id] = product
        cost_price = product.cost_price_for(line.denomination)
        pricing = compute_pricing(cost_price, line.denomination, pricing_config)

        brand = product.brand_name or line.brand_name
        face_currency = product.recipient_currency or line.currency
        line_items.append(cart_logic.to_line_item(
            name=f"{brand} Gift Card",
            description=f"{face_currency} {line.denomination}".strip(),
            unit_price=pricing.purchase_price,
            quantity=line.quantity,
            currency=currency,
            images=product.logo_urls,
        ))
        for _ in range(line.quantity):
            row = {
                "id": str(uuid4()),
                "user_id": user_id,
                "product_id": product.product_id,
                "product_name": product.product_name or line.product_name,
                "brand_name": brand,
                "currency": face_currency,
                "status": "pending",
                "fulfillment_status": "pending",
            }
            row.update(pricing.as_row())
            rows.append(row)
    return rows, line_items

def create_checkout_session(
    db,
    catalog,
    *,
    user_id: str,
    items: Any,
    success_url: str,
    cancel_url: str,
    customer_email: str | None = None,
) -> Dict[str, Any]:
    """
    Prépare les achats 'pending' et ouvre la session Stripe.
    Retour: {"sessionId": "cs_...", "url": "https://..."}
    Erreurs: Unauthorized, EmptyCart, InvalidCartItem, InvalidDenomination, ProductNotFound,
             ConfigurationError, PaymentSystemUnavailable, CatalogUnavailable.
    """
    if not user_id:
        raise Unauthorized()
    lines = cart_logic.parse_cart(items)

    api_key = stripe_client.resolve_secret_key(db)
    if not api_key:
        raise PaymentSystemUnavailable("Système de paiement non configuré")
    pricing_config = load_pricing_config(db)

    rows, line_items = build_purchases(catalog, lines, user_id, pricing_config, config.STRIPE_CURRENCY)
    transaction_ids = [row["id"] for row in rows]
    metadata = meta.make_metadata(user_id, transaction_ids)

    repository.insert_pending_purchases(db, rows)
    logger.info("checkout.pending_created user_id=%s count=%s", user_id, len(rows))

    try:
        session = stripe_client.create_session(
            api_key=api_key,
            line_items=line_items,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            customer_email=customer_email,
        )
    except PaymentSystemUnavailable:
        abandoned = repository.abandon_pending_purchases(db, transaction_ids, "checkout_session_unavailable")
        logger.warning("checkout.session_failed user_id=%s abandoned=%s", user_id, abandoned)
        raise

    repository.record_payment_session(db, session["id"], user_id, transaction_ids)
    return {"sessionId": session["id"], "url": session["url"]}
