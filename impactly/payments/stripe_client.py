"""
Adaptateur Stripe: centralise les appels et la vérification des webhooks.
- La clé API est passée à chaque appel (api_key=...), jamais posée sur le module stripe.
- Les objets Stripe sont convertis en dict simples pour le reste de l'application.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from impactly import config
from impactly.errors import ConfigurationError, InvalidSignature, PaymentSystemUnavailable
from impactly.settings import repository as settings_repository

logger = logging.getLogger(__name__)

# module impactly.payments.stripe_client
def resolve_secret_key(db) -> str:
    """STRIPE_SECRET_KEY de l'environnement, sinon app_settings.stripe_secret_key, sinon ''."""
    if config.STRIPE_SECRET_KEY:
        return config.STRIPE_SECRET_KEY
    return settings_repository.get_setting(db, "stripe_secret_key") or ""

def resolve_webhook_secret(db) -> str:
    if config.STRIPE_WEBHOOK_SECRET:
        return config.STRIPE_WEBHOOK_SECRET
    return settings_repository.get_setting(db, "stripe_webhook_secret") or ""

def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)

def create_session(
    *,
    api_key: str,
    line_items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, str],
    customer_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (mode paiement).
    - metadata est aussi recopiée sur le PaymentIntent pour résoudre payment_intent.payment_failed
    - Toute erreur Stripe devient PaymentSystemUnavailable
    Retour: {"id": "cs_...", "url": "https://checkout.stripe.com/..."}
    """
    if not api_key:
        raise PaymentSystemUnavailable("Système de paiement non configuré")
    params: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": line_items,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    if customer_email:
        params["customer_email"] = customer_email
    try:
        session = stripe.checkout.Session.create(api_key=api_key, **params)
    except stripe.StripeError as e:
        logger.exception("stripe_client.create_session failed")
        raise PaymentSystemUnavailable(f"Création de la session de paiement impossible: {e.user_message or 'erreur Stripe'}")
    return {"id": session.id, "url": session.url}

def get_session(*, api_key: str, session_id: str) -> Dict[str, Any]:
    """Lit une session Checkout (id, payment_status, payment_intent, metadata...)."""
    if not api_key:
        raise PaymentSystemUnavailable("Système de paiement non configuré")
    try:
        session = stripe.checkout.Session.retrieve(session_id, api_key=api_key)
    except stripe.StripeError as e:
        logger.exception("stripe_client.get_session failed session_id=%s", session_id)
        raise PaymentSystemUnavailable(f"Session introuvable: {e.user_message or 'erreur Stripe'}")
    return _as_dict(session)

def verify_event(payload: bytes, sig_header: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Valide la signature d'un événement webhook AVANT de parser le corps.
    - Secret absent -> ConfigurationError (500)
    - En-tête absent ou signature invalide -> InvalidSignature (400, non rejouable)
    Retour: l'événement sous forme de dict JSON.
    """
    if not secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET manquant")
    if not sig_header:
        raise InvalidSignature("En-tête Stripe-Signature absent")
    try:
        stripe.Webhook.construct_event(payload, sig_header, secret)
    except stripe.SignatureVerificationError:
        raise InvalidSignature("Signature Stripe invalide")
    except ValueError:
        raise InvalidSignature("Payload webhook illisible")
    try:
        event = json.loads(payload)
    except ValueError:
        raise InvalidSignature("Payload webhook illisible")
    if not isinstance(event, dict) or not event.get("type"):
        raise InvalidSignature("Événement webhook malformé")
    return event
