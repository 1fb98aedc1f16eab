"""
Module 'checkout' (prise de commande): panier -> lignes 'transactions' pending -> session Stripe.
"""
from .service import create_checkout_session

__all__ = ["create_checkout_session"]
