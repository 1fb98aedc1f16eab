"""
Feature 'fulfillment': émission des cartes cadeaux pour les achats complétés.
"""
from .service import fulfill_purchases

__all__ = ["fulfill_purchases"]
