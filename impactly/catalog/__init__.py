"""
Collaborateur catalogue/émission (Reloadly): prix de revient, valeurs faciales supportées, commandes.
"""
from .models import CatalogProduct, IssuedOrder
from .client import ReloadlyClient

__all__ = ["CatalogProduct", "IssuedOrder", "ReloadlyClient"]
