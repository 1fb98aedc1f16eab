"""
Moteur de prix: calcul pur du prix d'achat, du profit et de sa répartition société/charité.
"""
from .engine import PricingConfig, PricingBreakdown, compute_pricing
from .settings import load_pricing_config

__all__ = [
    "PricingConfig",
    "PricingBreakdown",
    "compute_pricing",
    "load_pricing_config",
]
