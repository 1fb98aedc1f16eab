"""
Ledger des crédits de récompense et répartition (fan-out) des parts caritatives.
"""
from .service import LedgerResult, apply_completed_batch, fan_out

__all__ = ["LedgerResult", "apply_completed_batch", "fan_out"]
