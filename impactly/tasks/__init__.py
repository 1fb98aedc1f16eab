"""
File de tâches Redis et worker des traitements post-paiement (fulfillment, rejeu du ledger).
"""
from .queue import Task, TaskQueue

__all__ = ["Task", "TaskQueue"]
