"""Tableau de bord d'impact de l'utilisateur connecté.
- /api/v1/impact: solde de crédits, total gagné, contributions par cause, historique d'achats.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from impactly.app_setup.dependencies import get_db
from impactly.utils.security import require_user
from . import service as ledger_service

router = APIRouter(prefix="/api/v1/impact", tags=["Impact API"])

@router.get("")
async def get_impact(user: Dict[str, Any] = Depends(require_user), db=Depends(get_db)) -> Dict[str, Any]:
    return await run_in_threadpool(ledger_service.get_impact_summary, db, user["id"])
