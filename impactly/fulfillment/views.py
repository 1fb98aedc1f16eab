"""Dispatch interne du fulfillment.
- /api/v1/orders/process: émet synchronement les cartes des transactions données (relance manuelle).
Sécurité: en-tête X-Internal-Token, jamais exposé aux utilisateurs.
"""
from typing import Any, Dict, List
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from impactly.app_setup.dependencies import get_catalog, get_db
from impactly.errors import ClientInputError
from impactly.utils.security import require_internal_token
from . import service as fulfillment_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Fulfillment API"])

class ProcessOrdersRequest(BaseModel):
    transactionIds: List[str] = []

@router.post("/process", dependencies=[Depends(require_internal_token)])
async def process_orders(body: ProcessOrdersRequest, db=Depends(get_db), catalog=Depends(get_catalog)) -> Dict[str, Any]:
    """
    Entrée: { "transactionIds": ["<uuid>", ...] }
    Sortie: { "processed": <int>, "results": [ {transaction_id, status, error?}, ... ] }
    """
    ids = [t for t in body.transactionIds if t]
    if not ids:
        raise ClientInputError("transactionIds manquant")
    results = await run_in_threadpool(fulfillment_service.fulfill_purchases, db, catalog, ids)
    processed = sum(1 for r in results if r.get("status") == "fulfilled")
    logger.info("fulfillment.process requested=%s fulfilled=%s", len(ids), processed)
    return {"processed": processed, "results": results}
