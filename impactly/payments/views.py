"""Endpoints Stripe.
- /api/v1/payments/webhook: événements Stripe signés (pas d'authentification utilisateur, pas de rate limit).
- /api/v1/payments/reconcile/{session_id}: rejoue une session payée dont le webhook a été manqué (interne).
"""
from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from impactly.app_setup.dependencies import get_db, get_optional_task_queue
from impactly.utils.security import require_internal_token
from . import service as payments_service
from . import stripe_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module impactly.payments.views
@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, db=Depends(get_db), queue=Depends(get_optional_task_queue)) -> Dict[str, Any]:
    """
    Webhook Stripe.
    - Signature: vérifiée sur le corps brut avant tout parsing (400 si invalide, Stripe n'insiste pas)
    - Traitement: payments_service.handle_event dans le threadpool
    - Erreur de lecture/écriture avant complétion: 500, Stripe renvoie l'événement
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    secret = await run_in_threadpool(stripe_client.resolve_webhook_secret, db)
    event = stripe_client.verify_event(payload, sig_header, secret)

    result = await run_in_threadpool(payments_service.handle_event, db, queue, event)
    logger.info(
        "payments.webhook type=%s status=%s session_id=%s",
        event.get("type"), result.get("status"), result.get("session_id"),
    )
    return {"received": True, **result}

@router.post("/reconcile/{session_id}", dependencies=[Depends(require_internal_token)])
async def reconcile(session_id: str, db=Depends(get_db), queue=Depends(get_optional_task_queue)) -> Dict[str, Any]:
    """Relit la session Stripe et applique la même machine d'état que le webhook si payment_status='paid'."""
    return await run_in_threadpool(payments_service.reconcile_session, db, queue, session_id)
