"""
Worker des tâches post-paiement.

Usage:
    python -m impactly.tasks.worker

Tâches gérées:
- fulfill:      {"session_id", "transaction_ids"}: émet les cartes; les lignes restées en erreur
                sont retentées via la même tâche (payload réduit à ces lignes)
- apply_ledger: {"session_id", "transaction_ids"}: réapplique le ledger (idempotent par session)
Une tâche n'est retirée de la liste processing qu'après le retour de son handler.
"""
from typing import Any, Dict, List, Optional
import logging
import os

from impactly import config
from impactly.catalog.client import ReloadlyClient
from impactly.fulfillment import service as fulfillment_service
from impactly.infra.supabase_client import create_service_client
from impactly.ledger import service as ledger_service
from .queue import Task, TaskQueue

logger = logging.getLogger(__name__)

def handle_fulfill(db, catalog, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Retourne le payload à retenter, ou None si rien ne reste à faire."""
    ids: List[str] = [str(t) for t in payload.get("transaction_ids") or []]
    results = fulfillment_service.fulfill_purchases(db, catalog, ids)
    remaining = fulfillment_service.retryable_ids(results)
    if remaining:
        return {**payload, "transaction_ids": remaining}
    return None

def handle_apply_ledger(db, payload: Dict[str, Any]) -> None:
    ledger_service.reapply_session(
        db,
        str(payload.get("session_id") or ""),
        [str(t) for t in payload.get("transaction_ids") or []],
    )

def run_once(queue: TaskQueue, db, catalog, block_timeout: Optional[int] = None) -> Optional[Task]:
    """Traite au plus une tâche. Retourne la tâche traitée (ou None si la file est vide)."""
    queue.promote_due()
    task = queue.reserve(block_timeout=block_timeout)
    if task is None:
        return None
    try:
        if task.kind == "fulfill":
            retry_payload = handle_fulfill(db, catalog, task.payload)
            if retry_payload:
                queue.retry(task, "fulfillment incomplet", payload=retry_payload)
                return task
        elif task.kind == "apply_ledger":
            handle_apply_ledger(db, task.payload)
        else:
            queue.bury(task, "type de tâche inconnu")
            return task
    except Exception as e:
        logger.exception("worker.task_failed id=%s kind=%s", task.id, task.kind)
        queue.retry(task, str(e))
        return task
    queue.ack(task)
    logger.info("worker.task_done id=%s kind=%s", task.id, task.kind)
    return task

def main() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "info").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    db = create_service_client()
    catalog = ReloadlyClient.from_config()
    queue = TaskQueue.from_config()
    queue.recover_stale()
    logger.info("worker.started queue=%s", queue.name)
    try:
        while True:
            run_once(queue, db, catalog, block_timeout=config.TASK_POLL_TIMEOUT)
    except KeyboardInterrupt:
        logger.info("worker.stopped")
    finally:
        catalog.close()

if __name__ == "__main__":
    main()
