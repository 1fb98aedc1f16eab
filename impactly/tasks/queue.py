"""
File de tâches Redis (livraison au moins une fois).

Listes utilisées pour une file `name`:
- name               tâches prêtes (LPUSH à l'ajout, consommées par la droite)
- name:processing    tâches réservées par un worker, retirées seulement à l'ack
- name:delayed       zset des nouvelles tentatives (score = instant d'éligibilité)
- name:dead          tâches abandonnées après max_attempts
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4
import json
import logging
import time

import redis

from impactly import config

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY = 300

@dataclass
class Task:
    id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: Optional[str] = None
    raw: str = ""

    def to_json(self) -> str:
        return json.dumps({
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "attempts": self.attempts,
            "last_error": self.last_error,
        })

    @classmethod
    def from_json(cls, raw: str) -> "Task":
        data = json.loads(raw)
        return cls(
            id=str(data.get("id") or ""),
            kind=str(data.get("kind") or ""),
            payload=data.get("payload") or {},
            attempts=int(data.get("attempts") or 0),
            last_error=data.get("last_error"),
            raw=raw,
        )

class TaskQueue:
    def __init__(
        self,
        client: redis.Redis,
        name: str = "impactly:tasks",
        *,
        max_attempts: int = 5,
        retry_base_delay: int = 5,
    ):
        self.redis = client
        self.name = name
        self.processing_name = f"{name}:processing"
        self.delayed_name = f"{name}:delayed"
        self.dead_name = f"{name}:dead"
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    @classmethod
    def from_config(cls, client: Optional[redis.Redis] = None) -> "TaskQueue":
        client = client or redis.from_url(config.TASK_QUEUE_REDIS_URL, encoding="utf-8", decode_responses=True)
        return cls(
            client,
            config.TASK_QUEUE_NAME,
            max_attempts=config.TASK_MAX_ATTEMPTS,
            retry_base_delay=config.TASK_RETRY_BASE_DELAY,
        )

    def enqueue(self, kind: str, payload: Dict[str, Any]) -> str:
        task = Task(id=uuid4().hex, kind=kind, payload=payload)
        self.redis.lpush(self.name, task.to_json())
        logger.info("tasks.enqueued id=%s kind=%s", task.id, kind)
        return task.id

    def reserve(self, block_timeout: Optional[int] = None) -> Optional[Task]:
        """
        Déplace atomiquement la plus ancienne tâche vers la liste processing.
        Une tâche illisible part directement en dead-letter.
        """
        if block_timeout:
            raw = self.redis.blmove(self.name, self.processing_name, block_timeout, "RIGHT", "LEFT")
        else:
            raw = self.redis.lmove(self.name, self.processing_name, "RIGHT", "LEFT")
        if raw is None:
            return None
        try:
            return Task.from_json(raw)
        except (ValueError, TypeError):
            logger.error("tasks.malformed raw=%s", raw)
            self._bury_raw(raw)
            return None

    def ack(self, task: Task) -> None:
        self.redis.lrem(self.processing_name, 1, task.raw)

    def _bury_raw(self, raw: str) -> None:
        with self.redis.pipeline() as pipe:
            pipe.lrem(self.processing_name, 1, raw)
            pipe.lpush(self.dead_name, raw)
            pipe.execute()

    def bury(self, task: Task, reason: str) -> None:
        """Envoie directement la tâche en dead-letter (sans nouvelle tentative)."""
        logger.error("tasks.buried id=%s kind=%s reason=%s", task.id, task.kind, reason)
        self._bury_raw(task.raw)

    def retry_delay(self, attempts: int) -> int:
        return min(self.retry_base_delay * (2 ** max(attempts - 1, 0)), MAX_RETRY_DELAY)

    def retry(self, task: Task, error: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Replanifie la tâche (attempts + 1, délai exponentiel) ou l'abandonne en dead-letter.
        Retourne True si elle sera retentée.
        """
        retried = Task(
            id=task.id,
            kind=task.kind,
            payload=payload if payload is not None else task.payload,
            attempts=task.attempts + 1,
            last_error=error,
        )
        requeue = retried.attempts < self.max_attempts
        with self.redis.pipeline() as pipe:
            pipe.lrem(self.processing_name, 1, task.raw)
            if requeue:
                due = time.time() + self.retry_delay(retried.attempts)
                pipe.zadd(self.delayed_name, {retried.to_json(): due})
            else:
                pipe.lpush(self.dead_name, retried.to_json())
            pipe.execute()
        if requeue:
            logger.warning("tasks.retry id=%s kind=%s attempts=%s error=%s", task.id, task.kind, retried.attempts, error)
        else:
            logger.error("tasks.dead id=%s kind=%s attempts=%s error=%s", task.id, task.kind, retried.attempts, error)
        return requeue

    def promote_due(self, now: Optional[float] = None) -> int:
        """Remet dans la file les nouvelles tentatives arrivées à échéance."""
        now = time.time() if now is None else now
        moved = 0
        for raw in self.redis.zrangebyscore(self.delayed_name, "-inf", now):
            # zrem protège contre deux workers qui promeuvent la même tâche
            if self.redis.zrem(self.delayed_name, raw):
                self.redis.lpush(self.name, raw)
                moved += 1
        return moved

    def recover_stale(self) -> int:
        """Au démarrage d'un worker: les tâches restées en processing (crash) repassent en file."""
        moved = 0
        while self.redis.lmove(self.processing_name, self.name, "RIGHT", "RIGHT") is not None:
            moved += 1
        if moved:
            logger.warning("tasks.recovered count=%s", moved)
        return moved

    def stats(self) -> Dict[str, int]:
        return {
            "queued": self.redis.llen(self.name),
            "processing": self.redis.llen(self.processing_name),
            "delayed": self.redis.zcard(self.delayed_name),
            "dead": self.redis.llen(self.dead_name),
        }
