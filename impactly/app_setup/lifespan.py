"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit les clients (Supabase service, Reloadly, file de tâches Redis) et les pose sur app.state.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Variables d’environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis pour le limiter et la file de tâches (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l’init échoue
Chaque ressource indisponible est journalisée et laissée à None: les endpoints qui en
dépendent répondent alors 500 (ConfigurationError) sans empêcher le démarrage.
"""
import os
import logging
import redis.asyncio as aioredis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from impactly.catalog.client import ReloadlyClient
from impactly.errors import ConfigurationError
from impactly.infra.supabase_client import create_service_client
from impactly.tasks.queue import TaskQueue

logger = logging.getLogger("uvicorn.error")

def _use_fake_redis() -> bool:
    return os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1"

def init_clients(app: FastAPI) -> None:
    try:
        app.state.supabase = create_service_client()
        logger.info("Supabase service client ready")
    except ConfigurationError as e:
        app.state.supabase = None
        logger.warning(f"Supabase client disabled: {e.detail}")

    app.state.catalog = ReloadlyClient.from_config()

    try:
        if _use_fake_redis():
            import fakeredis  # tests only
            client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
        else:
            client = None
        app.state.task_queue = TaskQueue.from_config(client)
        logger.info("Task queue ready (%s)", app.state.task_queue.name)
    except Exception as e:
        app.state.task_queue = None
        logger.warning(f"Task queue disabled due to init error: {e}")

async def init_rate_limiter(app: FastAPI) -> None:
    """
    Configure le rate limiting et gère les fallbacks.
    - En cas d’échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    - Les logs indiquent l’état effectif (enabled/disabled) pour observabilité.
    """
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if _use_fake_redis():
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_clients(app)
    await init_rate_limiter(app)
    try:
        yield
    finally:
        catalog = getattr(app.state, "catalog", None)
        if catalog is not None:
            catalog.close()
        logger.info("Shutdown: clients closed")
