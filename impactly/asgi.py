"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `impactly.asgi:app`.
- Toute la configuration FastAPI est centralisée dans impactly.app_setup.factory.
"""

from impactly.app_setup.factory import create_app

app = create_app()
