"""
Gestionnaires d’exceptions.
- ImpactlyError (et sous-classes): code porté par l'erreur, corps JSON {"detail": ...}.
- HTTPException: réponse JSON standard (401/403 des gardes d'authentification, 429 du limiter).
Les erreurs 5xx sont journalisées avec leur trace; les 4xx restent au niveau info.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from impactly.errors import ImpactlyError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ImpactlyError)
    async def impactly_error_handler(request: Request, exc: ImpactlyError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s -> %s %s: %s",
                request.method, request.url.path, exc.status_code, type(exc).__name__, exc.detail,
                exc_info=exc,
            )
        else:
            logger.info("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, type(exc).__name__, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
