"""
Dépendances FastAPI: exposent aux vues les clients construits par le lifespan.
- Les clients vivent sur app.state (contexte applicatif), pas dans des globals de module.
- Les tests remplacent ces dépendances via app.dependency_overrides.
"""
from fastapi import Request

from impactly.errors import ConfigurationError

def get_db(request: Request):
    db = getattr(request.app.state, "supabase", None)
    if db is None:
        raise ConfigurationError("Client Supabase non initialisé (SUPABASE_URL/SUPABASE_SERVICE_KEY)")
    return db

def get_catalog(request: Request):
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        raise ConfigurationError("Client catalogue non initialisé")
    return catalog

def get_optional_task_queue(request: Request):
    # Le webhook doit compléter les achats même si Redis est indisponible
    return getattr(request.app.state, "task_queue", None)
