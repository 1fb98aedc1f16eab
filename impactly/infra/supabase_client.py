"""
Construction explicite des clients Supabase.
- Aucun singleton de module: le client est créé par le lifespan de l'application
  (ou par le worker) puis transmis aux services.
"""
from typing import Optional
from supabase import create_client, Client
from impactly.config import SUPABASE_URL, SUPABASE_SERVICE_KEY
from impactly.errors import ConfigurationError

def create_service_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Client service-role (bypass RLS), utilisé pour le webhook, le ledger et le fulfillment.
    Soulève ConfigurationError si l'URL ou la clé service manquent.
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_SERVICE_KEY
    if not url or not key:
        raise ConfigurationError("SUPABASE_URL/SUPABASE_SERVICE_KEY manquants")
    return create_client(url, key)
