# impactly.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Reloadly, Redis)
- Les paramètres métier (markup, répartition des profits) vivent dans la table
  app_settings et sont lus à la demande (voir impactly.pricing.settings)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

# Supabase: l'application agit côté serveur avec la clé service (webhook, ledger)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé privée et secret webhook (peuvent aussi venir de app_settings)
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_CURRENCY = _clean_env(os.getenv("STRIPE_CURRENCY") or "usd").lower()

# Pages de succès/annulation du checkout
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/checkout/success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/checkout/cancel")

# Reloadly (catalogue + émission des cartes cadeaux)
RELOADLY_CLIENT_ID = _clean_env(os.getenv("RELOADLY_CLIENT_ID") or "")
RELOADLY_CLIENT_SECRET = _clean_env(os.getenv("RELOADLY_CLIENT_SECRET") or "")
RELOADLY_BASE_URL = _clean_env(os.getenv("RELOADLY_BASE_URL") or "https://giftcards.reloadly.com")
RELOADLY_AUTH_URL = _clean_env(os.getenv("RELOADLY_AUTH_URL") or "https://auth.reloadly.com/oauth/token")
RELOADLY_TIMEOUT = _int_env("RELOADLY_TIMEOUT", 15)

# Cause par défaut quand l'utilisateur n'a aucune préférence
DEFAULT_CHARITY_SLUG = _clean_env(os.getenv("DEFAULT_CHARITY_SLUG") or "")

# File de tâches (fulfillment, rejeu du ledger)
TASK_QUEUE_REDIS_URL = _clean_env(os.getenv("TASK_QUEUE_REDIS_URL") or "redis://127.0.0.1:6379/1")
TASK_QUEUE_NAME = _clean_env(os.getenv("TASK_QUEUE_NAME") or "impactly:tasks")
TASK_MAX_ATTEMPTS = _int_env("TASK_MAX_ATTEMPTS", 5)
TASK_RETRY_BASE_DELAY = _int_env("TASK_RETRY_BASE_DELAY", 5)
TASK_POLL_TIMEOUT = _int_env("TASK_POLL_TIMEOUT", 5)

# Jeton partagé pour les appels internes (/api/v1/orders/process, reconcile)
INTERNAL_API_TOKEN = _clean_env(os.getenv("INTERNAL_API_TOKEN") or "")

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
