"""
Chargement de la configuration de prix.
Source: table app_settings (clés historiques de l'admin), puis variables d'environnement.
Aucune valeur par défaut silencieuse: un paramètre absent soulève ConfigurationError.
"""
from decimal import Decimal, InvalidOperation
import logging
import os

from impactly.errors import ConfigurationError
from impactly.settings import repository as settings_repository
from .engine import PricingConfig

logger = logging.getLogger(__name__)

# champ PricingConfig -> (clé app_settings, variable d'environnement)
SETTING_KEYS = {
    "markup_percent": ("markup_percentage", "PRICING_MARKUP_PERCENT"),
    "company_split_percent": ("profit_split_company", "PRICING_COMPANY_SPLIT_PERCENT"),
    "charity_split_percent": ("profit_split_charity", "PRICING_CHARITY_SPLIT_PERCENT"),
    "credits_multiplier": ("impact_tickets_multiplier", "PRICING_CREDITS_MULTIPLIER"),
}

def _to_decimal(field: str, raw: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"Paramètre de prix invalide: {field}={raw!r}")
    if not value.is_finite():
        raise ConfigurationError(f"Paramètre de prix invalide: {field}={raw!r}")
    return value

def build_pricing_config(values: dict) -> PricingConfig:
    """
    Valide et construit la PricingConfig à partir de valeurs brutes.
    - markup >= 0, multiplicateur >= 0
    - chaque part dans [0, 100] et company + charity == 100
    """
    missing = [f for f in SETTING_KEYS if values.get(f) in (None, "")]
    if missing:
        raise ConfigurationError(f"Paramètres de prix manquants: {', '.join(missing)}")

    parsed = {f: _to_decimal(f, values[f]) for f in SETTING_KEYS}
    if parsed["markup_percent"] < 0:
        raise ConfigurationError("markup_percent ne peut pas être négatif")
    if parsed["credits_multiplier"] < 0:
        raise ConfigurationError("credits_multiplier ne peut pas être négatif")
    for f in ("company_split_percent", "charity_split_percent"):
        if not (0 <= parsed[f] <= 100):
            raise ConfigurationError(f"{f} doit être compris entre 0 et 100")
    if parsed["company_split_percent"] + parsed["charity_split_percent"] != 100:
        raise ConfigurationError("La répartition société/charité doit totaliser 100%")
    return PricingConfig(**parsed)

def load_pricing_config(db) -> PricingConfig:
    stored = settings_repository.get_settings(db, [key for key, _ in SETTING_KEYS.values()])
    values = {}
    for field, (key, env_name) in SETTING_KEYS.items():
        values[field] = stored.get(key) or (os.getenv(env_name) or "").strip()
    config = build_pricing_config(values)
    logger.debug("pricing config chargée: %s", config)
    return config
