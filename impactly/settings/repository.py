"""
Accès à la table 'app_settings' (paires key/value éditées depuis l'admin).
Lecture best-effort: une erreur Supabase est journalisée et se traduit par une valeur absente,
c'est à l'appelant de décider si l'absence est fatale (ConfigurationError).
"""
from typing import Dict, Iterable, Optional
import logging

logger = logging.getLogger(__name__)

# module impactly.settings.repository
def get_settings(db, keys: Iterable[str]) -> Dict[str, str]:
    """
    Retourne {key: value} pour les clés demandées présentes et non vides.
    """
    keys = [k for k in keys if k]
    if not keys:
        return {}
    try:
        res = (
            db.table("app_settings")
            .select("key, value")
            .in_("key", keys)
            .execute()
        )
    except Exception:
        logger.exception("settings.repository.get_settings failed keys=%s", keys)
        return {}
    settings: Dict[str, str] = {}
    for row in res.data or []:
        value = (row.get("value") or "").strip()
        if value:
            settings[str(row.get("key"))] = value
    return settings

def get_setting(db, key: str) -> Optional[str]:
    """Valeur d'un paramètre unique, None si absent."""
    return get_settings(db, [key]).get(key)
