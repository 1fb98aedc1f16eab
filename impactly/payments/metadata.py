"""
Sérialisation/désérialisation des métadonnées Stripe (user_id, transaction_ids).

Stripe limite chaque valeur de metadata à 500 caractères: les identifiants de transactions
sont joints par des virgules (pas de JSON) et débordent si besoin sur transaction_ids_2,
transaction_ids_3, ... (au plus MAX_ID_KEYS clés).
"""
from typing import Any, Dict, List

from impactly.errors import InvalidCartItem

IDS_KEY = "transaction_ids"
LEGACY_ID_KEY = "transaction_id"
MAX_VALUE_LENGTH = 500
MAX_ID_KEYS = 40

# module impactly.payments.metadata
def _id_key(index: int) -> str:
    return IDS_KEY if index == 1 else f"{IDS_KEY}_{index}"

def chunk_ids(transaction_ids: List[str]) -> List[str]:
    chunks: List[str] = []
    current = ""
    for tid in transaction_ids:
        candidate = f"{current},{tid}" if current else tid
        if len(candidate) > MAX_VALUE_LENGTH:
            chunks.append(current)
            current = tid
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks

def make_metadata(user_id: str, transaction_ids: List[str]) -> Dict[str, str]:
    """
    Construit les métadonnées de session.
    - Soulève InvalidCartItem si le panier dépasse la capacité des métadonnées Stripe.
    """
    chunks = chunk_ids([str(t) for t in transaction_ids])
    if len(chunks) > MAX_ID_KEYS:
        raise InvalidCartItem("Panier trop volumineux pour une seule session de paiement")
    metadata = {"user_id": str(user_id)}
    for index, chunk in enumerate(chunks, start=1):
        metadata[_id_key(index)] = chunk
    return metadata

def extract_transaction_ids(metadata: Dict[str, Any] | None) -> List[str]:
    """
    Relit les identifiants depuis metadata (clés de débordement comprises).
    - Ordre préservé, doublons et valeurs vides ignorés.
    - Accepte l'ancienne clé unique 'transaction_id'.
    """
    meta = metadata or {}
    raw: List[str] = []
    index = 1
    while meta.get(_id_key(index)):
        raw.extend(str(meta.get(_id_key(index))).split(","))
        index += 1
    if not raw and meta.get(LEGACY_ID_KEY):
        raw.append(str(meta.get(LEGACY_ID_KEY)))

    ids: List[str] = []
    for tid in raw:
        tid = tid.strip()
        if tid and tid not in ids:
            ids.append(tid)
    return ids

def extract_object(event: Dict[str, Any]) -> Dict[str, Any]:
    """Retourne event.data.object (session Checkout ou PaymentIntent selon le type)."""
    if not isinstance(event, dict):
        return {}
    return (event.get("data") or {}).get("object") or {}

def extract_user_id(metadata: Dict[str, Any] | None) -> str | None:
    return (metadata or {}).get("user_id") or None
