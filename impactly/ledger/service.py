"""
Cas d'usage 'ledger': applique un lot d'achats complétés d'une même session.

- batch_credits = somme des credits_earned, batch_charity = somme des charity_share
- fan-out de batch_charity sur les causes de l'utilisateur (ou la cause par défaut)
- une ligne d'historique (user_purchases) par achat
- idempotence par session: la contrainte unique de ledger_applications décide, pas un check-then-act
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from impactly import config
from impactly.errors import ConfigurationError, LedgerApplicationError
from impactly.payments import repository as payments_repository
from impactly.settings import repository as settings_repository
from impactly.utils.money import Money, D, round_money, to_cents, from_cents
from . import repository

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = ("completed", "fulfilled")

@dataclass
class LedgerResult:
    session_id: str
    user_id: str
    applied: bool
    credits: int = 0
    charity: Money = Decimal("0.00")
    contributions: List[Tuple[str, Money]] = field(default_factory=list)

def fan_out(total, causes: Sequence[str], default_cause: Optional[str] = None) -> List[Tuple[str, Money]]:
    """
    Répartit `total` à parts égales entre les causes (ordre de priorité conservé, doublons ignorés).
    - Les centimes restants vont, un par un, aux causes les plus prioritaires:
      la somme des parts est toujours exactement égale au total.
    - Liste vide: tout va à default_cause (ConfigurationError si absente).
    - Total nul: aucune contribution.
    """
    cents = to_cents(total)
    if cents <= 0:
        return []
    unique: List[str] = []
    for cause in causes:
        if cause and cause not in unique:
            unique.append(cause)
    if not unique:
        if not default_cause:
            raise ConfigurationError("Aucune cause par défaut configurée (DEFAULT_CHARITY_SLUG)")
        return [(default_cause, from_cents(cents))]

    base, remainder = divmod(cents, len(unique))
    shares = []
    for index, cause in enumerate(unique):
        share = base + (1 if index < remainder else 0)
        if share > 0:
            shares.append((cause, from_cents(share)))
    return shares

def summarize_batch(purchases: List[Dict[str, Any]]) -> Tuple[str, int, Money]:
    """Retourne (user_id, batch_credits, batch_charity); un lot ne concerne qu'un seul utilisateur."""
    user_ids = {str(p.get("user_id") or "") for p in purchases}
    if len(user_ids) != 1 or "" in user_ids:
        raise LedgerApplicationError(f"Lot incohérent: utilisateurs {sorted(user_ids)}")
    credits = sum(int(p.get("credits_earned") or 0) for p in purchases)
    charity = round_money(sum((D(p.get("charity_share")) for p in purchases), Decimal("0")))
    return user_ids.pop(), credits, charity

def build_history_rows(session_id: str, purchases: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Projection dénormalisée pour le tableau de bord d'impact (une ligne par achat)."""
    return [
        {
            "transaction_id": p.get("id"),
            "user_id": p.get("user_id"),
            "session_id": session_id,
            "product_name": p.get("product_name") or "",
            "purchase_amount": str(round_money(p.get("purchase_price"))),
            "profit_amount": str(round_money(p.get("profit_amount"))),
            "charity_split_amount": str(round_money(p.get("charity_share"))),
            "credits_earned": int(p.get("credits_earned") or 0),
        }
        for p in purchases
    ]

def resolve_default_cause(db, default_cause: Optional[str] = None) -> Optional[str]:
    return default_cause or config.DEFAULT_CHARITY_SLUG or settings_repository.get_setting(db, "default_charity_slug")

def apply_completed_batch(
    db,
    session_id: str,
    purchases: List[Dict[str, Any]],
    *,
    default_cause: Optional[str] = None,
) -> LedgerResult:
    """
    Applique crédits, contributions et historique pour une session.
    - applied=False: session déjà appliquée (rejeu), rien n'a été écrit.
    - LedgerApplicationError: toute erreur de lecture/écriture; l'appelant planifie un rejeu.
    """
    if not session_id:
        raise LedgerApplicationError("session_id manquant")
    if not purchases:
        raise LedgerApplicationError(f"Aucun achat à appliquer pour la session {session_id}")
    user_id, credits, charity = summarize_batch(purchases)

    try:
        causes = repository.fetch_charity_preferences(db, user_id) if charity > 0 else []
        fallback = resolve_default_cause(db, default_cause) if charity > 0 and not causes else None
        shares = fan_out(charity, causes, fallback)
        applied = repository.apply_session_ledger(
            db,
            session_id=session_id,
            user_id=user_id,
            credits=credits,
            contributions=[{"nonprofit_slug": slug, "amount": str(amount)} for slug, amount in shares],
            purchases=build_history_rows(session_id, purchases),
        )
    except LedgerApplicationError:
        raise
    except ConfigurationError as e:
        raise LedgerApplicationError(f"Session {session_id}: {e.detail}") from e
    except Exception as e:
        raise LedgerApplicationError(f"Session {session_id}: écriture ledger échouée ({e})") from e

    if applied:
        logger.info(
            "ledger.applied session_id=%s user_id=%s credits=%s charity=%s causes=%s",
            session_id, user_id, credits, charity, len(shares),
        )
    else:
        logger.info("ledger.already_applied session_id=%s user_id=%s", session_id, user_id)
    return LedgerResult(
        session_id=session_id,
        user_id=user_id,
        applied=applied,
        credits=credits if applied else 0,
        charity=charity if applied else Decimal("0.00"),
        contributions=shares if applied else [],
    )

def reapply_session(db, session_id: str, transaction_ids: List[str], *, default_cause: Optional[str] = None) -> LedgerResult:
    """
    Rejeu hors bande (worker): relit les achats complétés de la session et réapplique.
    Sûr à répéter: la session n'est appliquée qu'une fois.
    """
    try:
        rows = payments_repository.fetch_purchases(db, transaction_ids)
    except Exception as e:
        raise LedgerApplicationError(f"Session {session_id}: lecture des achats impossible ({e})") from e
    completed = [r for r in rows if r.get("status") in COMPLETED_STATUSES]
    return apply_completed_batch(db, session_id, completed, default_cause=default_cause)

def get_impact_summary(db, user_id: str) -> Dict[str, Any]:
    """Solde, total gagné, contributions agrégées par cause et historique d'achats."""
    account = repository.get_ledger_account(db, user_id) or {}
    totals: Dict[str, Money] = {}
    for row in repository.list_contributions(db, user_id):
        slug = str(row.get("nonprofit_slug") or "")
        totals[slug] = totals.get(slug, Decimal("0")) + D(row.get("amount"))
    return {
        "balance": int(account.get("balance") or 0),
        "lifetime_earned": int(account.get("lifetime_earned") or 0),
        "contributions": [
            {"nonprofit_slug": slug, "amount": float(round_money(amount))}
            for slug, amount in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        ],
        "purchases": repository.list_purchase_history(db, user_id),
    }
