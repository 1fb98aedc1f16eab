"""
Taxonomie des erreurs du pipeline de règlement.

Chaque erreur porte son code HTTP et un drapeau `retryable`:
- avant la complétion financière, toute erreur annule l'opération entière (aucune écriture partielle);
- après la complétion, les erreurs sont isolées par étape aval (ledger, fulfillment)
  et ne défont jamais le marquage `completed`.
"""


class ImpactlyError(Exception):
    status_code = 500
    retryable = False
    default_detail = "Erreur interne"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ConfigurationError(ImpactlyError):
    """Paramètre de prix ou de fournisseur manquant: fatal, jamais remplacé par une valeur par défaut."""
    status_code = 500
    default_detail = "Configuration manquante"


class InvalidSignature(ImpactlyError):
    """Signature webhook absente ou invalide: rejetée, pas de nouvelle tentative."""
    status_code = 400
    default_detail = "Signature webhook invalide"


class ClientInputError(ImpactlyError):
    status_code = 400
    default_detail = "Requête invalide"


class EmptyCart(ClientInputError):
    default_detail = "Panier vide"


class InvalidCartItem(ClientInputError):
    default_detail = "Article de panier invalide"


class InvalidDenomination(ClientInputError):
    default_detail = "Valeur faciale non proposée pour ce produit"


class ProductNotFound(ClientInputError):
    default_detail = "Produit introuvable"


class Unauthorized(ImpactlyError):
    status_code = 401
    default_detail = "Non authentifié"


class PaymentSystemUnavailable(ImpactlyError):
    status_code = 503
    retryable = True
    default_detail = "Système de paiement indisponible, veuillez réessayer"


class CatalogUnavailable(ImpactlyError):
    status_code = 502
    retryable = True
    default_detail = "Catalogue de cartes cadeaux indisponible"


class LedgerApplicationError(ImpactlyError):
    """Écriture ledger échouée après complétion: journalisée puis rejouée hors bande."""
    status_code = 500
    retryable = True
    default_detail = "Application du ledger échouée"


class FulfillmentError(ImpactlyError):
    """Échec d'émission d'une carte: enregistré sur la ligne, n'échoue pas le lot."""
    status_code = 502
    retryable = True
    default_detail = "Émission de la carte cadeau échouée"
