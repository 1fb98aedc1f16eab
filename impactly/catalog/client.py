"""
Adaptateur Reloadly: centralise l'authentification OAuth et les appels HTTP (httpx).
- Le token client-credentials est mis en cache sur l'instance jusqu'à 60s avant expiration.
- Le client HTTP est injecté (tests: httpx.MockTransport), jamais global.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from impactly import config
from impactly.errors import CatalogUnavailable, ConfigurationError, FulfillmentError, ProductNotFound
from .models import CatalogProduct, IssuedOrder

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/com.reloadly.giftcards-v1+json"
TOKEN_REFRESH_MARGIN = 60

# module impactly.catalog.client
class ReloadlyClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str = "https://giftcards.reloadly.com",
        auth_url: str = "https://auth.reloadly.com/oauth/token",
        http: Optional[httpx.Client] = None,
        timeout: float = 15,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.auth_url = auth_url
        self.audience = self.base_url
        self._http = http or httpx.Client(timeout=timeout)
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

    @classmethod
    def from_config(cls, http: Optional[httpx.Client] = None) -> "ReloadlyClient":
        return cls(
            config.RELOADLY_CLIENT_ID,
            config.RELOADLY_CLIENT_SECRET,
            base_url=config.RELOADLY_BASE_URL,
            auth_url=config.RELOADLY_AUTH_URL,
            http=http,
            timeout=config.RELOADLY_TIMEOUT,
        )

    def close(self) -> None:
        self._http.close()

    # --- Auth ---

    def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expiry:
            return self._access_token
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Identifiants du fournisseur de cartes cadeaux non configurés")
        try:
            resp = self._http.post(
                self.auth_url,
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                    "audience": self.audience,
                },
            )
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Authentification Reloadly impossible: {e}")
        if resp.status_code != 200:
            logger.error("catalog.auth failed status=%s body=%s", resp.status_code, resp.text[:200])
            raise CatalogUnavailable(f"Authentification Reloadly refusée ({resp.status_code})")
        data = resp.json()
        self._access_token = data.get("access_token")
        expires_in = int(data.get("expires_in") or 0)
        self._token_expiry = time.time() + max(expires_in - TOKEN_REFRESH_MARGIN, 0)
        return self._access_token

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Accept": ACCEPT_HEADER,
        }
        try:
            return self._http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Reloadly injoignable: {e}")

    # --- Catalogue ---

    def get_product_by_id(self, product_id: int) -> CatalogProduct:
        """
        Produit faisant autorité pour le prix de revient et les valeurs faciales.
        - product_id doit être un entier positif (pas d'injection dans l'URL)
        - 404 -> ProductNotFound, autres erreurs -> CatalogUnavailable
        """
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise ProductNotFound(f"Identifiant produit invalide: {product_id!r}")
        resp = self._request("GET", f"/products/{product_id}")
        if resp.status_code == 404:
            raise ProductNotFound(f"Produit {product_id} introuvable")
        if resp.status_code != 200:
            logger.error("catalog.get_product_by_id failed id=%s status=%s", product_id, resp.status_code)
            raise CatalogUnavailable(f"Lecture du produit {product_id} impossible ({resp.status_code})")
        return CatalogProduct.from_api(resp.json())

    # --- Émission ---

    def place_order(
        self,
        product_id: int,
        quantity: int,
        unit_price,
        recipient_email: str,
        custom_identifier: str,
    ) -> IssuedOrder:
        """
        Passe une commande de carte(s) cadeau.
        custom_identifier est unique côté Reloadly: un rejeu avec le même identifiant est refusé.
        """
        resp = self._request(
            "POST",
            "/orders",
            json={
                "productId": product_id,
                "quantity": quantity,
                "unitPrice": float(unit_price),
                "recipientEmail": recipient_email,
                "customIdentifier": custom_identifier,
            },
        )
        if resp.status_code >= 500:
            raise CatalogUnavailable(f"Reloadly indisponible ({resp.status_code})")
        if resp.status_code not in (200, 201):
            message = _error_message(resp) or "Commande refusée"
            raise FulfillmentError(f"Commande Reloadly refusée: {message}")
        return IssuedOrder.from_api(resp.json())

    def get_redeem_codes(self, transaction_id: int) -> List[Dict[str, Any]]:
        resp = self._request("GET", f"/orders/transactions/{transaction_id}/cards")
        if resp.status_code != 200:
            raise FulfillmentError(f"Codes indisponibles pour la transaction {transaction_id} ({resp.status_code})")
        return resp.json() or []

    def redeem_order(self, transaction_id: int) -> IssuedOrder:
        """Codes d'échange d'une commande déjà passée; sans code, l'émission est considérée en échec."""
        cards = self.get_redeem_codes(transaction_id)
        codes = [_format_card(c) for c in cards if c.get("cardNumber") or c.get("pinCode")]
        if not codes:
            raise FulfillmentError(f"Aucun code retourné pour la transaction {transaction_id}")
        return IssuedOrder(transaction_id=transaction_id, status="SUCCESSFUL", code=", ".join(codes))

    def issue_gift_card(
        self,
        product_id: int,
        quantity: int,
        unit_price,
        recipient_email: str,
        custom_identifier: str,
        *,
        provider_transaction_id: Optional[int] = None,
        on_order_placed: Optional[Callable[[int], Any]] = None,
    ) -> IssuedOrder:
        """
        Commande puis récupère le code d'échange.
        - provider_transaction_id: commande déjà passée lors d'une tentative précédente,
          seuls les codes sont relus (Reloadly refuse un second customIdentifier identique).
        - on_order_placed(transaction_id) est appelé dès que Reloadly a accepté la commande,
          avant la lecture des codes.
        """
        if provider_transaction_id is not None:
            return self.redeem_order(provider_transaction_id)

        order = self.place_order(product_id, quantity, unit_price, recipient_email, custom_identifier)
        if order.transaction_id is None:
            raise FulfillmentError(f"Commande Reloadly sans transaction (status={order.status or 'inconnu'})")
        if on_order_placed is not None:
            on_order_placed(order.transaction_id)
        if order.status.upper() in ("FAILED", "REFUNDED"):
            raise FulfillmentError(f"Commande Reloadly non aboutie (status={order.status})")
        issued = self.redeem_order(order.transaction_id)
        return IssuedOrder(
            transaction_id=issued.transaction_id,
            status=order.status,
            code=issued.code,
            amount=order.amount,
        )

def _format_card(card: Dict[str, Any]) -> str:
    number = str(card.get("cardNumber") or "").strip()
    pin = str(card.get("pinCode") or "").strip()
    if number and pin:
        return f"{number} (PIN {pin})"
    return number or pin

def _error_message(resp: httpx.Response) -> str:
    try:
        return str((resp.json() or {}).get("message") or "")
    except ValueError:
        return resp.text[:200]
