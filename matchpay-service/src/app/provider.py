import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from app.config import settings

logger = logging.getLogger("matchpay.provider")

class ProviderUnavailable(Exception):
    """Network failure, timeout or 5xx from the payment provider. Safe to retry."""
    pass

@dataclass(frozen=True)
class ChargeVerification:
    tx_ref: str
    status: str
    amount: Decimal
    currency: str
    charge_id: Optional[str]

    @property
    def successful(self) -> bool:
        return self.status == "successful"

class FlutterwaveClient:
    """
    Async client for Flutterwave's verify-by-reference API.

    Only answers "what does the provider say about this reference"; every
    business decision stays with the caller. Transport problems raise
    ProviderUnavailable, a provider that does not know the reference yields a
    verification with status "not_found".
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.flutterwave.com",
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Accept": "application/json",
        }

    async def verify_by_reference(self, tx_ref: str) -> ChargeVerification:
        url = f"{self.base_url}/v3/transactions/verify_by_reference"
        logger.info("[Provider] GET %s tx_ref=%s", url, tx_ref)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params={"tx_ref": tx_ref}, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error("[Provider] Timeout verifying %s: %s", tx_ref, e)
            raise ProviderUnavailable("Timeout contacting payment provider") from e
        except httpx.HTTPError as e:
            logger.error("[Provider] Connection error verifying %s: %s", tx_ref, e)
            raise ProviderUnavailable("Could not reach payment provider") from e

        if resp.status_code >= 500:
            logger.error("[Provider] Provider error %s verifying %s", resp.status_code, tx_ref)
            raise ProviderUnavailable(f"Payment provider error ({resp.status_code})")

        body = self._safe_json(resp)
        if (
            resp.status_code >= 400
            or not body
            or body.get("status") != "success"
            or not isinstance(body.get("data"), dict)
        ):
            logger.warning("[Provider] No successful charge for %s (%s): %s",
                           tx_ref, resp.status_code, (body or {}).get("message"))
            return ChargeVerification(tx_ref=tx_ref, status="not_found",
                                      amount=Decimal("0"), currency="", charge_id=None)

        return self._parse_charge(tx_ref, body["data"])

    @staticmethod
    def _parse_charge(tx_ref: str, data: Dict[str, Any]) -> ChargeVerification:
        try:
            amount = Decimal(str(data.get("amount", "0")))
        except InvalidOperation:
            amount = Decimal("0")
        charge_id = data.get("id")
        return ChargeVerification(
            tx_ref=str(data.get("tx_ref") or tx_ref),
            status=str(data.get("status", "")),
            amount=amount,
            currency=str(data.get("currency", "")),
            charge_id=str(charge_id) if charge_id is not None else None,
        )

    @staticmethod
    def _safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
        try:
            body = resp.json()
        except ValueError:
            logger.error("[Provider] Response is not JSON: %s", resp.text[:200])
            return None
        if not isinstance(body, dict):
            logger.error("[Provider] Unexpected response body: %s", resp.text[:200])
            return None
        return body

provider_client = FlutterwaveClient(
    secret_key=settings.FLUTTERWAVE_SECRET_KEY,
    base_url=settings.FLUTTERWAVE_BASE_URL,
    timeout=settings.PROVIDER_TIMEOUT,
)

def get_provider() -> FlutterwaveClient:
    return provider_client
