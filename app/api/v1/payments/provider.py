"""
Stripe REST client over httpx. Only the calls the subscription guard needs.

Requests are form-encoded with the secret key as basic-auth user; errors come back as
{"error": {"message": ..., "code": ...}} and are raised as PaymentProviderError.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException, status

from app.core.app_logger import get_logger
from app.core.config import settings
from app.core.exceptions import PaymentProviderError

logger = get_logger(__name__)


class StripeClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (base_url or settings.stripe_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.stripe_timeout_seconds
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                auth=(self._api_key, ""),
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, params=params, data=data)
        except httpx.RequestError as e:
            logger.exception("Network error calling Stripe %s %s", method, path)
            raise PaymentProviderError(f"Network error contacting payment provider: {e}") from e

        if resp.is_error:
            message = f"Payment provider returned HTTP {resp.status_code}"
            code = None
            try:
                error = resp.json().get("error") or {}
                message = error.get("message") or message
                code = error.get("code")
            except ValueError:
                pass
            logger.warning("Stripe %s %s failed (%s): %s", method, path, resp.status_code, message)
            raise PaymentProviderError(message, status_code=resp.status_code, code=code)

        try:
            return resp.json()
        except ValueError as e:
            raise PaymentProviderError("Invalid JSON from payment provider") from e

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/checkout/sessions/{session_id}")

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/subscriptions/{subscription_id}")

    async def list_subscriptions(self, *, created_gte: int, limit: int = 100) -> List[Dict[str, Any]]:
        payload = await self._request(
            "GET",
            "/subscriptions",
            params={"limit": limit, "created[gte]": created_gte, "status": "all"},
        )
        return payload.get("data") or []

    async def update_subscription_metadata(
        self, subscription_id: str, metadata: Dict[str, str]
    ) -> Dict[str, Any]:
        data = {f"metadata[{key}]": value for key, value in metadata.items()}
        return await self._request("POST", f"/subscriptions/{subscription_id}", data=data)

    async def latest_invoice_amount(self, subscription_id: str) -> Optional[Decimal]:
        """Amount paid on the latest invoice, in major units. None when nothing was paid."""
        payload = await self._request(
            "GET", "/invoices", params={"subscription": subscription_id, "limit": 1}
        )
        invoices = payload.get("data") or []
        if not invoices or not invoices[0].get("amount_paid"):
            return None
        return Decimal(invoices[0]["amount_paid"]) / Decimal("100")


def get_payment_provider() -> StripeClient:
    """FastAPI dependency. 503 when no secret key is configured."""
    if not settings.stripe_secret_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return StripeClient(settings.stripe_secret_key)
