"""Async HTTP client for the travel backend's subscription endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from core.env import env_float, env_str
from core.logging import get_logger
from core.tier_constants import Feature, Tier
from schemas.api.subscription import PaymentPayload, SubscriptionPayload, TrialHistoryPayload, UsagePayload
from services.subscription_record import SubscriptionRecord

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = env_float("SUBSCRIPTION_API_TIMEOUT_SECONDS", 10.0, minimum=0.1)


class SubscriptionApiError(RuntimeError):
    """Raised when the subscription backend fails, times out or returns garbage."""

    def __init__(self, status_code: Optional[int], message: str, *, payload: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def timed_out(self) -> bool:
        return self.status_code is None and bool(self.payload.get("timeout"))


@dataclass(slots=True)
class SubscriptionApiClient:
    """HTTP client wrapper for ``/subscriptions`` and ``/users`` endpoints."""

    base_url: str
    token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        user_id: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if user_id:
            headers["x-user-id"] = user_id
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("Subscription API %s %s timed out after %.1fs.", method, path, self.timeout)
            raise SubscriptionApiError(None, "Subscription backend timed out.", payload={"timeout": True}) from exc
        except httpx.RequestError as exc:
            logger.warning("Subscription API %s %s request error: %s", method, path, exc)
            raise SubscriptionApiError(None, f"Subscription backend unreachable: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"body": response.text}
            if not isinstance(payload, dict):
                payload = {"body": payload}
            message = payload.get("error") or payload.get("message") or "Subscription backend request failed."
            logger.warning("Subscription API error %s on %s %s: %s", response.status_code, method, path, payload)
            raise SubscriptionApiError(response.status_code, str(message), payload=payload)
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise SubscriptionApiError(response.status_code, "Subscription backend returned invalid JSON.") from exc
        return body if isinstance(body, dict) else {"data": body}

    async def fetch_subscription(self, user_id: str) -> SubscriptionRecord:
        body = await self._request("GET", f"/subscriptions/{user_id}", user_id=user_id)
        try:
            return SubscriptionPayload.model_validate(body).to_record()
        except ValidationError as exc:
            raise SubscriptionApiError(200, f"Malformed subscription payload: {exc}") from exc

    async def fetch_usage(self, user_id: str) -> Dict[Feature, int]:
        body = await self._request("GET", f"/subscriptions/{user_id}/usage", user_id=user_id)
        try:
            return UsagePayload.model_validate(body).to_counts()
        except ValidationError as exc:
            raise SubscriptionApiError(200, f"Malformed usage payload: {exc}") from exc

    async def fetch_trial_history(self, user_id: str) -> bool:
        body = await self._request("GET", f"/users/{user_id}/trial-history", user_id=user_id)
        try:
            return TrialHistoryPayload.model_validate(body).hasUsedTrial
        except ValidationError as exc:
            raise SubscriptionApiError(200, f"Malformed trial history payload: {exc}") from exc

    async def start_trial(self, user_id: str, tier: Tier, trial_days: int) -> Dict[str, Any]:
        logger.info("Starting %s trial for user=%s (%d days).", tier, user_id, trial_days)
        return await self._request(
            "POST",
            "/subscriptions/trial",
            user_id=user_id,
            json={"userId": user_id, "tier": Tier(tier).value, "trialDays": trial_days},
        )

    async def process_payment(self, user_id: str, tier: Tier, amount: float, payment_method: str) -> PaymentPayload:
        logger.info("Processing %s payment for user=%s tier=%s.", payment_method, user_id, tier)
        body = await self._request(
            "POST",
            "/subscriptions/payment",
            user_id=user_id,
            json={"userId": user_id, "tier": Tier(tier).value, "amount": amount, "paymentMethod": payment_method},
        )
        try:
            return PaymentPayload.model_validate(body)
        except ValidationError as exc:
            raise SubscriptionApiError(200, f"Malformed payment payload: {exc}") from exc

    async def upgrade_subscription(self, user_id: str, tier: Tier) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/subscriptions/upgrade",
            user_id=user_id,
            json={"userId": user_id, "tier": Tier(tier).value},
        )

    async def cancel_subscription(self, user_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/subscriptions/{user_id}/cancel",
            user_id=user_id,
            json={"reason": reason or "user_requested"},
        )

    async def put_subscription(self, user_id: str, record: SubscriptionRecord) -> Dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}", user_id=user_id, json=record.to_payload())


def get_subscription_api_client() -> SubscriptionApiClient:
    base_url = env_str("SUBSCRIPTION_API_BASE_URL")
    if not base_url:
        raise RuntimeError("SUBSCRIPTION_API_BASE_URL is not configured. Check your environment.")
    return SubscriptionApiClient(base_url=base_url, token=env_str("SUBSCRIPTION_API_TOKEN"))


__all__ = ["SubscriptionApiClient", "SubscriptionApiError", "get_subscription_api_client"]
