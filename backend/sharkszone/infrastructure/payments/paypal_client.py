"""
PayPal Gateway Client

Async client for the PayPal REST API: OAuth client-credentials tokens,
order and authorization captures, billing subscription reads and
cancellation, and webhook signature verification.

One instance is created at application startup from ``PayPalConfig`` and
shared by every request. The only state it holds is the access-token cache.

Failure contract:
- non-2xx responses raise ``GatewayRequestFailed`` with PayPal's
  name / message / debug_id / details;
- a read that times out or cannot connect raises ``GatewayUnavailable``;
- a capture or cancel whose outcome is unknown raises ``Indeterminate`` and
  is never retried here.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import httpx

from sharkszone.config.paypal import PayPalConfig
from sharkszone.domain.subscription import CaptureResult, RemoteSubscription
from sharkszone.infrastructure.exceptions import (
    CapturedButNotCompleted,
    CredentialsMissing,
    GatewayAuthFailed,
    GatewayError,
    GatewayRequestFailed,
    GatewayUnavailable,
    Indeterminate,
    InvalidSignature,
    MissingVerificationHeaders,
    RemoteCancelFailed,
)


logger = logging.getLogger(__name__)


# Headers PayPal sends with every webhook delivery
VERIFICATION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-cert-url",
    "paypal-auth-algo",
    "paypal-transmission-sig",
)

# PayPal rejects cancellation reasons longer than this
MAX_CANCEL_REASON_LENGTH = 128


@dataclass(frozen=True)
class AccessToken:
    """OAuth bearer token and its absolute expiry."""
    token: str
    expires_at: datetime

    def is_fresh(self, margin_seconds: int) -> bool:
        return datetime.now(timezone.utc) < self.expires_at - timedelta(seconds=margin_seconds)


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class PayPalClient:
    """
    PayPal REST client.

    Args:
        config: Resolved PayPal configuration
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        config: PayPalConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )
        self._token: Optional[AccessToken] = None
        self._token_lock = asyncio.Lock()

    @property
    def config(self) -> PayPalConfig:
        return self._config

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # =========================================================================
    # Authentication
    # =========================================================================

    async def get_access_token(self, force_refresh: bool = False) -> AccessToken:
        """
        Get an OAuth access token for the resolved mode.

        Tokens are reused until shortly before they expire. Concurrent callers
        wait on one refresh instead of each requesting a token.

        Raises:
            CredentialsMissing: If the client id or secret is not configured
            GatewayAuthFailed: If PayPal rejects the credentials
            GatewayUnavailable: If PayPal cannot be reached
        """
        credentials = self._config.credentials
        if not credentials.complete:
            missing = [
                key for key, value in (
                    ("client_id", credentials.client_id),
                    ("client_secret", credentials.client_secret),
                ) if not value
            ]
            raise CredentialsMissing(
                f"PayPal {self._config.mode} credentials are not configured",
                missing_keys=missing,
            )

        margin = self._config.token_refresh_margin_seconds
        async with self._token_lock:
            if not force_refresh and self._token and self._token.is_fresh(margin):
                return self._token

            try:
                response = await self._client.post(
                    "/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(credentials.client_id, credentials.client_secret),
                    headers={"Accept": "application/json"},
                )
            except httpx.TransportError as e:
                logger.error(f"PayPal token request failed ({self._config.mode}): {type(e).__name__}")
                raise GatewayUnavailable("PayPal is unreachable", original_error=e)

            if not response.is_success:
                body = _safe_json(response)
                logger.error(
                    f"PayPal token request rejected ({self._config.mode}): "
                    f"HTTP {response.status_code} {body.get('error')}"
                )
                raise GatewayAuthFailed(
                    "Failed to get PayPal access token",
                    name=body.get("error") or body.get("name"),
                    debug_id=body.get("debug_id"),
                    details=body.get("error_description"),
                )

            body = _safe_json(response)
            token = body.get("access_token")
            if not token:
                raise GatewayAuthFailed("PayPal token response did not contain a token")

            expires_in = int(body.get("expires_in") or 0)
            self._token = AccessToken(
                token=token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            )
            return self._token

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        mutating: bool,
        access_token: Optional[str] = None,
        json_body: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        if access_token is None:
            access_token = (await self.get_access_token()).token

        request_headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            **(headers or {}),
        }

        try:
            response = await self._client.request(
                method,
                path,
                json=json_body,
                headers=request_headers,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            # Request never left this host
            logger.error(f"PayPal {method} {path} could not connect: {type(e).__name__}")
            raise GatewayUnavailable("PayPal is unreachable", original_error=e)
        except httpx.TransportError as e:
            logger.error(f"PayPal {method} {path} failed in flight: {type(e).__name__}")
            if mutating:
                raise Indeterminate(
                    "PayPal did not confirm the outcome; reconcile before retrying",
                    original_error=e,
                )
            raise GatewayUnavailable("PayPal did not respond in time", original_error=e)

        if response.status_code == 401 and self._token and self._token.token == access_token:
            # Revoked before its advertised expiry
            logger.warning(f"PayPal rejected the cached access token on {method} {path}; dropping it")
            self._token = None

        if not response.is_success:
            raise self._request_failed(response, method, path)

        return response

    def _request_failed(self, response: httpx.Response, method: str, path: str) -> GatewayRequestFailed:
        body = _safe_json(response)
        error = GatewayRequestFailed(
            body.get("message") or f"PayPal request failed with HTTP {response.status_code}",
            status_code=response.status_code,
            name=body.get("name"),
            debug_id=body.get("debug_id") or response.headers.get("paypal-debug-id"),
            details=body.get("details"),
        )
        logger.warning(
            f"PayPal {method} {path} -> {response.status_code} "
            f"name={error.name} debug_id={error.debug_id}"
        )
        return error

    # =========================================================================
    # Captures
    # =========================================================================

    async def capture_order(
        self,
        order_id: str,
        access_token: Optional[str] = None,
    ) -> CaptureResult:
        """
        Capture an approved checkout order.

        Args:
            order_id: PayPal order id
            access_token: Reuse a token the caller already holds

        Returns:
            CaptureResult with the first capture of the first purchase unit

        Raises:
            CapturedButNotCompleted: If PayPal reports any status but COMPLETED
        """
        response = await self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            mutating=True,
            access_token=access_token,
        )
        data = _safe_json(response)
        status = data.get("status")

        if status != "COMPLETED":
            logger.warning(f"Order {order_id} capture returned status {status}")
            raise CapturedButNotCompleted(
                "Payment capture not completed",
                capture_status=status,
                raw=data,
            )

        unit = (data.get("purchase_units") or [{}])[0]
        capture = ((unit.get("payments") or {}).get("captures") or [{}])[0]
        amount = capture.get("amount") or {}

        logger.info(f"Captured order {order_id} (capture {capture.get('id')})")
        return CaptureResult(
            id=data.get("id") or order_id,
            status=status,
            capture_id=capture.get("id"),
            amount=amount.get("value"),
            currency=amount.get("currency_code"),
            custom_id=unit.get("custom_id"),
            raw=data,
        )

    async def capture_authorization(
        self,
        authorization_id: str,
        access_token: Optional[str] = None,
    ) -> CaptureResult:
        """
        Capture the full amount of an authorized payment.

        Raises:
            CapturedButNotCompleted: If PayPal reports any status but COMPLETED
        """
        response = await self._request(
            "POST",
            f"/v2/payments/authorizations/{authorization_id}/capture",
            mutating=True,
            access_token=access_token,
            json_body={},
        )
        data = _safe_json(response)
        status = data.get("status")

        if status != "COMPLETED":
            logger.warning(f"Authorization {authorization_id} capture returned status {status}")
            raise CapturedButNotCompleted(
                "Authorization capture not completed",
                capture_status=status,
                raw=data,
            )

        amount = data.get("amount") or {}
        return CaptureResult(
            id=authorization_id,
            status=status,
            capture_id=data.get("id"),
            amount=amount.get("value"),
            currency=amount.get("currency_code"),
            custom_id=data.get("custom_id"),
            raw=data,
        )

    # =========================================================================
    # Billing subscriptions
    # =========================================================================

    async def get_subscription_details(
        self,
        subscription_id: str,
        access_token: Optional[str] = None,
    ) -> RemoteSubscription:
        """Fetch PayPal's current view of a billing subscription."""
        response = await self._request(
            "GET",
            f"/v1/billing/subscriptions/{subscription_id}",
            mutating=False,
            access_token=access_token,
            headers={"Cache-Control": "no-store"},
        )
        data = _safe_json(response)
        return RemoteSubscription(
            id=data.get("id") or subscription_id,
            status=(data.get("status") or "").upper(),
            plan_id=data.get("plan_id"),
            raw=data,
        )

    async def cancel_remote_subscription(
        self,
        subscription_id: str,
        reason: str,
        access_token: Optional[str] = None,
    ) -> None:
        """
        Cancel a billing subscription at PayPal.

        Raises:
            RemoteCancelFailed: On any gateway failure; callers treat it as a warning
        """
        try:
            await self._request(
                "POST",
                f"/v1/billing/subscriptions/{subscription_id}/cancel",
                mutating=True,
                access_token=access_token,
                json_body={"reason": (reason or "User requested cancellation")[:MAX_CANCEL_REASON_LENGTH]},
            )
        except (GatewayError, CredentialsMissing) as e:
            logger.warning(f"PayPal cancellation of {subscription_id} failed: {e.message}")
            raise RemoteCancelFailed(
                f"PayPal cancellation failed: {e.message}",
                status_code=getattr(e, "status_code", None),
                name=getattr(e, "name", None),
                debug_id=getattr(e, "debug_id", None),
                original_error=e,
            )

        logger.info(f"PayPal subscription {subscription_id} cancelled")

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def verify_webhook_signature(
        self,
        headers: Mapping[str, str],
        raw_body: bytes | str,
    ) -> dict[str, Any]:
        """
        Ask PayPal whether a webhook delivery is authentic.

        Args:
            headers: Incoming request headers (any case)
            raw_body: Raw request body as received

        Returns:
            PayPal's verification response

        Raises:
            MissingVerificationHeaders: Before any network call
            CredentialsMissing: If no webhook id is configured for the mode
            InvalidSignature: Unless PayPal answers verification_status SUCCESS
        """
        lowered = {key.lower(): value for key, value in headers.items()}
        missing = [name for name in VERIFICATION_HEADERS if not lowered.get(name)]
        if missing:
            raise MissingVerificationHeaders(missing)

        webhook_id = self._config.webhook_id
        if not webhook_id:
            raise CredentialsMissing(
                f"PayPal {self._config.mode} webhook id is not configured",
                missing_keys=["webhook_id"],
            )

        try:
            webhook_event = json.loads(raw_body)
        except ValueError:
            raise InvalidSignature("Webhook body is not valid JSON")

        payload = {
            "auth_algo": lowered["paypal-auth-algo"],
            "cert_url": lowered["paypal-cert-url"],
            "transmission_id": lowered["paypal-transmission-id"],
            "transmission_sig": lowered["paypal-transmission-sig"],
            "transmission_time": lowered["paypal-transmission-time"],
            "webhook_id": webhook_id,
            "webhook_event": webhook_event,
        }

        try:
            response = await self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                mutating=False,
                json_body=payload,
            )
        except GatewayRequestFailed as e:
            raise InvalidSignature(
                "PayPal rejected the verification request",
                details={"status": e.status_code, "debug_id": e.debug_id},
                original_error=e,
            )

        result = _safe_json(response)
        if result.get("verification_status") != "SUCCESS":
            logger.warning(
                f"Webhook signature verification failed: {result.get('verification_status')} "
                f"(transmission {lowered['paypal-transmission-id']})"
            )
            raise InvalidSignature("Invalid webhook signature")

        return result
