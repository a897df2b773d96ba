"""Async client for the community platform's REST API, tokens and webhooks.

Every platform operation goes through one pinned contract:

- user tokens are JWTs verified locally with python-jose; ``sub`` is the user id
- ``GET /users/{user_id}/access/{experience_id}`` returns ``access_level``
- ``GET /messages?channel_id=...&first=N`` returns ``{"data": [...]}``
- ``POST /messages`` with ``{channel_id, content}`` posts a chat message
- webhooks are signed with the Standard Webhooks HMAC-SHA256 scheme
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from collections.abc import Mapping
from typing import Any

import httpx
from jose import JWTError, jwt

from .config import config
from .errors import (
    AuthenticationError,
    AuthorizationError,
    CoachBotError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    ServiceUnavailableError,
)
from .models import DeliveryResult, PlatformMessage

logger = config.get_logger(__name__)

ADMIN_ACCESS_LEVEL = "admin"
WEBHOOK_TOLERANCE_SECONDS = 5 * 60
WEBHOOK_SECRET_PREFIX = "whsec_"


class PlatformClient:
    """Talks to the platform on behalf of the bot."""

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        app_id: str | None = None,
        webhook_secret: str | None = None,
        token_key: str | None = None,
        token_algorithm: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the platform client.

        Args:
            api_key: Server API key. If None, reads PLATFORM_API_KEY.
            base_url: REST API root. If None, uses config.PLATFORM_API_URL.
            app_id: Expected token audience. If None, uses config.PLATFORM_APP_ID.
            webhook_secret: Webhook signing secret. If None, reads
                PLATFORM_WEBHOOK_SECRET.
            token_key: Public key verifying user tokens. If None, reads
                PLATFORM_TOKEN_KEY.
            token_algorithm: JWT algorithm. If None, uses
                config.PLATFORM_TOKEN_ALGORITHM.
            timeout: Request timeout in seconds.
            transport: Custom httpx transport, mostly for tests.
        """
        self.api_key = api_key if api_key is not None else config.get_platform_api_key()
        self.base_url = (base_url or config.PLATFORM_API_URL).rstrip("/")
        self.app_id = app_id if app_id is not None else config.PLATFORM_APP_ID
        if webhook_secret is None:
            webhook_secret = config.get_webhook_secret()
        self.webhook_secret = webhook_secret
        self.token_key = token_key if token_key is not None else config.get_token_key()
        self.token_algorithm = token_algorithm or config.PLATFORM_TOKEN_ALGORITHM

        headers = {"Accept": "application/json", **config.get_api_headers()}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or config.PLATFORM_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body.

        Returns:
            Decoded JSON payload, or None for empty bodies.

        Raises:
            ConfigurationError: If no API key is configured.
            ServiceUnavailableError: On transport failures or 5xx.
            AuthenticationError: On 401.
            AuthorizationError: On 403.
            NotFoundError: On 404.
            RateLimitError: On 429.
            ProviderError: On any other failure or undecodable body.
        """
        if not self.api_key:
            msg = "PLATFORM_API_KEY environment variable is not set"
            raise ConfigurationError(msg, missing=["PLATFORM_API_KEY"])

        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error(
                "Platform %s %s failed with %d: %s",
                method,
                path,
                status,
                exc.response.text,
            )
            raise self._map_status(status, exc.response.text) from exc
        except httpx.HTTPError as exc:
            logger.exception("Platform %s %s transport error", method, path)
            msg = "Platform API is unreachable. Please try again later."
            raise ServiceUnavailableError(msg, details=str(exc)) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            msg = f"Platform returned a non-JSON response for {method} {path}"
            raise ProviderError(msg, details=response.text[:200]) from exc

    @staticmethod
    def _map_status(status: int, body: str) -> CoachBotError:
        if status == httpx.codes.UNAUTHORIZED:
            return AuthenticationError("Platform rejected the credentials")
        if status == httpx.codes.FORBIDDEN:
            return AuthorizationError("Platform denied access", details=body)
        if status == httpx.codes.NOT_FOUND:
            return NotFoundError("Platform resource not found", details=body)
        if status == httpx.codes.TOO_MANY_REQUESTS:
            return RateLimitError("Platform API rate limit exceeded")
        if status >= httpx.codes.INTERNAL_SERVER_ERROR:
            return ServiceUnavailableError("Platform API server error", details=body)
        return ProviderError(f"Platform API error ({status})", details=body)

    # Tokens and access

    def verify_user_token(self, token: str | None) -> str:
        """Verify a platform user token.

        Returns:
            The authenticated user id.

        Raises:
            AuthenticationError: If the token is missing, invalid or has no subject.
            ConfigurationError: If no verification key is configured.
        """
        if not token:
            msg = "Missing user token"
            raise AuthenticationError(msg)
        if not self.token_key:
            msg = "PLATFORM_TOKEN_KEY environment variable is not set"
            raise ConfigurationError(msg, missing=["PLATFORM_TOKEN_KEY"])

        key = self.token_key.replace("\\n", "\n")
        try:
            if self.app_id:
                claims = jwt.decode(
                    token, key, algorithms=[self.token_algorithm], audience=self.app_id
                )
            else:
                claims = jwt.decode(
                    token,
                    key,
                    algorithms=[self.token_algorithm],
                    options={"verify_aud": False},
                )
        except JWTError as exc:
            logger.warning("Rejected user token: %s", exc)
            msg = "Invalid user token"
            raise AuthenticationError(msg) from exc

        user_id = claims.get("sub")
        if not user_id:
            msg = "User token has no subject"
            raise AuthenticationError(msg)
        return str(user_id)

    async def check_access(self, user_id: str, experience_id: str) -> str:
        """Look up a user's access level for an experience.

        Returns:
            Access level string, e.g. "admin", "customer" or "no_access".

        Raises:
            ProviderError: If the response lacks an access level.
        """
        payload = await self._request("GET", f"/users/{user_id}/access/{experience_id}")
        if not isinstance(payload, dict) or "access_level" not in payload:
            msg = "Unexpected access check response"
            raise ProviderError(msg, details=str(payload)[:200])
        return str(payload["access_level"])

    async def require_admin(self, token: str | None, experience_id: str) -> str:
        """Authenticate a token and require admin access to an experience.

        Returns:
            The admin's user id.

        Raises:
            AuthenticationError: If the token is invalid.
            AuthorizationError: If the user is not an admin of the experience.
        """
        user_id = self.verify_user_token(token)
        access_level = await self.check_access(user_id, experience_id)
        if access_level != ADMIN_ACCESS_LEVEL:
            logger.warning(
                "User %s has %s access to %s; admin required",
                user_id,
                access_level,
                experience_id,
            )
            msg = "Admin access required"
            raise AuthorizationError(msg)
        return user_id

    # Messages

    async def list_messages(
        self, channel_id: str, limit: int | None = None
    ) -> list[PlatformMessage]:
        """Fetch the most recent messages of a chat channel.

        Returns:
            Messages in the order the platform returned them.

        Raises:
            ProviderError: If the response has no ``data`` list.
        """
        payload = await self._request(
            "GET",
            "/messages",
            params={
                "channel_id": channel_id,
                "first": limit or config.POLL_MESSAGE_LIMIT,
            },
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            msg = "Unexpected list messages response"
            raise ProviderError(msg, details=str(payload)[:200])
        return [
            PlatformMessage.from_payload(item)
            for item in data
            if isinstance(item, dict)
        ]

    async def create_message(self, channel_id: str, content: str) -> dict[str, Any]:
        """Post a chat message to a channel.

        Returns:
            The created message payload.
        """
        payload = await self._request(
            "POST", "/messages", json={"channel_id": channel_id, "content": content}
        )
        return payload if isinstance(payload, dict) else {}

    async def send_response(self, channel_id: str, content: str) -> DeliveryResult:
        """Deliver a bot response, recording rather than raising failures.

        Returns:
            DeliveryResult describing whether the message was posted.
        """
        try:
            await self.create_message(channel_id, content)
        except CoachBotError as exc:
            logger.exception("Failed to send message to channel %s", channel_id)
            return DeliveryResult(sent=False, method="none", error=exc.message)
        logger.info("Sent response to channel %s", channel_id)
        return DeliveryResult(sent=True, method="messages")

    # Webhooks

    def _signing_key(self) -> bytes:
        secret = self.webhook_secret
        if secret.startswith(WEBHOOK_SECRET_PREFIX):
            try:
                return base64.b64decode(secret.removeprefix(WEBHOOK_SECRET_PREFIX))
            except binascii.Error as exc:
                msg = "PLATFORM_WEBHOOK_SECRET is not valid base64"
                raise ConfigurationError(
                    msg, missing=["PLATFORM_WEBHOOK_SECRET"]
                ) from exc
        return secret.encode()

    def sign_webhook(self, webhook_id: str, timestamp: str, body: bytes) -> str:
        """Compute the signature header value for a webhook body.

        Returns:
            ``v1,<base64 HMAC-SHA256>`` over ``{id}.{timestamp}.{body}``.
        """
        signed = f"{webhook_id}.{timestamp}.".encode() + body
        digest = hmac.new(self._signing_key(), signed, hashlib.sha256).digest()
        return f"v1,{base64.b64encode(digest).decode()}"

    def unwrap_webhook(
        self,
        body: bytes,
        headers: Mapping[str, str],
        *,
        now: float | None = None,
    ) -> dict[str, Any]:
        """Verify a webhook signature and decode its JSON body.

        Returns:
            The decoded event payload.

        Raises:
            ConfigurationError: If no webhook secret is configured.
            AuthenticationError: If headers are missing, stale or do not match.
            ValueError: If the verified body is not a JSON object.
        """
        if not self.webhook_secret:
            msg = "Webhook secret not configured"
            raise ConfigurationError(msg, missing=["PLATFORM_WEBHOOK_SECRET"])

        webhook_id = headers.get("webhook-id")
        timestamp = headers.get("webhook-timestamp")
        signature_header = headers.get("webhook-signature")
        if not webhook_id or not timestamp or not signature_header:
            msg = "Missing webhook signature headers"
            raise AuthenticationError(msg)

        try:
            sent_at = int(timestamp)
        except ValueError as exc:
            msg = "Invalid webhook timestamp"
            raise AuthenticationError(msg) from exc
        current = time.time() if now is None else now
        if abs(current - sent_at) > WEBHOOK_TOLERANCE_SECONDS:
            msg = "Webhook timestamp outside tolerance"
            raise AuthenticationError(msg)

        expected = self.sign_webhook(webhook_id, timestamp, body)
        candidates = signature_header.split()
        if not any(hmac.compare_digest(expected, sig) for sig in candidates):
            msg = "Webhook signature mismatch"
            raise AuthenticationError(msg)

        payload = json.loads(body)
        if not isinstance(payload, dict):
            msg = "Webhook body is not a JSON object"
            raise ValueError(msg)  # noqa: TRY004
        return payload
