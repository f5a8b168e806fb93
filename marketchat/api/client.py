"""
Marketplace REST client.

WHAT: Async HTTP collaborator for conversations, messages, offers and reviews
WHY: One place owns bearer auth, token refresh, retries and error mapping
HOW: HTTPX AsyncClient, single-flight token refresh, exponential backoff on GETs
"""

import asyncio
import json
import re
from decimal import Decimal
from typing import Any, Optional

import httpx

from .types import (
    ApiResponseError,
    ApiTimeoutError,
    ApiUnavailableError,
    AuthenticationExpiredError,
    ConflictError,
    DuplicateReviewError,
    NotFoundError,
    PermissionDeniedError,
    TokenStore,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

_DUPLICATE_REVIEW_PATTERN = re.compile(r"already\s+(reviewed|exists)|unique|duplicate", re.IGNORECASE)


def _extract_detail(response: httpx.Response) -> Any:
    """Best-effort human readable error detail from a backend error response."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or None

    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            if body.get(key):
                return body[key]
        non_field = body.get("non_field_errors")
        if isinstance(non_field, list) and non_field:
            return non_field[0]
        return body
    if isinstance(body, list) and body:
        return body[0]
    return body


def _unwrap_list(data: Any) -> list[dict[str, Any]]:
    """List endpoints may be paginated ({"results": [...]})."""
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        return data["results"]
    if isinstance(data, list):
        return data
    raise ApiResponseError(f"Expected a list response, got {type(data).__name__}")


class MarketplaceClient:
    """Marketplace backend client with bearer auth and one-shot token refresh."""

    def __init__(
        self,
        tokens: TokenStore,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the client.

        Args:
            tokens: Holder of the access/refresh token pair
            base_url: Backend root (defaults to settings.API_BASE_URL)
            timeout: Read timeout in seconds
            max_retries: Attempts for idempotent (GET) requests
            retry_delay: Base delay for exponential backoff
            transport: Optional httpx transport (tests)
        """
        self.tokens = tokens
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.API_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.API_RETRY_DELAY
        self._refresh_lock = asyncio.Lock()

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.API_CONNECT_TIMEOUT, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _auth_headers(self) -> dict[str, str]:
        if self.tokens.access_token:
            return {"Authorization": f"Bearer {self.tokens.access_token}"}
        return {}

    async def _refresh_access_token(self, rejected_token: Optional[str]):
        """
        Exchange the refresh token for a new access token.

        Concurrent 401s share one refresh: whoever takes the lock second sees
        the access token already changed and returns immediately.

        Raises:
            AuthenticationExpiredError: No refresh token, or the refresh was refused
        """
        async with self._refresh_lock:
            if self.tokens.access_token and self.tokens.access_token != rejected_token:
                return

            refresh_token = self.tokens.refresh_token
            if not refresh_token:
                self.tokens.sign_out()
                raise AuthenticationExpiredError("No refresh token available", status_code=401)

            try:
                response = await self.client.post(
                    settings.TOKEN_REFRESH_PATH,
                    json={"refresh": refresh_token}
                )
                response.raise_for_status()
                access = response.json()["access"]
            except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Token refresh failed: {e}")
                self.tokens.sign_out()
                raise AuthenticationExpiredError("Token refresh failed", status_code=401) from e

            self.tokens.set_tokens(access, response.json().get("refresh"))
            logger.info("Access token refreshed")

    def _raise_for_status(self, response: httpx.Response):
        """Map backend error statuses onto transport exceptions."""
        status = response.status_code
        if status < 400:
            return

        detail = _extract_detail(response)
        message = f"HTTP {status}: {detail}"

        if status == 403:
            raise PermissionDeniedError(message, status_code=status, detail=detail)
        if status == 404:
            raise NotFoundError(message, status_code=status, detail=detail)
        if status in (400, 409):
            raise ConflictError(message, status_code=status, detail=detail)
        raise ApiResponseError(message, status_code=status, detail=detail)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        allow_refresh: bool = True
    ) -> Any:
        """
        Send a request and decode the JSON body.

        GETs retry timeouts, connection errors and 5xx with exponential backoff;
        other methods are attempted once so a message is never created twice.
        A 401 triggers exactly one refresh-and-retry; a second 401 signs out.

        Raises:
            ApiTimeoutError: Request timed out (after retries for GET)
            ApiUnavailableError: Backend not reachable
            AuthenticationExpiredError: Session could not be renewed
            ApiResponseError: Any other error status or undecodable body
        """
        attempts = self.max_retries if method == "GET" else 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            token_used = self.tokens.access_token

            try:
                response = await self.client.request(
                    method,
                    path,
                    json=json_body,
                    headers=self._auth_headers()
                )
            except httpx.TimeoutException as e:
                logger.warning(f"{method} {path} timeout (attempt {attempt + 1}/{attempts})")
                if last_attempt:
                    raise ApiTimeoutError(f"{method} {path} timed out after {attempts} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))
                continue
            except httpx.ConnectError as e:
                logger.warning(f"{method} {path} connection refused (attempt {attempt + 1}/{attempts})")
                if last_attempt:
                    raise ApiUnavailableError("Marketplace backend is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))
                continue

            if response.status_code == 401:
                if not allow_refresh:
                    logger.warning(f"{method} {path} rejected again after token refresh")
                    self.tokens.sign_out()
                    raise AuthenticationExpiredError("Session expired", status_code=401)
                await self._refresh_access_token(token_used)
                return await self._request(method, path, json_body=json_body, allow_refresh=False)

            if response.status_code >= 500 and not last_attempt:
                logger.error(f"{method} {path} server error {response.status_code} (attempt {attempt + 1}/{attempts})")
                await asyncio.sleep(self.retry_delay * (2 ** attempt))
                continue

            self._raise_for_status(response)

            if not response.content:
                return None
            try:
                return response.json()
            except (json.JSONDecodeError, ValueError) as e:
                raise ApiResponseError(f"Invalid response format: {e}", status_code=response.status_code) from e

    # ---- Conversations & messages ----

    async def list_conversations(self) -> list[dict[str, Any]]:
        """List the current user's conversations."""
        return _unwrap_list(await self._request("GET", "/api/chat/conversations/"))

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/chat/conversations/{conversation_id}/")

    async def get_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        return _unwrap_list(await self._request("GET", f"/api/chat/conversations/{conversation_id}/messages/"))

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        *,
        is_offer: bool = False,
        price: Decimal | None = None
    ) -> dict[str, Any]:
        """
        Create a message; offers are messages with is_offer and a price.

        Returns:
            The created message as echoed by the backend
        """
        payload: dict[str, Any] = {
            "conversation": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "message_type": "text",
        }
        if is_offer:
            payload["is_offer"] = True
            payload["price"] = str(price)

        data = await self._request("POST", "/api/chat/messages/", json_body=payload)
        logger.info(f"Message sent to conversation {conversation_id} (offer={is_offer})")
        return data

    # ---- Offers ----

    async def _offer_action(self, offer_id: str, action: str) -> Any:
        data = await self._request("POST", f"/api/offers/{offer_id}/{action}/")
        logger.info(f"Offer {offer_id} {action} acknowledged")
        return data

    async def accept_offer(self, offer_id: str) -> Any:
        return await self._offer_action(offer_id, "accept")

    async def reject_offer(self, offer_id: str) -> Any:
        return await self._offer_action(offer_id, "reject")

    async def cancel_offer(self, offer_id: str) -> Any:
        return await self._offer_action(offer_id, "cancel")

    # ---- Reviews ----

    async def submit_review(
        self,
        reviewed_user_id: str,
        reviewed_product_id: str,
        rating: int,
        text: str | None = None
    ) -> dict[str, Any]:
        """
        Create a review.

        Raises:
            DuplicateReviewError: The backend already holds a review by this user for the product
        """
        payload: dict[str, Any] = {
            "reviewed_user": reviewed_user_id,
            "reviewed_product": reviewed_product_id,
            "rating": rating,
        }
        if text:
            payload["text"] = text

        try:
            return await self._request("POST", "/api/reviews/", json_body=payload)
        except ConflictError as e:
            if _DUPLICATE_REVIEW_PATTERN.search(str(e.detail or "")):
                raise DuplicateReviewError(str(e), status_code=e.status_code, detail=e.detail) from e
            raise

    async def get_listing_reviews(self, product_id: str) -> list[dict[str, Any]]:
        return _unwrap_list(await self._request("GET", f"/api/reviews/listing/{product_id}/"))

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
