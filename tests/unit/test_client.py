"""
Unit tests for the marketplace REST client.

WHAT: Test auth headers, token refresh, retries and status mapping
WHY: Every service relies on the client's error taxonomy
HOW: Mock HTTP with respx, test success and failure paths
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest
import respx

from marketchat.api.client import MarketplaceClient
from marketchat.api.types import (
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

BASE = "http://api.test"
MESSAGES_URL = f"{BASE}/api/chat/conversations/c1/messages/"
REFRESH_URL = f"{BASE}/api/token/refresh/"


@pytest.fixture
def tokens():
    return TokenStore(access_token="old-access", refresh_token="refresh-1")


@pytest.fixture
def client(tokens):
    return MarketplaceClient(tokens, base_url=BASE, max_retries=3, retry_delay=0)


def bearer(request: httpx.Request) -> str:
    return request.headers.get("Authorization", "")


@pytest.mark.unit
class TestRequests:
    """Test request shape and response decoding."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_bearer_token_is_sent(self, client):
        route = respx.get(MESSAGES_URL).mock(return_value=httpx.Response(200, json=[]))

        assert await client.get_messages("c1") == []
        assert bearer(route.calls.last.request) == "Bearer old-access"

    @pytest.mark.asyncio
    @respx.mock
    async def test_paginated_lists_are_unwrapped(self, client):
        respx.get(MESSAGES_URL).mock(
            return_value=httpx.Response(200, json={"count": 1, "results": [{"id": 1}]})
        )

        assert await client.get_messages("c1") == [{"id": 1}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_conversations(self, client):
        respx.get(f"{BASE}/api/chat/conversations/").mock(
            return_value=httpx.Response(200, json=[{"id": "c1"}, {"id": "c2"}])
        )

        conversations = await client.list_conversations()
        assert [c["id"] for c in conversations] == ["c1", "c2"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_send_offer_payload(self, client):
        route = respx.post(f"{BASE}/api/chat/messages/").mock(
            return_value=httpx.Response(201, json={"id": 10})
        )

        result = await client.send_message("c1", "u1", "Made offer: ₹450", is_offer=True, price=Decimal("450"))

        assert result == {"id": 10}
        assert json.loads(route.calls.last.request.content) == {
            "conversation": "c1",
            "sender_id": "u1",
            "content": "Made offer: ₹450",
            "message_type": "text",
            "is_offer": True,
            "price": "450",
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_plain_message_has_no_price(self, client):
        route = respx.post(f"{BASE}/api/chat/messages/").mock(
            return_value=httpx.Response(201, json={"id": 11})
        )

        await client.send_message("c1", "u1", "hello")

        body = json.loads(route.calls.last.request.content)
        assert "price" not in body
        assert "is_offer" not in body

    @pytest.mark.asyncio
    @respx.mock
    async def test_offer_action_with_empty_body(self, client):
        route = respx.post(f"{BASE}/api/offers/7/accept/").mock(return_value=httpx.Response(204))

        assert await client.accept_offer("7") is None
        assert route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_review_payload(self, client):
        route = respx.post(f"{BASE}/api/reviews/").mock(
            return_value=httpx.Response(201, json={"id": 3, "rating": 5})
        )

        await client.submit_review("u2", "l1", 5, "Great")

        assert json.loads(route.calls.last.request.content) == {
            "reviewed_user": "u2",
            "reviewed_product": "l1",
            "rating": 5,
            "text": "Great",
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_raises(self, client):
        respx.get(MESSAGES_URL).mock(return_value=httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(ApiResponseError):
            await client.get_messages("c1")


@pytest.mark.unit
class TestErrorMapping:
    """Test status code mapping."""

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status,error", [
        (403, PermissionDeniedError),
        (404, NotFoundError),
        (400, ConflictError),
        (409, ConflictError),
    ])
    async def test_status_mapping(self, client, status, error):
        respx.post(f"{BASE}/api/offers/7/reject/").mock(
            return_value=httpx.Response(status, json={"detail": "nope"})
        )

        with pytest.raises(error) as exc_info:
            await client.reject_offer("7")

        assert exc_info.value.status_code == status
        assert exc_info.value.detail == "nope"

    @pytest.mark.asyncio
    @respx.mock
    async def test_duplicate_review_is_recognised(self, client):
        respx.post(f"{BASE}/api/reviews/").mock(
            return_value=httpx.Response(
                400,
                json={"non_field_errors": ["The fields reviewer, reviewed_product must make a unique set."]}
            )
        )

        with pytest.raises(DuplicateReviewError):
            await client.submit_review("u2", "l1", 5)

    @pytest.mark.asyncio
    @respx.mock
    async def test_other_review_errors_stay_conflicts(self, client):
        respx.post(f"{BASE}/api/reviews/").mock(
            return_value=httpx.Response(400, json={"rating": ["Ensure this value is at most 5."]})
        )

        with pytest.raises(ConflictError) as exc_info:
            await client.submit_review("u2", "l1", 9)
        assert not isinstance(exc_info.value, DuplicateReviewError)


@pytest.mark.unit
class TestRetries:
    """Test retry policy: GETs retry, writes never do."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_retries_server_errors(self, client):
        route = respx.get(MESSAGES_URL).mock(side_effect=[
            httpx.Response(502),
            httpx.Response(200, json=[{"id": 1}]),
        ])

        assert await client.get_messages("c1") == [{"id": 1}]
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_timeout_after_retries(self, client):
        route = respx.get(MESSAGES_URL).mock(side_effect=httpx.TimeoutException("timeout"))

        with pytest.raises(ApiTimeoutError):
            await client.get_messages("c1")
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_refused(self, client):
        respx.get(MESSAGES_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        with pytest.raises(ApiUnavailableError):
            await client.get_messages("c1")

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_is_not_retried(self, client):
        route = respx.post(f"{BASE}/api/chat/messages/").mock(return_value=httpx.Response(503))

        with pytest.raises(ApiResponseError) as exc_info:
            await client.send_message("c1", "u1", "hello")

        assert exc_info.value.status_code == 503
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_timeout_is_not_retried(self, client):
        route = respx.post(f"{BASE}/api/chat/messages/").mock(side_effect=httpx.TimeoutException("timeout"))

        with pytest.raises(ApiTimeoutError):
            await client.send_message("c1", "u1", "hello")
        assert route.call_count == 1


@pytest.mark.unit
class TestTokenRefresh:
    """Test the single refresh-and-retry on 401."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_and_retry(self, client, tokens):
        def messages(request):
            if bearer(request) == "Bearer new-access":
                return httpx.Response(200, json=[])
            return httpx.Response(401, json={"detail": "Token expired"})

        route = respx.get(MESSAGES_URL).mock(side_effect=messages)
        refresh = respx.post(REFRESH_URL).mock(return_value=httpx.Response(200, json={"access": "new-access"}))

        assert await client.get_messages("c1") == []
        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "refresh-1"
        assert json.loads(refresh.calls.last.request.content) == {"refresh": "refresh-1"}
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_rotated_refresh_token_is_kept(self, client, tokens):
        respx.get(MESSAGES_URL).mock(side_effect=[
            httpx.Response(401),
            httpx.Response(200, json=[]),
        ])
        respx.post(REFRESH_URL).mock(
            return_value=httpx.Response(200, json={"access": "new-access", "refresh": "refresh-2"})
        )

        await client.get_messages("c1")
        assert tokens.refresh_token == "refresh-2"

    @pytest.mark.asyncio
    @respx.mock
    async def test_second_401_signs_out(self, client, tokens):
        signed_out = []
        tokens.on_sign_out(lambda: signed_out.append(True))
        route = respx.get(MESSAGES_URL).mock(return_value=httpx.Response(401))
        respx.post(REFRESH_URL).mock(return_value=httpx.Response(200, json={"access": "new-access"}))

        with pytest.raises(AuthenticationExpiredError):
            await client.get_messages("c1")

        assert route.call_count == 2
        assert not tokens.signed_in
        assert signed_out == [True]

    @pytest.mark.asyncio
    @respx.mock
    async def test_refused_refresh_signs_out(self, client, tokens):
        respx.post(f"{BASE}/api/chat/messages/").mock(return_value=httpx.Response(401))
        respx.post(REFRESH_URL).mock(return_value=httpx.Response(401, json={"detail": "Token is invalid"}))

        with pytest.raises(AuthenticationExpiredError):
            await client.send_message("c1", "u1", "hello")

        assert tokens.access_token is None
        assert tokens.refresh_token is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_refresh_token(self):
        tokens = TokenStore(access_token="old-access")
        client = MarketplaceClient(tokens, base_url=BASE, retry_delay=0)
        respx.get(MESSAGES_URL).mock(return_value=httpx.Response(401))
        refresh = respx.post(REFRESH_URL).mock(return_value=httpx.Response(200, json={"access": "x"}))

        with pytest.raises(AuthenticationExpiredError):
            await client.get_messages("c1")

        assert not refresh.called
        assert not tokens.signed_in

    @pytest.mark.asyncio
    @respx.mock
    async def test_concurrent_401s_share_one_refresh(self, client, tokens):
        def messages(request):
            if bearer(request) == "Bearer new-access":
                return httpx.Response(200, json=[])
            return httpx.Response(401)

        respx.get(MESSAGES_URL).mock(side_effect=messages)
        respx.get(f"{BASE}/api/chat/conversations/c1/").mock(side_effect=lambda request: (
            httpx.Response(200, json={"id": "c1"}) if bearer(request) == "Bearer new-access"
            else httpx.Response(401)
        ))
        refresh = respx.post(REFRESH_URL).mock(return_value=httpx.Response(200, json={"access": "new-access"}))

        conversation, messages_list = await asyncio.gather(
            client.get_conversation("c1"),
            client.get_messages("c1"),
        )

        assert conversation == {"id": "c1"}
        assert messages_list == []
        assert refresh.call_count == 1


@pytest.mark.unit
class TestTokenStore:
    """Test sign-out notifications."""

    def test_sign_out_notifies_once(self):
        tokens = TokenStore("a", "r")
        calls = []
        remove = tokens.on_sign_out(lambda: calls.append(1))

        tokens.sign_out()
        tokens.sign_out()

        assert calls == [1]
        remove()
        tokens.set_tokens("b", "r2")
        tokens.sign_out()
        assert calls == [1]

    def test_failing_listener_does_not_block_others(self):
        tokens = TokenStore("a", "r")
        calls = []

        def broken():
            raise RuntimeError("boom")

        tokens.on_sign_out(broken)
        tokens.on_sign_out(lambda: calls.append(1))
        tokens.sign_out()

        assert calls == [1]
