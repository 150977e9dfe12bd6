"""
Tests for JWTAuthMiddleware.

The middleware is driven directly with a recording inner application, so
these tests cover token extraction and validation without a consumer.
Token lookups run in a worker thread, so the database is transactional.
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from channels.db import database_sync_to_async
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.tokens import AccessToken

from chat.middleware import JWTAuthMiddleware

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]


class RecordingApp:
    """Inner ASGI app that remembers the scope it was called with."""

    def __init__(self):
        self.scope = None

    async def __call__(self, scope, receive, send):
        self.scope = scope


async def _authenticate(query_string=b"", subprotocols=()):
    inner = RecordingApp()
    scope = {
        "type": "websocket",
        "path": "/ws/chat/",
        "query_string": query_string,
        "subprotocols": list(subprotocols),
    }
    await JWTAuthMiddleware(inner)(scope, None, None)
    return inner.scope["user"]


def _token(user) -> str:
    return str(AccessToken.for_user(user))


class TestTokenSources:
    """Where the token is read from."""

    async def test_query_string_token(self, buyer):
        user = await _authenticate(query_string=f"token={_token(buyer)}".encode())

        assert user.id == buyer.id

    async def test_subprotocol_token(self, buyer):
        user = await _authenticate(subprotocols=["jwt", _token(buyer)])

        assert user.id == buyer.id

    async def test_query_string_wins_over_subprotocol(self, buyer, seller):
        user = await _authenticate(
            query_string=f"token={_token(buyer)}".encode(),
            subprotocols=["jwt", _token(seller)],
        )

        assert user.id == buyer.id

    async def test_subprotocol_without_jwt_marker_is_ignored(self, buyer):
        user = await _authenticate(subprotocols=["chat", _token(buyer)])

        assert isinstance(user, AnonymousUser)

    async def test_no_token_is_anonymous(self):
        user = await _authenticate()

        assert isinstance(user, AnonymousUser)


class TestTokenValidation:
    """What makes a token unusable."""

    async def test_expired_token_is_anonymous(self, buyer):
        token = AccessToken.for_user(buyer)
        token.set_exp(lifetime=-timedelta(minutes=1))

        user = await _authenticate(query_string=f"token={token}".encode())

        assert isinstance(user, AnonymousUser)

    async def test_garbage_token_is_anonymous(self):
        user = await _authenticate(query_string=b"token=abc.def.ghi")

        assert isinstance(user, AnonymousUser)

    async def test_deleted_user_is_anonymous(self, outsider):
        token = _token(outsider)
        await database_sync_to_async(outsider.delete)()

        user = await _authenticate(query_string=f"token={token}".encode())

        assert isinstance(user, AnonymousUser)

    async def test_slow_validation_times_out_as_anonymous(self, buyer, settings, caplog):
        settings.CHAT_WS_AUTH_TIMEOUT_SECONDS = 0.05

        async def stalled_lookup(self, token):
            await asyncio.sleep(1)
            return buyer

        with patch.object(JWTAuthMiddleware, "_get_user_from_token", stalled_lookup):
            user = await _authenticate(query_string=f"token={_token(buyer)}".encode())

        assert isinstance(user, AnonymousUser)
        assert "WebSocket token validation timed out" in caplog.text
