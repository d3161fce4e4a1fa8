"""
Unit Tests: Auth coordinator
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from tvclient import DEFAULT_LOCATION, UNAUTHORIZED_TOKEN, AuthCoordinator, AuthError


class TestAuthCoordinator:
    """Test token acquisition, retries and the sentinel fallback."""

    @pytest.mark.asyncio
    async def test_no_credentials_uses_sentinel(self):
        async def fetch_user(*args):
            raise AssertionError("must not fetch")

        auth = AuthCoordinator(fetch_user=fetch_user)

        assert not auth.has_credentials
        assert await auth.token() == UNAUTHORIZED_TOKEN

    @pytest.mark.asyncio
    async def test_success(self):
        fetch_user = AsyncMock(return_value=SimpleNamespace(auth_token="A"))

        auth = AuthCoordinator(token="sess", signature="sig", fetch_user=fetch_user)
        auth.prepare()

        assert await auth.token() == "A"
        fetch_user.assert_awaited_once_with("sess", "sig", DEFAULT_LOCATION)
        assert auth.user.auth_token == "A"

    @pytest.mark.asyncio
    async def test_prepare_restarts_fetch(self):
        fetch_user = AsyncMock(return_value=SimpleNamespace(auth_token="A"))
        auth = AuthCoordinator(token="sess", fetch_user=fetch_user)

        auth.prepare()
        assert await auth.token() == "A"
        auth.prepare()
        assert await auth.token() == "A"

        assert fetch_user.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []

        async def fetch_user(*args):
            attempts.append(args)
            if len(attempts) == 1:
                raise ConnectionError("flaky")
            return SimpleNamespace(auth_token="B")

        auth = AuthCoordinator(token="sess", retry_delay_ms=0, fetch_user=fetch_user)

        assert await auth.token() == "B"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_falls_back_and_reports_after_last_attempt(self):
        errors = []

        async def fetch_user(*args):
            raise ConnectionError("down")

        auth = AuthCoordinator(
            token="sess",
            max_attempts=3,
            retry_delay_ms=0,
            fetch_user=fetch_user,
            on_error=errors.append,
        )

        assert await auth.token() == UNAUTHORIZED_TOKEN
        assert len(errors) == 1
        assert isinstance(errors[0], AuthError)
        assert "down" in str(errors[0])

    @pytest.mark.asyncio
    async def test_missing_token_is_an_error(self):
        errors = []

        async def fetch_user(*args):
            return SimpleNamespace(auth_token="")

        auth = AuthCoordinator(token="sess", max_attempts=1, fetch_user=fetch_user, on_error=errors.append)

        assert await auth.token() == UNAUTHORIZED_TOKEN
        assert isinstance(errors[0], AuthError)
