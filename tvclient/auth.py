"""
Auth coordinator: turns stored cookie credentials into a WebSocket auth token.

The fetch is started eagerly (at connect and before every reconnect) so its
latency overlaps the TCP/TLS handshake; the open handler is its single
consumer. Failures never stop the client: after the last attempt the error
is reported and the unauthenticated sentinel token is used instead.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import AuthError
from .rest.auth import get_user
from .types import DEFAULT_LOCATION, UNAUTHORIZED_TOKEN


logger = logging.getLogger("tvclient.auth")

FetchUser = Callable[[str, str, str], Awaitable[Any]]


class AuthCoordinator:
    """Produces an auth token with bounded retries and a sentinel fallback."""

    def __init__(
        self,
        token: Optional[str] = None,
        signature: Optional[str] = None,
        location: str = DEFAULT_LOCATION,
        max_attempts: int = 2,
        retry_delay_ms: int = 500,
        fetch_user: Optional[FetchUser] = None,
        on_error: Optional[Callable[[AuthError], None]] = None
    ):
        """
        Args:
            token: 'sessionid' cookie value
            signature: 'sessionid_sign' cookie value
            location: Page that embeds the auth token
            max_attempts: Fetch attempts before falling back
            retry_delay_ms: Sleep between attempts
            fetch_user: ``async (session, signature, location) -> user`` where
                ``user.auth_token`` holds the token (defaults to the REST
                ``get_user``)
            on_error: Receives the final error when every attempt failed
        """
        self._token = token
        self._signature = signature or ""
        self._location = location or DEFAULT_LOCATION
        self._max_attempts = max(1, int(max_attempts))
        self._retry_delay = max(0, retry_delay_ms) / 1000
        self._fetch_user = fetch_user
        self._on_error = on_error

        self._task: Optional[asyncio.Task] = None
        self.user: Any = None

    @property
    def has_credentials(self) -> bool:
        return bool(self._token)

    def prepare(self) -> None:
        """Start a fresh token fetch for the next connection cycle."""
        if not self.has_credentials:
            return
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._fetch())

    async def token(self) -> str:
        """Await the token for the current cycle (sentinel on failure)."""
        if not self.has_credentials:
            return UNAUTHORIZED_TOKEN
        if self._task is None:
            self.prepare()
        return await self._task

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _fetch(self) -> str:
        fetch_user = self._fetch_user or get_user

        last_error: Optional[BaseException] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                user = await fetch_user(self._token, self._signature, self._location)
                auth_token = getattr(user, "auth_token", None)
                if auth_token:
                    self.user = user
                    logger.info(f"Auth token obtained (attempt {attempt})")
                    return auth_token
                last_error = AuthError("Auth token missing from user profile")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Auth attempt {attempt}/{self._max_attempts} failed: {e}")

            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_delay)

        error = last_error if isinstance(last_error, AuthError) else AuthError(f"Credentials error: {last_error}")
        if self._on_error:
            self._on_error(error)
        else:
            logger.error(str(error))
        return UNAUTHORIZED_TOKEN
