"""
User authentication against the TradingView web endpoints.

- ``get_user``: profile and WebSocket auth token from session cookies
- ``login_user``: session cookies from username/password
- ``with_credential_refresh``: run a call, log in again once on HTTP 401
"""

import logging
import platform
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urljoin

from pydantic import BaseModel, Field

from ..errors import AuthError, HTTPRequestError
from ..types import Credentials, DEFAULT_LOCATION
from ..utils import gen_auth_cookies
from .http import HTTPClient, get_http_client


logger = logging.getLogger("tvclient.rest")

SIGNIN_URL = "https://www.tradingview.com/accounts/signin/"

MAX_REDIRECTS = 5

T = TypeVar("T")


class UserNotifications(BaseModel):
    user: float = 0
    following: float = 0


class User(BaseModel):
    """TradingView user profile."""
    id: Optional[int] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    reputation: float = 0
    following: float = 0
    followers: float = 0
    notifications: UserNotifications = Field(default_factory=UserNotifications)
    session: str = ""
    signature: str = ""
    session_hash: Optional[str] = None
    private_channel: Optional[str] = None
    auth_token: Optional[str] = None
    join_date: Optional[datetime] = None


def _find(pattern: str, text: str) -> Optional[str]:
    match = re.search(pattern, text)
    return match.group(1) if match else None


def _number(value: Optional[str]) -> float:
    try:
        return float(value) if value else 0
    except ValueError:
        return 0


def _date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_user_page(body: str, session: str = "", signature: str = "") -> User:
    """Extract the embedded user profile from a TradingView HTML page."""
    user_id = _find(r'"id":([0-9]{1,10}),', body)
    return User(
        id=int(user_id) if user_id else None,
        username=_find(r'"username":"(.*?)"', body),
        first_name=_find(r'"first_name":"(.*?)"', body),
        last_name=_find(r'"last_name":"(.*?)"', body),
        reputation=_number(_find(r'"reputation":(.*?),', body)),
        following=_number(_find(r',"following":([0-9]*?),', body)),
        followers=_number(_find(r',"followers":([0-9]*?),', body)),
        notifications=UserNotifications(
            following=_number(_find(r'"notification_count":\{"following":([0-9]*),', body)),
            user=_number(_find(r'"notification_count":\{"following":[0-9]*,"user":([0-9]*)', body)),
        ),
        session=session,
        signature=signature,
        session_hash=_find(r'"session_hash":"(.*?)"', body),
        private_channel=_find(r'"private_channel":"(.*?)"', body),
        auth_token=_find(r'"auth_token":"(.*?)"', body),
        join_date=_date(_find(r'"date_joined":"(.*?)"', body)),
    )


async def get_user(
    session: str,
    signature: str = "",
    location: str = DEFAULT_LOCATION,
    http: Optional[HTTPClient] = None
) -> User:
    """
    Get the user profile (and WebSocket auth token) from session cookies.

    Redirects are followed by hand so the cookies travel with every hop.

    Args:
        session: 'sessionid' cookie
        signature: 'sessionid_sign' cookie
        location: Auth page location (for France: https://fr.tradingview.com/)
        http: HTTP client (defaults to the shared one)

    Raises:
        AuthError: If the cookies are wrong or expired
    """
    http = http or get_http_client()
    headers = {"cookie": gen_auth_cookies(session, signature)}

    for _ in range(MAX_REDIRECTS + 1):
        response = await http.get(location, headers=headers, follow_redirects=False)
        body = response.text

        if "auth_token" in body:
            return parse_user_page(body, session, signature)

        redirect = response.headers.get("location")
        if not redirect:
            break
        redirect = urljoin(location, redirect)
        if redirect == location:
            break
        logger.debug(f"Following auth redirect to {redirect}")
        location = redirect

    raise AuthError("Wrong or expired sessionid/signature")


async def login_user(
    username: str,
    password: str,
    remember: bool = True,
    user_agent: str = "TWAPI/3.0",
    http: Optional[HTTPClient] = None
) -> User:
    """
    Log in with username/email and password.

    Returns:
        The user, including fresh ``session`` and ``signature`` cookies

    Raises:
        AuthError: If TradingView rejects the credentials
    """
    http = http or get_http_client()

    form = {"username": username, "password": password}
    if remember:
        form["remember"] = "on"

    response = await http.post(
        SIGNIN_URL,
        data=form,
        headers={
            "referer": "https://www.tradingview.com",
            "User-agent": f"{user_agent} ({platform.version()}; {platform.system()}; {platform.machine()})",
        },
    )

    try:
        data = response.json()
    except ValueError as e:
        raise AuthError(f"Unexpected sign-in response ({response.status_code})") from e

    if data.get("error"):
        raise AuthError(str(data["error"]))

    user = data.get("user") or {}
    return User(
        id=user.get("id"),
        username=user.get("username"),
        first_name=user.get("first_name"),
        last_name=user.get("last_name"),
        reputation=user.get("reputation") or 0,
        following=user.get("following") or 0,
        followers=user.get("followers") or 0,
        notifications=UserNotifications(**(user.get("notification_count") or {})),
        session=response.cookies.get("sessionid") or "",
        signature=response.cookies.get("sessionid_sign") or "",
        session_hash=user.get("session_hash"),
        private_channel=user.get("private_channel"),
        auth_token=user.get("auth_token"),
        join_date=_date(user.get("date_joined")),
    )


def is_auth_error(error: BaseException) -> bool:
    """True for errors caused by an HTTP 401."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    if status == 401:
        return True
    return "401" in str(error)


async def with_credential_refresh(
    fn: Callable[[str, str], Awaitable[T]],
    credentials: Optional[Credentials] = None,
    refresh: Optional[Callable[..., Awaitable[User]]] = None,
    on_refresh: Optional[Callable[[User], Any]] = None
) -> T:
    """
    Call ``fn(session, signature)`` and retry once after logging in again.

    The retry happens only for 401 failures and only when username and
    password are available.
    """
    credentials = credentials or Credentials()
    try:
        return await fn(credentials.session, credentials.signature)
    except (AuthError, HTTPRequestError) as e:
        if not is_auth_error(e):
            raise
        if not credentials.username or not credentials.password:
            raise
        logger.info("Session rejected with 401, refreshing credentials")

        refresh = refresh or login_user
        if credentials.user_agent:
            user = await refresh(credentials.username, credentials.password, credentials.remember, credentials.user_agent)
        else:
            user = await refresh(credentials.username, credentials.password, credentials.remember)
        if on_refresh:
            on_refresh(user)
        return await fn(user.session, user.signature)
