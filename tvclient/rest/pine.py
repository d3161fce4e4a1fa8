"""
Saved Pine script versions on the pine-facade service.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

from ..errors import HTTPRequestError
from ..types import Credentials
from ..utils import gen_auth_cookies
from .http import HTTPClient, get_http_client


logger = logging.getLogger("tvclient.rest")

PINE_FACADE_BASE = "https://pine-facade.tradingview.com/pine-facade"

SUCCESS_STATUSES = (200, 201, 204)


def build_auth_headers(credentials: Optional[Credentials] = None) -> Dict[str, str]:
    """Cookie header for the credentials, or nothing when there are none."""
    if credentials is None:
        return {}
    cookie = gen_auth_cookies(credentials.session, credentials.signature)
    return {"cookie": cookie} if cookie else {}


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _check(response: httpx.Response, url: str) -> None:
    if response.status_code >= 400:
        raise HTTPRequestError(f"GET {url} returned {response.status_code}", status_code=response.status_code)


async def list_script_versions(
    pine_id: str,
    credentials: Optional[Credentials] = None,
    http: Optional[HTTPClient] = None
) -> Any:
    """List the saved versions of a script."""
    http = http or get_http_client()
    url = f"{PINE_FACADE_BASE}/versions/{quote(pine_id, safe='')}"
    response = await http.get(url, headers=build_auth_headers(credentials))
    _check(response, url)
    return _body(response)


async def get_script_version(
    pine_id: str,
    version: Union[str, int],
    credentials: Optional[Credentials] = None,
    http: Optional[HTTPClient] = None
) -> Any:
    """Fetch one saved version of a script."""
    http = http or get_http_client()
    url = f"{PINE_FACADE_BASE}/get/{quote(pine_id, safe='')}/{quote(str(version), safe='')}"
    response = await http.get(url, headers=build_auth_headers(credentials))
    _check(response, url)
    return _body(response)


@dataclass
class _DeleteRoute:
    method: str
    url: str
    params: Optional[Dict[str, str]] = None


def _delete_routes(pine_id: str, version: str) -> List[_DeleteRoute]:
    pid = quote(pine_id, safe="")
    routes = []

    if version:
        ver = quote(version, safe="")
        routes += [
            _DeleteRoute("DELETE", f"{PINE_FACADE_BASE}/save/{pid}/{ver}"),
            _DeleteRoute("DELETE", f"{PINE_FACADE_BASE}/delete/{pid}/{ver}"),
            _DeleteRoute("DELETE", f"{PINE_FACADE_BASE}/remove/{pid}/{ver}"),
            _DeleteRoute("POST", f"{PINE_FACADE_BASE}/save/delete", {"pine_id": pine_id, "version": version}),
            _DeleteRoute("POST", f"{PINE_FACADE_BASE}/delete/{pid}", {}),
        ]

    # Whole-script deletions
    routes += [
        _DeleteRoute("DELETE", f"{PINE_FACADE_BASE}/save/{pid}"),
        _DeleteRoute("DELETE", f"{PINE_FACADE_BASE}/delete/{pid}"),
        _DeleteRoute("POST", f"{PINE_FACADE_BASE}/save/remove", {"pine_id": pine_id}),
        _DeleteRoute("POST", f"{PINE_FACADE_BASE}/delete/{pid}", {}),
    ]
    return routes


async def delete_script_version(
    pine_id: str,
    version: Union[str, int] = "",
    credentials: Optional[Credentials] = None,
    http: Optional[HTTPClient] = None
) -> Any:
    """
    Delete a saved script version (or the whole script when no version).

    The service has no single documented delete route, so known routes are
    tried in order and the first 200/201/204 wins.

    Returns:
        Response body of the successful route, or None if every route failed

    Raises:
        ValueError: If ``pine_id`` is empty
    """
    if not pine_id:
        raise ValueError("pine_id is required")

    http = http or get_http_client()
    headers = build_auth_headers(credentials)
    user_name = credentials.user_name if credentials else None

    for route in _delete_routes(pine_id, str(version) if version else ""):
        params = route.params
        # Routes under /delete/ without explicit params expect the owner's name
        if params is None and "/delete/" in route.url and user_name:
            params = {"user_name": user_name}

        try:
            response = await http.request(route.method, route.url, params=params, headers=headers)
        except HTTPRequestError as e:
            logger.debug(f"Delete route {route.method} {route.url} failed: {e}")
            continue

        if response.status_code in SUCCESS_STATUSES:
            logger.info(f"Deleted script {pine_id} via {route.method} {route.url}")
            return _body(response) if response.content else ""

    logger.warning(f"No delete route accepted script {pine_id}")
    return None
