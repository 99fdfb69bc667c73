"""HTTP transport for `api` workflow actions."""

from __future__ import annotations

import logging
from typing import Any

import requests

from prompt_tuner.errors import RemoteCallError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpTransport:
    """Send JSON requests and decode JSON responses.

    Any non-2xx status, transport failure, or non-object body raises `RemoteCallError`.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        self._default_timeout = default_timeout

    def close(self) -> None:
        self._session.close()

    def request_json(
        self,
        method: str,
        url: str,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        timeout = timeout if timeout is not None else self._default_timeout
        logger.debug("Calling api action", extra={"method": method, "url": url})

        try:
            resp = self._session.request(method.upper(), url, json=payload, timeout=timeout)
        except requests.RequestException as e:
            raise RemoteCallError(f"API call to {url} failed: {e}") from e

        if not resp.ok:
            raise RemoteCallError(
                f"API call failed: {resp.status_code} {resp.reason}", status_code=resp.status_code
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteCallError(f"API call to {url} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise RemoteCallError(
                f"API call to {url} returned {type(body).__name__}, not an object"
            )
        return body
