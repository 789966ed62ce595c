"""Network client interface and the default HTTP implementation."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

from streamcache.errors import RemoteError
from streamcache.scope import ScopeFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponse:
    """Parsed API response.

    Attributes:
        payload: Decoded JSON body
        server_time: Server timestamp carried by the response, if any
    """

    payload: Dict[str, Any]
    server_time: Optional[float] = None


class ApiClient(ABC):
    """Abstract network client used by the accessors.

    Implementations must raise RemoteError for every transport or HTTP
    failure, timeouts included. Retries, if any, are the implementation's
    business.

    Examples:
        A minimal in-memory client:
        >>> class StaticClient(ApiClient):
        ...     def request(self, method, resource, scope=None, payload=None):
        ...         return ApiResponse({"streams": []}, server_time=0.0)
    """

    @abstractmethod
    def request(
        self,
        method: str,
        resource: str,
        scope: Optional[ScopeFilter] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """Perform one API call.

        Args:
            method: HTTP method ('GET', 'POST', 'PUT', 'DELETE')
            resource: Resource path relative to the endpoint (e.g. 'events/abc')
            scope: Optional filter sent as query parameters
            payload: Optional JSON body

        Returns:
            ApiResponse

        Raises:
            RemoteError: On transport failure, timeout or error status
        """
        pass

    def close(self) -> None:
        """Release network resources."""
        pass


class HttpApiClient(ApiClient):
    """ApiClient over HTTP(S) using requests.

    The access token is sent in the ``Authorization`` header. The server
    time is read from the ``meta.serverTime`` field of response bodies.
    """

    def __init__(
        self,
        url_endpoint: str,
        token: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize client.

        Args:
            url_endpoint: Base URL of the account API (trailing slash)
            token: Access token
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests session
        """
        self.url_endpoint = url_endpoint
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": token})

    def _url(self, resource: str) -> str:
        return urljoin(self.url_endpoint, resource.lstrip("/"))

    def request(
        self,
        method: str,
        resource: str,
        scope: Optional[ScopeFilter] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        url = self._url(resource)
        params = scope.to_params() if scope is not None else None
        logger.debug(f"{method} {url} params={params}")

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise RemoteError(
                f"{method} {resource} timed out after {self.timeout}s"
            ) from e
        except requests.RequestException as e:
            raise RemoteError(f"{method} {resource} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(
                f"{method} {resource} returned invalid JSON "
                f"(status {response.status_code})",
                status_code=response.status_code,
            ) from e

        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            message = error.get("message") if isinstance(error, dict) else None
            raise RemoteError(
                f"{method} {resource} failed with status {response.status_code}"
                + (f": {message}" if message else ""),
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise RemoteError(
                f"{method} {resource} returned an unexpected body",
                status_code=response.status_code,
            )

        meta = body.get("meta") or {}
        server_time = meta.get("serverTime")
        return ApiResponse(
            payload=body,
            server_time=float(server_time) if server_time is not None else None,
        )

    def close(self) -> None:
        self._session.close()
