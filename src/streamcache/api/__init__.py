"""Network side of the connection: the API client interface."""

from streamcache.api.client import ApiClient, ApiResponse, HttpApiClient

__all__ = ["ApiClient", "ApiResponse", "HttpApiClient"]
