"""
JSON API client over the transport chain.

Returns decoded bodies for 2xx/3xx; raises ApiError for anything >= 400.
"""
import logging
from typing import Any, Dict, Optional

from .errors import ApiError, UnauthorizedError, message_from_body, message_for_status
from .events import EventBus
from .transport import Request, Transport, build_transport

logger = logging.getLogger(__name__)


class ApiClient:
    """Thin verb helpers around Transport.send()."""

    def __init__(self, transport: Transport):
        self.transport = transport

    @classmethod
    def from_config(cls, config, token_store, bus: Optional[EventBus] = None) -> "ApiClient":
        return cls(build_transport(config, token_store, bus or EventBus()))

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        logger.debug(f"Making request to {path} (method={method}, params={params}, data={json})")
        response = self.transport.send(Request(method=method, path=path, params=params, json=json))
        logger.debug(f"Response received: status={response.status_code} url={path}")

        if response.ok:
            return response.data

        message = (
            message_from_body(response.data)
            or message_for_status(response.status_code)
            or f"Request failed with status {response.status_code}"
        )
        error_cls = UnauthorizedError if response.status_code == 401 else ApiError
        raise error_cls(message, status_code=response.status_code, payload=response.data)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
