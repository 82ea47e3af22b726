# offline_sync/remote_api/client.py
#
#
# Imports
import json
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from ..exceptions import AuthenticationError, RemoteRejection, TransientNetworkError
from .base import ChangeHandler, Unsubscribe
from .feed import ChangeFeedHub
from .schemas import ChangeEvent, OrderBy, QueryFilter, Record
#
########################################################################################################################
#
# Functions:

# Retryable on a later drain, in addition to every 5xx.
TRANSIENT_STATUS_CODES = {408, 425, 429}


class RestBackend:
    """
    Remote backend for a PostgREST-style API (`{prefix}/{resource}` with `col=eq.value` filters).

    Confirmed writes are published on `self.feed`; an external realtime listener can
    publish other clients' writes into the same hub.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, token: Optional[str] = None,
                 rest_prefix: str = "/rest/v1", timeout: float = 30.0, id_field: str = "id",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.token = token or api_key
        self.rest_prefix = "/" + rest_prefix.strip('/') if rest_prefix.strip('/') else ""
        self.timeout = timeout
        self.id_field = id_field
        self.feed = ChangeFeedHub()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["apikey"] = self.api_key
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _endpoint(self, resource: str) -> str:
        return f"{self.rest_prefix}/{resource}"

    async def _request(
        self,
        method: str,
        resource: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        prefer_representation: bool = False,
    ) -> Any:
        client = await self._get_client()
        endpoint = self._endpoint(resource)
        headers = {"Prefer": "return=representation"} if prefer_representation else None

        try:
            response = await client.request(method, endpoint, params=params, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error_detail = str(e)
            response_data = None
            try:
                response_data = e.response.json()
                if isinstance(response_data, dict):
                    error_detail = response_data.get("message") or response_data.get("detail") or error_detail
            except ValueError:
                pass  # body was not JSON

            if status in (401, 403):
                raise AuthenticationError(status, f"Authentication failed: {error_detail}",
                                          response_data=response_data, cause=e) from e
            if status in TRANSIENT_STATUS_CODES or status >= 500:
                raise TransientNetworkError(f"{method} {endpoint} failed with {status}: {error_detail}",
                                            status_code=status, cause=e) from e
            raise RemoteRejection(status, error_detail, response_data=response_data, cause=e) from e
        except httpx.RequestError as e:  # ConnectError, TimeoutException, etc.
            raise TransientNetworkError(f"Connection error to {self.base_url}{endpoint}: {e}", cause=e) from e

        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise RemoteRejection(response.status_code, "Failed to decode JSON response",
                                  response_data={"raw_text": response.text}, cause=e) from e

    def _id_params(self, record_id: Any) -> Dict[str, str]:
        return {self.id_field: f"eq.{record_id}"}

    @staticmethod
    def _single(body: Any, method: str, resource: str) -> Record:
        if isinstance(body, list):
            if not body:
                raise RemoteRejection(404, f"{method} on '{resource}' matched no rows")
            return body[0]
        if isinstance(body, dict):
            return body
        raise RemoteRejection(500, f"Unexpected response body for {method} on '{resource}'",
                              response_data={"body": body})

    async def query(self, resource: str, filter: Optional[QueryFilter] = None,
                    order_by: Optional[OrderBy] = None) -> List[Record]:
        params = {"select": "*"}
        if filter is not None:
            params[filter.column] = f"eq.{filter.value}"
        if order_by is not None:
            params["order"] = f"{order_by.column}.{'asc' if order_by.ascending else 'desc'}"
        body = await self._request("GET", resource, params=params)
        if body is None:
            return []
        if not isinstance(body, list):
            raise RemoteRejection(500, f"Expected a list of rows from '{resource}'", response_data={"body": body})
        logger.debug(f"RestBackend: fetched {len(body)} rows from '{resource}'")
        return body

    async def insert(self, resource: str, payload: Record) -> Record:
        body = await self._request("POST", resource, payload=payload, prefer_representation=True)
        record = self._single(body, "insert", resource)
        self.feed.publish(ChangeEvent(resource=resource, operation='insert', record=record))
        return record

    async def update(self, resource: str, record_id: Any, payload: Record) -> Record:
        changes = {k: v for k, v in payload.items() if k != self.id_field}
        body = await self._request("PATCH", resource, params=self._id_params(record_id),
                                   payload=changes, prefer_representation=True)
        record = self._single(body, "update", resource)
        self.feed.publish(ChangeEvent(resource=resource, operation='update', record=record))
        return record

    async def delete(self, resource: str, record_id: Any) -> None:
        body = await self._request("DELETE", resource, params=self._id_params(record_id),
                                   prefer_representation=True)
        previous = body[0] if isinstance(body, list) and body else {self.id_field: record_id}
        self.feed.publish(ChangeEvent(resource=resource, operation='delete', previous=previous))

    def subscribe(self, resource: str, handler: ChangeHandler,
                  filter: Optional[QueryFilter] = None) -> Unsubscribe:
        return self.feed.subscribe(resource, handler, filter)

#
# End of offline_sync/remote_api/client.py
########################################################################################################################
