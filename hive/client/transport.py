"""
HTTP transport for the poll client, using requests.

Maps transport outcomes onto the relay error taxonomy:
- connection errors, timeouts and 5xx -> TransientIOError
- 400 -> ValidationError, 404 -> NotFound, 409 -> ConstraintViolation
"""

import logging
from typing import Any, Optional

import requests

from hive.errors import ConstraintViolation, NotFound, TransientIOError, ValidationError

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: ValidationError,
    404: NotFound,
    409: ConstraintViolation,
}


class RelayClient:
    """Thin wrapper over the relay's ``/api/v1`` surface."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def _request(self, method: str, path: str, json: Any = None, params: dict = None) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._session.request(
                method, url, json=json, params=params, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise TransientIOError(f"{method} {path} failed: {exc}", {"path": path}) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 500:
            raise TransientIOError(
                f"{method} {path} returned {response.status_code}: {data.get('error', response.text)}",
                {"path": path, "status": response.status_code}
            )
        if response.status_code >= 400:
            error_class = _STATUS_ERRORS.get(response.status_code, ValidationError)
            raise error_class(
                data.get("error") or f"{method} {path} returned {response.status_code}",
                {"path": path, "status": response.status_code}
            )
        return data

    # ============ APP LIFECYCLE ============

    def register(self, audience: str, app_id: Optional[str] = None, metadata: dict = None) -> dict:
        body = {"type": audience}
        if app_id:
            body["appId"] = app_id
        if metadata:
            body["metadata"] = metadata
        return self._request("POST", "register", json=body)

    def heartbeat(self, app_id: str) -> dict:
        return self._request("POST", f"apps/{app_id}/heartbeat")

    def report_error(self, audience: str, error_type: str, message: str,
                     metadata: dict = None, app_id: Optional[str] = None) -> dict:
        return self._request("POST", "errors", json={
            "type": audience,
            "errorType": error_type,
            "message": message,
            "metadata": metadata or {},
            "appId": app_id,
        })

    # ============ UPDATES ============

    def fetch_updates(self, audience: str, last_update: int = 0, app_id: Optional[str] = None) -> list[dict]:
        params = {"lastUpdate": int(last_update)}
        if app_id:
            params["appId"] = app_id
        return self._request("GET", f"updates/{audience}", params=params).get("updates", [])

    def acknowledge(self, update_ids: list[str]) -> int:
        return self._request("POST", "updates/acknowledge", json={"updateIds": list(update_ids)}).get("processed", 0)

    def broadcast_selection(self, audience: str, selection: Any, timestamp: Optional[int] = None) -> dict:
        return self._request("POST", f"selection/{audience}/broadcast", json={
            "selection": selection,
            "timestamp": timestamp,
        })

    def push_value(self, connection_id: str, value: Any, timestamp: Optional[int] = None) -> dict:
        return self._request("POST", "updates/cell", json={
            "connectionId": connection_id,
            "value": value,
            "timestamp": timestamp,
        })

    # ============ CONNECTIONS ============

    def create_connection(self, source_ref: str, target_ref: str) -> dict:
        data = self._request("POST", "connections", json={"sourceRef": source_ref, "targetRef": target_ref})
        return data["connection"]

    def delete_connection(self, connection_id: str) -> None:
        self._request("DELETE", f"connections/{connection_id}")

    def close(self) -> None:
        self._session.close()
