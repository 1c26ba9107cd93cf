"""
Home Assistant Gateway
======================
Thin REST client for the sensor/actuator gateway.

Every call is blocking with a bounded timeout. Transport failures and non-2xx
answers raise :class:`ConnectivityError`; a missing token raises
:class:`ConfigurationError` before any request is made. Callers in the control
loops catch these and fall back to safe defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import requests

from homecontrol.domain.exceptions import ConfigurationError, ConnectivityError
from homecontrol.utils.time import to_iso

logger = logging.getLogger(__name__)

UNAVAILABLE_STATES = frozenset({"unavailable", "unknown", "none", ""})


@dataclass
class EntityState:
    """One entity as reported by ``/api/states``."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EntityState":
        return cls(
            entity_id=str(payload.get("entity_id", "")),
            state=str(payload.get("state", "")),
            attributes=dict(payload.get("attributes") or {}),
            last_changed=payload.get("last_changed"),
        )

    @property
    def is_available(self) -> bool:
        return self.state.strip().lower() not in UNAVAILABLE_STATES

    def numeric_state(self) -> float | None:
        """State parsed as a float, or None when unavailable or non-numeric."""
        if not self.is_available:
            return None
        try:
            return float(self.state)
        except (TypeError, ValueError):
            return None

    def numeric_attribute(self, name: str) -> float | None:
        value = self.attributes.get(name)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


class HomeAssistantGateway:
    """
    REST client for a Home Assistant instance.

    Args:
        base_url: e.g. ``http://homeassistant.local:8123``
        token: Long-lived access token
        timeout: Per-request timeout in seconds
        session: Optional ``requests.Session`` (tests inject a mock)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._token = token or ""
        self._session = session or requests.Session()
        if self._token:
            self._session.headers.update(
                {
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                }
            )
        else:
            logger.warning("Home Assistant token not configured; gateway calls will fail")

    @property
    def is_configured(self) -> bool:
        return bool(self._token and self.base_url)

    # ==================== Reads ====================

    def read_state(self, entity_id: str) -> EntityState:
        """Fetch a single entity's state."""
        payload = self._request("GET", f"/api/states/{entity_id}")
        if not isinstance(payload, dict):
            raise ConnectivityError(
                f"Unexpected payload for {entity_id}", detail={"entity_id": entity_id}
            )
        return EntityState.from_payload(payload)

    def read_states(self) -> list[EntityState]:
        """Fetch every entity's state."""
        payload = self._request("GET", "/api/states")
        if not isinstance(payload, list):
            raise ConnectivityError("Unexpected payload for /api/states")
        return [EntityState.from_payload(item) for item in payload if isinstance(item, dict)]

    def get_history(self, entity_id: str, start: datetime, end: datetime | None = None) -> list[EntityState]:
        """
        State changes of one entity between ``start`` and ``end``.

        The API answers with one list per requested entity; only the first is used.
        """
        params: dict[str, Any] = {"filter_entity_id": entity_id}
        if end is not None:
            params["end_time"] = to_iso(end)
        payload = self._request("GET", f"/api/history/period/{to_iso(start)}", params=params)
        if not payload:
            return []
        series = payload[0] if isinstance(payload, list) and isinstance(payload[0], list) else []
        return [EntityState.from_payload(item) for item in series if isinstance(item, dict)]

    # ==================== Actions ====================

    def call_action(
        self,
        domain: str,
        action: str,
        entity_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Invoke a service, e.g. ``call_action("script", "turn_on", "script.turn_on_pool_pump")``.

        Returns the decoded JSON body (the list of changed states).
        """
        body: dict[str, Any] = dict(params or {})
        if entity_id:
            body["entity_id"] = entity_id
        logger.info("Gateway action %s.%s on %s %s", domain, action, entity_id, params or "")
        return self._request("POST", f"/api/services/{domain}/{action}", json=body)

    # ==================== Transport ====================

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.is_configured:
            raise ConfigurationError("Home Assistant URL/token not configured")

        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ConnectivityError(
                f"Gateway request failed: {method} {path}: {exc}",
                detail={"path": path},
            ) from exc

        if not 200 <= response.status_code < 300:
            raise ConnectivityError(
                f"Gateway answered {response.status_code} for {method} {path}",
                detail={"path": path, "status": response.status_code},
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectivityError(f"Gateway returned non-JSON body for {path}") from exc
