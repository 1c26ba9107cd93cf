"""
Schedule Repository
====================

Keyed schedule documents, plus the active-job markers that live in the same
table under ``"<device> Active Job"``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from homecontrol.domain.schedules import ActiveJobState, active_job_key
from homecontrol.utils.time import coerce_datetime, iso_now, to_iso

if TYPE_CHECKING:
    from infrastructure.database.ops.schedules import ScheduleOperations

logger = logging.getLogger(__name__)


class ScheduleRepository:
    """Repository for per-device schedule documents."""

    def __init__(self, backend: "ScheduleOperations") -> None:
        self._backend = backend

    # ==================== Schedule documents ====================

    def get_config(self, device: str) -> dict[str, Any] | None:
        row = self._backend.get_schedule_row(device)
        if row is None:
            return None
        try:
            config = json.loads(row["config"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Stored schedule for %s is not valid JSON, ignoring", device)
            return None
        return config if isinstance(config, dict) else None

    def get_updated_at(self, device: str) -> datetime | None:
        row = self._backend.get_schedule_row(device)
        return coerce_datetime(row["updated_at"]) if row else None

    def save_config(self, device: str, config: dict[str, Any], *, updated_at: datetime | None = None) -> None:
        stamp = to_iso(updated_at) if updated_at else iso_now()
        self._backend.upsert_schedule(device, json.dumps(config), stamp)
        logger.debug("Schedule saved for %s", device)

    def delete(self, device: str) -> bool:
        return self._backend.delete_schedule(device)

    def list_devices(self) -> list[str]:
        return [row["device"] for row in self._backend.list_schedule_rows()]

    # ==================== Active job markers ====================

    def load_active_job(self, device: str) -> ActiveJobState | None:
        config = self.get_config(active_job_key(device))
        if not config:
            return None
        state = ActiveJobState.from_dict(config)
        if state is None:
            logger.warning("Active job marker for %s is incomplete: %s", device, config)
        return state

    def save_active_job(self, device: str, state: ActiveJobState) -> None:
        self.save_config(active_job_key(device), state.to_dict())

    def clear_active_job(self, device: str) -> bool:
        return self.delete(active_job_key(device))
