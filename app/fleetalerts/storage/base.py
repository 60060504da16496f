from __future__ import annotations

from typing import List, Optional, Protocol

from fleetalerts.alerts.models import Alert


DEFAULT_INDEX_LIMIT = 10


class AlertStore(Protocol):
    """Keyed alert storage with recency-ordered driver and vehicle indices."""

    name: str

    async def is_available(self) -> bool:
        ...

    async def save(self, alert: Alert) -> None:
        ...

    async def get(self, alert_id: str) -> Optional[Alert]:
        ...

    async def get_all(self) -> List[Alert]:
        ...

    async def delete(self, alert_id: str) -> bool:
        ...

    async def get_by_driver(self, driver_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        ...

    async def get_by_vehicle(self, vehicle_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        ...
