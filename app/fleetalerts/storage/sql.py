from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import Engine, Table
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from fleetalerts.alerts.models import Alert
from fleetalerts.data import crud
from fleetalerts.data.db import create_session_factory, initialize_database
from fleetalerts.data.tables import alert_driver_index, alert_vehicle_index
from fleetalerts.errors import StorageFailure, StorageUnavailable

from .base import DEFAULT_INDEX_LIMIT, AlertStore


T = TypeVar("T")

logger = logging.getLogger("fleetalerts.storage.sql")
debug_logger = logging.getLogger("fleetalerts.debug.storage.sql")


def _is_unreachable(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def _alert_row(alert: Alert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "source_type": alert.source_type,
        "severity": alert.severity.value,
        "status": alert.status.value,
        "driver_id": alert.driver_id,
        "vehicle_id": alert.vehicle_id,
        "escalation_count": alert.escalation_count,
        "created_at": alert.created_at,
        "updated_at": alert.updated_at,
        "payload": alert.to_dict(),
    }


class SqlAlchemyAlertStore(AlertStore):
    """
    Primary store backed by any SQLAlchemy database URL.

    The engine is created lazily on the first successful probe so a database
    that is down at startup can come back later. Blocking calls run in worker
    threads. Connection-level failures surface as StorageUnavailable; a
    statement the database rejects surfaces as StorageFailure.
    """

    name = "sql"

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._url = url
        self._echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._init_lock = threading.Lock()

    async def is_available(self) -> bool:
        try:
            await self._run(crud.ping)
        except StorageFailure:
            return False
        return True

    async def save(self, alert: Alert) -> None:
        row = _alert_row(alert)
        await self._run(lambda session: crud.upsert_alert(session, row))
        try:
            await self._run(lambda session: self._update_indices(session, alert))
        except StorageFailure:
            logger.warning("Index update failed for alert %s; record saved", alert.id)

    async def get(self, alert_id: str) -> Optional[Alert]:
        payload = await self._run(lambda session: crud.get_alert_payload(session, alert_id))
        return Alert.from_dict(payload) if payload is not None else None

    async def get_all(self) -> List[Alert]:
        payloads = await self._run(crud.list_alert_payloads)
        return [Alert.from_dict(payload) for payload in payloads]

    async def delete(self, alert_id: str) -> bool:
        return await self._run(lambda session: crud.delete_alert(session, alert_id))

    async def get_by_driver(self, driver_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return await self._indexed(alert_driver_index, driver_id, limit)

    async def get_by_vehicle(self, vehicle_id: str, limit: int = DEFAULT_INDEX_LIMIT) -> List[Alert]:
        return await self._indexed(alert_vehicle_index, vehicle_id, limit)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def _indexed(self, table: Table, key: str, limit: int) -> List[Alert]:
        def query(session: Session) -> List[Dict[str, Any]]:
            alert_ids = crud.indexed_alert_ids(session, table, key, limit)
            payloads = crud.get_alert_payloads(session, alert_ids)
            return [payloads[alert_id] for alert_id in alert_ids if alert_id in payloads]

        return [Alert.from_dict(payload) for payload in await self._run(query)]

    @staticmethod
    def _update_indices(session: Session, alert: Alert) -> None:
        indexed_at = alert.updated_at
        if alert.driver_id:
            crud.touch_index(session, alert_driver_index, alert.driver_id, alert.id, indexed_at)
        if alert.vehicle_id:
            crud.touch_index(session, alert_vehicle_index, alert.vehicle_id, alert.id, indexed_at)

    def _factory(self) -> sessionmaker:
        with self._init_lock:
            if self._session_factory is None:
                engine = initialize_database(self._url, echo=self._echo)
                self._engine = engine
                self._session_factory = create_session_factory(engine)
                logger.info("Primary alert store ready (%s)", engine.url.render_as_string(hide_password=True))
            return self._session_factory

    def _execute(self, operation: Callable[[Session], T]) -> T:
        try:
            session = self._factory()()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Primary store unreachable: {exc}") from exc
        try:
            result = operation(session)
            session.commit()
            return result
        except SQLAlchemyError as exc:
            self._rollback(session)
            debug_logger.debug("storage.sql.operation_failed", extra={"error": str(exc)})
            if _is_unreachable(exc):
                raise StorageUnavailable(f"Primary store operation failed: {exc}") from exc
            raise StorageFailure(f"Primary store rejected operation: {exc}") from exc
        finally:
            session.close()

    @staticmethod
    def _rollback(session: Session) -> None:
        try:
            session.rollback()
        except SQLAlchemyError as exc:
            debug_logger.debug("storage.sql.rollback_failed", extra={"error": str(exc)})

    async def _run(self, operation: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._execute, operation)
