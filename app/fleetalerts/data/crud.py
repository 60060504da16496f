from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, delete, insert, select, text, update
from sqlalchemy.orm import Session

from .tables import alert_driver_index, alert_vehicle_index, alerts


def ping(session: Session) -> None:
    session.execute(text("SELECT 1"))


def upsert_alert(session: Session, row: Dict[str, Any]) -> None:
    if "id" not in row:
        raise ValueError("row missing required field 'id'")

    alert_id = row["id"]
    existing = session.execute(
        select(alerts.c.id).where(alerts.c.id == alert_id)
    ).scalar_one_or_none()

    if existing is not None:
        values = {key: value for key, value in row.items() if key != "id"}
        session.execute(update(alerts).where(alerts.c.id == alert_id).values(**values))
    else:
        session.execute(insert(alerts).values(**row))


def get_alert_payload(session: Session, alert_id: str) -> Optional[Dict[str, Any]]:
    payload = session.execute(
        select(alerts.c.payload).where(alerts.c.id == alert_id)
    ).scalar_one_or_none()
    return dict(payload) if payload is not None else None


def list_alert_payloads(session: Session) -> List[Dict[str, Any]]:
    result = session.execute(select(alerts.c.payload))
    return [dict(payload) for payload in result.scalars()]


def get_alert_payloads(session: Session, alert_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    if not alert_ids:
        return {}
    result = session.execute(
        select(alerts.c.id, alerts.c.payload).where(alerts.c.id.in_(alert_ids))
    )
    return {row.id: dict(row.payload) for row in result}


def delete_alert(session: Session, alert_id: str) -> bool:
    result = session.execute(delete(alerts).where(alerts.c.id == alert_id))
    session.execute(delete(alert_driver_index).where(alert_driver_index.c.alert_id == alert_id))
    session.execute(delete(alert_vehicle_index).where(alert_vehicle_index.c.alert_id == alert_id))
    return bool(result.rowcount)


def _key_column(table: Table):
    return table.c.driver_id if table is alert_driver_index else table.c.vehicle_id


def touch_index(session: Session, table: Table, key: str, alert_id: str, indexed_at: datetime) -> None:
    """Insert or refresh one (key, alert_id) entry; the newest indexed_at ranks first."""
    key_column = _key_column(table)
    existing = session.execute(
        select(table.c.alert_id).where(key_column == key, table.c.alert_id == alert_id)
    ).first()
    if existing is not None:
        session.execute(
            update(table)
            .where(key_column == key, table.c.alert_id == alert_id)
            .values(indexed_at=indexed_at)
        )
        return
    session.execute(
        insert(table).values({key_column.name: key, "alert_id": alert_id, "indexed_at": indexed_at})
    )


def indexed_alert_ids(session: Session, table: Table, key: str, limit: int) -> List[str]:
    key_column = _key_column(table)
    result = session.execute(
        select(table.c.alert_id)
        .where(key_column == key)
        .order_by(table.c.indexed_at.desc())
        .limit(limit)
    )
    return [str(alert_id) for alert_id in result.scalars()]
