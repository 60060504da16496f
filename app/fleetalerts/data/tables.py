from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
)


metadata = MetaData()


alerts = Table(
    "alerts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("source_type", String(128), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("status", String(16), nullable=False),
    Column("driver_id", String(128)),
    Column("vehicle_id", String(128)),
    Column("escalation_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("payload", JSON, nullable=False),
)

Index("ix_alerts_source_type", alerts.c.source_type)
Index("ix_alerts_status", alerts.c.status)
Index("ix_alerts_created_at", alerts.c.created_at)

alert_driver_index = Table(
    "alert_driver_index",
    metadata,
    Column("driver_id", String(128), nullable=False),
    Column("alert_id", String(64), nullable=False),
    Column("indexed_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("driver_id", "alert_id"),
)

Index("ix_alert_driver_index_recency", alert_driver_index.c.driver_id, alert_driver_index.c.indexed_at)

alert_vehicle_index = Table(
    "alert_vehicle_index",
    metadata,
    Column("vehicle_id", String(128), nullable=False),
    Column("alert_id", String(64), nullable=False),
    Column("indexed_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("vehicle_id", "alert_id"),
)

Index("ix_alert_vehicle_index_recency", alert_vehicle_index.c.vehicle_id, alert_vehicle_index.c.indexed_at)


TABLES = {
    "alerts": alerts,
    "alert_driver_index": alert_driver_index,
    "alert_vehicle_index": alert_vehicle_index,
}
