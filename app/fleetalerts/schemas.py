from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, JsonValue, field_validator, model_validator

from fleetalerts.alerts.models import AlertStatus, Severity


def _require_metadata_mapping(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError("metadata must be a mapping")
    if not all(isinstance(key, str) for key in value):
        raise ValueError("metadata keys must be strings")
    return dict(value)


class RuleDefinition(BaseModel):
    """Per-source-type rule; all thresholds are optional, severity is required."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    escalate_if_count: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("escalateIfCount", "escalate_if_count"),
        serialization_alias="escalateIfCount",
    )
    window_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("windowMinutes", "window_minutes", "window_mins"),
        serialization_alias="windowMinutes",
    )
    escalate_if_days: Optional[float] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("escalateIfDays", "escalate_if_days"),
        serialization_alias="escalateIfDays",
    )
    escalate_to_severity: Severity = Field(
        validation_alias=AliasChoices("escalateToSeverity", "escalate_to_severity"),
        serialization_alias="escalateToSeverity",
    )
    auto_close_if: Optional[str] = Field(
        default=None,
        min_length=1,
        validation_alias=AliasChoices("autoCloseIf", "auto_close_if"),
        serialization_alias="autoCloseIf",
    )

    @field_validator("escalate_to_severity", mode="before")
    @classmethod
    def _upper_severity(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _count_needs_window(self) -> "RuleDefinition":
        if (self.escalate_if_count is None) != (self.window_minutes is None):
            raise ValueError("escalateIfCount and windowMinutes must be set together")
        return self

    def to_config(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class AlertCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_type: str = Field(
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("sourceType", "source_type"),
    )
    severity: Severity = Severity.MEDIUM
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)

    @field_validator("source_type", mode="before")
    @classmethod
    def _strip_source_type(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("severity", mode="before")
    @classmethod
    def _default_severity(cls, value: Any) -> Any:
        if value in (None, ""):
            return Severity.MEDIUM
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_mapping(cls, value: Any) -> Any:
        return _require_metadata_mapping(value)


class MetadataUpdate(BaseModel):
    """Caller-owned metadata merged into an existing alert; values must be storable as JSON."""

    metadata: Dict[str, JsonValue]

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_mapping(cls, value: Any) -> Any:
        return _require_metadata_mapping(value)


class AlertFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("sourceType", "source_type"))
    severity: Optional[Severity] = None
    status: Optional[AlertStatus] = None
    driver_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("driverId", "driver_id"))
    vehicle_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("vehicleId", "vehicle_id"))


class Pagination(BaseModel):
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)
    has_more: bool = Field(..., serialization_alias="hasMore")


class AlertPage(BaseModel):
    alerts: List[Dict[str, Any]]
    pagination: Pagination


class DriverAlertCount(BaseModel):
    driver_id: str = Field(..., serialization_alias="driverId")
    alert_count: int = Field(..., ge=0, serialization_alias="alertCount")


class TrendBucket(BaseModel):
    date: str
    created: int = Field(..., ge=0)
    escalated: int = Field(..., ge=0)
    auto_closed: int = Field(..., ge=0, serialization_alias="autoClosed")


class DashboardSummary(BaseModel):
    total_active: int = Field(..., ge=0, serialization_alias="totalActive")
    total_today: int = Field(..., ge=0, serialization_alias="totalToday")
    escalation_rate: int = Field(..., ge=0, le=100, serialization_alias="escalationRate")


class DashboardSnapshot(BaseModel):
    severity_distribution: Dict[str, int] = Field(..., serialization_alias="severityDistribution")
    status_distribution: Dict[str, int] = Field(..., serialization_alias="statusDistribution")
    source_type_distribution: Dict[str, int] = Field(..., serialization_alias="sourceTypeDistribution")
    top_drivers: List[DriverAlertCount] = Field(..., serialization_alias="topDrivers")
    recent_auto_closed: List[Dict[str, Any]] = Field(..., serialization_alias="recentAutoClosed")
    alert_trends: List[TrendBucket] = Field(..., serialization_alias="alertTrends")
    summary: DashboardSummary


class AlertStats(BaseModel):
    total: int = Field(..., ge=0)
    by_status: Dict[str, int] = Field(..., serialization_alias="byStatus")
    by_severity: Dict[str, int] = Field(..., serialization_alias="bySeverity")
    by_source_type: Dict[str, int] = Field(..., serialization_alias="bySourceType")
    active_count: int = Field(..., ge=0, serialization_alias="activeCount")
    avg_age: float = Field(..., ge=0, serialization_alias="avgAge")
