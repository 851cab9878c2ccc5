"""
Persisted Schemas
=================

pydantic models for everything buildkeeper writes to its state directory,
and for the health report. JSON keys are camelCase so the files stay
compatible with the layout earlier versions of the tool produced.

Versioning:
    metrics.json carries ``schemaVersion``. A document without one is a
    legacy (version 0) document and is upgraded on load. A document from a
    newer version is rejected. alerts.json and resolution-history.json are
    plain arrays; every element is validated on its own and unrecognized
    elements are dropped.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


METRICS_SCHEMA_VERSION = 1


class SchemaError(ValueError):
    """A persisted document has a shape this version cannot read."""


def format_timestamp(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Build Metrics (metrics.json)
# =============================================================================

class BuildRecord(CamelModel):
    """One build outcome. Immutable once appended."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: str
    platform: str
    environment: str
    status: Literal["success", "failure"]
    build_time: Optional[float] = None
    artifact_size: Optional[int] = None
    error: Optional[str] = None


class PerformanceMetric(CamelModel):
    """Rolling performance for one platform/environment key."""
    total_builds: int = 0
    successful_builds: int = 0
    success_rate: str = "0.0"
    build_times: list[float] = Field(default_factory=list)
    average_build_time: float = 0.0


class ErrorExample(CamelModel):
    timestamp: str
    platform: str
    environment: str
    error: str


class ErrorMetric(CamelModel):
    """Occurrence count for one error category."""
    count: int = 0
    last_occurrence: Optional[str] = None
    examples: list[ErrorExample] = Field(default_factory=list)


class MetricsDocument(CamelModel):
    schema_version: int = METRICS_SCHEMA_VERSION
    builds: list[BuildRecord] = Field(default_factory=list)
    performance: dict[str, PerformanceMetric] = Field(default_factory=dict)
    errors: dict[str, ErrorMetric] = Field(default_factory=dict)
    trends: dict = Field(default_factory=dict)


# =============================================================================
# Alerts & Resolution History
# =============================================================================

class Alert(CamelModel):
    id: str
    timestamp: str
    type: str
    message: str
    severity: Literal["medium", "high"]
    resolved: bool = False
    resolved_at: Optional[str] = None


class ResolutionRecord(CamelModel):
    """One automated remediation attempt. Append-only."""
    model_config = ConfigDict(frozen=True)

    timestamp: str
    pattern_id: str
    success: bool
    error: Optional[str] = None


# =============================================================================
# Health Report (health-report.json)
# =============================================================================

class ReportSummary(CamelModel):
    total_builds: int
    successful_builds: int
    failed_builds: int
    success_rate: str
    builds_last_24_hours: int
    last_build_time: Optional[str] = None


class PerformanceSummary(CamelModel):
    total_builds: int
    success_rate: str
    average_build_time: str
    trend: str


class ErrorSummary(CamelModel):
    occurrences: int
    last_seen: Optional[str]
    frequency: str
    recent_examples: list[ErrorExample] = Field(default_factory=list)


class TrendWindow(CamelModel):
    total_builds: int
    success_rate: float
    average_builds_per_day: str


class AlertsSummary(CamelModel):
    active: int
    resolved: int
    high_severity: int
    medium_severity: int
    recent_alerts: list[Alert] = Field(default_factory=list)


class Recommendation(CamelModel):
    type: str
    priority: str
    message: str


class HealthReport(CamelModel):
    generated_at: str
    summary: ReportSummary
    performance: dict[str, PerformanceSummary]
    errors: dict[str, ErrorSummary]
    trends: dict[str, TrendWindow]
    alerts: AlertsSummary
    recommendations: list[Recommendation]
    health_score: float


# =============================================================================
# Loading & Upgrades
# =============================================================================

def _upgrade_build_v0(build: dict) -> dict:
    build = dict(build)
    if "apkSize" in build and "artifactSize" not in build:
        build["artifactSize"] = build.pop("apkSize")
    build.pop("duration", None)
    return build


def load_metrics(raw) -> MetricsDocument:
    """
    Validate a parsed metrics.json, upgrading legacy documents.

    Raises:
        SchemaError: if the document is from a newer version or malformed
    """
    if not isinstance(raw, dict):
        raise SchemaError(f"metrics document must be an object, got {type(raw).__name__}")

    version = raw.get("schemaVersion", 0)
    if not isinstance(version, int) or version > METRICS_SCHEMA_VERSION:
        raise SchemaError(f"unsupported metrics schema version: {version!r}")

    if version == 0:
        raw = dict(raw)
        raw["builds"] = [
            _upgrade_build_v0(b) if isinstance(b, dict) else b
            for b in raw.get("builds", [])
        ]
        raw["schemaVersion"] = METRICS_SCHEMA_VERSION

    try:
        return MetricsDocument.model_validate(raw)
    except ValidationError as e:
        raise SchemaError(f"invalid metrics document: {e.error_count()} error(s)") from e


def _upgrade_resolution_v0(record: dict) -> dict:
    record = dict(record)
    if "errorMessage" in record and "error" not in record:
        record["error"] = record.pop("errorMessage")
    return record


def load_record_list(raw, model: type, upgrade=None) -> tuple[list, int]:
    """
    Validate a JSON array element by element.

    Args:
        raw: Parsed JSON
        model: pydantic model for each element
        upgrade: Optional function applied to dict elements before validation

    Returns:
        (valid_records, rejected_count)

    Raises:
        SchemaError: if ``raw`` is not an array
    """
    if not isinstance(raw, list):
        raise SchemaError(f"expected a JSON array, got {type(raw).__name__}")

    records, rejected = [], 0
    for item in raw:
        if isinstance(item, dict) and upgrade:
            item = upgrade(item)
        try:
            records.append(model.model_validate(item))
        except ValidationError:
            rejected += 1
    return records, rejected


def load_alerts(raw) -> tuple[list[Alert], int]:
    return load_record_list(raw, Alert)


def load_resolution_history(raw) -> tuple[list[ResolutionRecord], int]:
    return load_record_list(raw, ResolutionRecord, upgrade=_upgrade_resolution_v0)
