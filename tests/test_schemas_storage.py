"""
Tests for Persisted Schemas and State Storage
=============================================

Tests for buildkeeper/schemas.py and buildkeeper/storage.py
"""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from buildkeeper.schemas import (
    METRICS_SCHEMA_VERSION,
    Alert,
    PerformanceMetric,
    SchemaError,
    format_timestamp,
    load_alerts,
    load_metrics,
    load_resolution_history,
    parse_timestamp,
)
from buildkeeper.storage import METRICS_FILE, JsonStateStore


class TestTimestamps:

    def test_format(self):
        dt = datetime(2025, 6, 1, 12, 0, 5, 123456, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2025-06-01T12:00:05.123Z"

    def test_parse(self):
        assert parse_timestamp("2025-06-01T12:00:05.123Z") == \
            datetime(2025, 6, 1, 12, 0, 5, 123000, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        assert parse_timestamp("2025-06-01T12:00:00").tzinfo == timezone.utc


class TestLoadMetrics:

    def test_legacy_document_upgraded(self):
        doc = load_metrics({
            "builds": [{
                "id": "build_1_abc",
                "timestamp": "2025-01-01T00:00:00.000Z",
                "platform": "android",
                "environment": "development",
                "status": "success",
                "buildTime": 90,
                "apkSize": 1024,
                "duration": 90,
            }],
            "performance": {},
            "errors": {},
            "trends": {},
        })

        assert doc.schema_version == METRICS_SCHEMA_VERSION
        assert doc.builds[0].artifact_size == 1024
        assert doc.to_json_dict()["schemaVersion"] == METRICS_SCHEMA_VERSION
        assert "apkSize" not in doc.to_json_dict()["builds"][0]

    def test_newer_version_rejected(self):
        with pytest.raises(SchemaError, match="unsupported"):
            load_metrics({"schemaVersion": METRICS_SCHEMA_VERSION + 1})

    def test_not_an_object(self):
        with pytest.raises(SchemaError):
            load_metrics([])

    def test_malformed_build(self):
        with pytest.raises(SchemaError, match="invalid"):
            load_metrics({"schemaVersion": 1, "builds": [{"id": "x", "status": "maybe"}]})

    def test_camel_case_keys(self):
        doc = load_metrics({"schemaVersion": 1})
        doc.performance["android_development"] = PerformanceMetric(total_builds=1)
        data = doc.to_json_dict()
        assert "averageBuildTime" in data["performance"]["android_development"]


class TestRecordLists:

    def test_invalid_elements_dropped(self):
        alerts, rejected = load_alerts([
            {"id": "alert_1", "timestamp": "t", "type": "high_failure_rate", "message": "m", "severity": "high"},
            {"id": "alert_2", "severity": "critical"},
            "junk",
        ])
        assert [a.id for a in alerts] == ["alert_1"]
        assert isinstance(alerts[0], Alert)
        assert rejected == 2

    def test_not_an_array(self):
        with pytest.raises(SchemaError):
            load_alerts({"alerts": []})

    def test_resolution_error_message_upgraded(self):
        records, rejected = load_resolution_history([
            {"timestamp": "t", "patternId": "out_of_memory", "success": False, "errorMessage": "boom"},
        ])
        assert rejected == 0
        assert records[0].error == "boom"
        assert records[0].to_json_dict() == {
            "timestamp": "t", "patternId": "out_of_memory", "success": False, "error": "boom",
        }


class TestJsonStateStore:

    def test_round_trip_creates_directory(self, tmp_path):
        store = JsonStateStore(tmp_path / "state")
        assert store.write(METRICS_FILE, {"schemaVersion": 1})
        assert store.read(METRICS_FILE) == {"schemaVersion": 1}
        assert not list((tmp_path / "state").glob(".*.tmp"))

    def test_missing_file(self, tmp_path):
        assert JsonStateStore(tmp_path).read(METRICS_FILE) is None

    def test_corrupt_file(self, tmp_path):
        (tmp_path / METRICS_FILE).write_text("{truncated")
        assert JsonStateStore(tmp_path).read(METRICS_FILE) is None

    def test_write_failure_reported(self, tmp_path):
        store = JsonStateStore(tmp_path)
        with patch("buildkeeper.storage.os.replace", side_effect=PermissionError("read-only")):
            assert store.write(METRICS_FILE, {"a": 1}) is False

    def test_unserializable_data_reported(self, tmp_path):
        store = JsonStateStore(tmp_path)
        assert store.write(METRICS_FILE, {"when": object()}) is False

    def test_overwrite_keeps_valid_json(self, tmp_path):
        store = JsonStateStore(tmp_path)
        store.write(METRICS_FILE, {"v": 1})
        store.write(METRICS_FILE, {"v": 2})
        assert json.loads(store.path(METRICS_FILE).read_text()) == {"v": 2}
