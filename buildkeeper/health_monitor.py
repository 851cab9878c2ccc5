"""
Build Health Monitor
====================

Tracks build outcomes over time and turns them into performance metrics,
error categories, alerts and a health report.

State lives in the buildkeeper state directory:
- metrics.json: build records, per-target performance, error categories
- alerts.json: alerts, resolved ones kept for the report
- health-report.json: the last generated report

Every mutation is written through to disk immediately. Write failures are
logged and the monitor keeps going with its in-memory state.

Alert rules (evaluated after each recorded build, in order):
- high_failure_rate: 3 or more failures among the last 5 builds, any target
- slow_build: a successful build 50% slower than its target's average
- recurring_error: an error category seen 3 or more times
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from buildkeeper.output import print_error, print_success, print_warning
from buildkeeper.schemas import (
    Alert,
    AlertsSummary,
    BuildRecord,
    ErrorExample,
    ErrorMetric,
    ErrorSummary,
    HealthReport,
    MetricsDocument,
    PerformanceMetric,
    PerformanceSummary,
    Recommendation,
    ReportSummary,
    SchemaError,
    TrendWindow,
    format_timestamp,
    load_alerts,
    load_metrics,
    parse_timestamp,
)
from buildkeeper.storage import ALERTS_FILE, HEALTH_REPORT_FILE, METRICS_FILE, JsonStateStore

logger = logging.getLogger(__name__)

BUILD_TIME_WINDOW = 10
ERROR_EXAMPLES_KEPT = 3
FAILURE_RATE_WINDOW = 5
FAILURE_RATE_THRESHOLD = 3
SLOW_BUILD_FACTOR = 1.5
RECURRING_ERROR_THRESHOLD = 3
SLOW_AVERAGE_SECONDS = 300
LOW_SUCCESS_RATE = 80

# First match wins
ERROR_CATEGORIES = (
    ("signature_conflicts", ("signature", "install_failed_update_incompatible")),
    ("memory_issues", ("memory", "heap")),
    ("build_failures", ("gradle", "build")),
    ("dependency_issues", ("dependency", "module")),
    ("environment_issues", ("sdk", "android_home")),
)


def categorize_error(message: str) -> str:
    lowered = (message or "").lower()
    for category, keywords in ERROR_CATEGORIES:
        if any(k in lowered for k in keywords):
            return category
    return "other_errors"


def calculate_success_rate(builds: list) -> float:
    if not builds:
        return 0.0
    successful = sum(1 for b in builds if b.status == "success")
    return successful / len(builds) * 100


def calculate_build_time_trend(build_times: list) -> str:
    """Compare the last 3 build times with the ones before them."""
    if len(build_times) < 3:
        return "insufficient_data"

    recent = build_times[-3:]
    older = build_times[:-3]
    if not older:
        return "insufficient_data"

    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)
    if older_avg == 0:
        return "insufficient_data"

    change = (recent_avg - older_avg) / older_avg * 100
    if change > 10:
        return "increasing"
    if change < -10:
        return "decreasing"
    return "stable"


def _generate_id(prefix: str, now: datetime) -> str:
    return f"{prefix}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


class BuildHealthMonitor:
    """Build metrics, alerts and health reporting."""

    def __init__(self, store: JsonStateStore, now: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.metrics = self._load_metrics()
        self.alerts = self._load_alerts()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_metrics(self) -> MetricsDocument:
        raw = self.store.read(METRICS_FILE)
        if raw is None:
            return MetricsDocument()
        try:
            return load_metrics(raw)
        except SchemaError as e:
            logger.warning("Ignoring build metrics: %s", e)
            return MetricsDocument()

    def _load_alerts(self) -> list[Alert]:
        raw = self.store.read(ALERTS_FILE)
        if raw is None:
            return []
        try:
            alerts, rejected = load_alerts(raw)
        except SchemaError as e:
            logger.warning("Ignoring alerts: %s", e)
            return []
        if rejected:
            logger.warning("Dropped %d unreadable alert(s)", rejected)
        return alerts

    def _save_metrics(self) -> None:
        self.store.write(METRICS_FILE, self.metrics.to_json_dict())

    def _save_alerts(self) -> None:
        self.store.write(ALERTS_FILE, [a.to_json_dict() for a in self.alerts])

    # =========================================================================
    # Recording
    # =========================================================================

    def record_build_success(
        self,
        platform: str,
        environment: str,
        build_time: Optional[float] = None,
        artifact_size: Optional[int] = None,
    ) -> BuildRecord:
        now = self._now()
        record = BuildRecord(
            id=_generate_id("build", now),
            timestamp=format_timestamp(now),
            platform=platform,
            environment=environment,
            status="success",
            build_time=build_time,
            artifact_size=artifact_size,
        )
        self._append(record)
        print_success(f"Build success recorded: {platform} {environment}")
        return record

    def record_build_failure(
        self,
        platform: str,
        environment: str,
        error: str,
        build_time: Optional[float] = None,
    ) -> BuildRecord:
        now = self._now()
        record = BuildRecord(
            id=_generate_id("build", now),
            timestamp=format_timestamp(now),
            platform=platform,
            environment=environment,
            status="failure",
            build_time=build_time,
            error=error,
        )
        self._append(record)
        print_error(f"Build failure recorded: {platform} {environment} - {error}")
        return record

    def _append(self, record: BuildRecord) -> None:
        key = f"{record.platform}_{record.environment}"
        self.metrics.builds.append(record)
        self._update_performance(key, record)
        if record.status == "failure":
            self._update_error_metrics(record)
        self._check_for_alerts(record, self.metrics.performance[key])
        self._save_metrics()

    def _update_performance(self, key: str, record: BuildRecord) -> None:
        perf = self.metrics.performance.setdefault(key, PerformanceMetric())
        perf.total_builds += 1

        if record.status == "success":
            perf.successful_builds += 1
            if record.build_time:
                perf.build_times = (perf.build_times + [record.build_time])[-BUILD_TIME_WINDOW:]
                perf.average_build_time = sum(perf.build_times) / len(perf.build_times)

        perf.success_rate = f"{perf.successful_builds / perf.total_builds * 100:.1f}"

    def _update_error_metrics(self, record: BuildRecord) -> None:
        category = categorize_error(record.error)
        metric = self.metrics.errors.setdefault(category, ErrorMetric())
        metric.count += 1
        metric.last_occurrence = record.timestamp
        metric.examples = (metric.examples + [ErrorExample(
            timestamp=record.timestamp,
            platform=record.platform,
            environment=record.environment,
            error=record.error or "",
        )])[-ERROR_EXAMPLES_KEPT:]

    # =========================================================================
    # Alerts
    # =========================================================================

    def _check_for_alerts(self, record: BuildRecord, perf: PerformanceMetric) -> None:
        recent = self.metrics.builds[-FAILURE_RATE_WINDOW:]
        failures = sum(1 for b in recent if b.status == "failure")
        if failures >= FAILURE_RATE_THRESHOLD:
            self.create_alert("high_failure_rate", f"{failures} failures in last {FAILURE_RATE_WINDOW} builds", "high")

        if record.status == "success" and record.build_time and perf.average_build_time > 0:
            if record.build_time > perf.average_build_time * SLOW_BUILD_FACTOR:
                self.create_alert(
                    "slow_build",
                    f"Build time {record.build_time:g}s is 50% slower than average {perf.average_build_time:.1f}s",
                    "medium",
                )

        if record.status == "failure":
            category = categorize_error(record.error)
            count = self.metrics.errors[category].count
            if count >= RECURRING_ERROR_THRESHOLD:
                self.create_alert("recurring_error", f'Error "{category}" has occurred {count} times', "medium")

    def create_alert(self, alert_type: str, message: str, severity: str) -> Optional[Alert]:
        """
        Add an alert unless an unresolved one with the same type and message exists.

        Returns:
            The new alert, or None if it was a duplicate
        """
        for existing in self.alerts:
            if existing.type == alert_type and existing.message == message and not existing.resolved:
                return None

        now = self._now()
        alert = Alert(
            id=_generate_id("alert", now),
            timestamp=format_timestamp(now),
            type=alert_type,
            message=message,
            severity=severity,
        )
        self.alerts.append(alert)
        self._save_alerts()
        print_warning(f"Alert created: {severity.upper()} - {message}")
        return alert

    def resolve_alert(self, alert_id: str) -> bool:
        for alert in self.alerts:
            if alert.id == alert_id and not alert.resolved:
                alert.resolved = True
                alert.resolved_at = format_timestamp(self._now())
                self._save_alerts()
                print_success(f"Alert resolved: {alert.message}")
                return True
        return False

    def active_alerts(self) -> list[Alert]:
        return [a for a in self.alerts if not a.resolved]

    # =========================================================================
    # Reporting
    # =========================================================================

    def generate_report(self) -> HealthReport:
        """Build the full health report and write it to health-report.json."""
        report = HealthReport(
            generated_at=format_timestamp(self._now()),
            summary=self._summary(),
            performance=self._performance_report(),
            errors=self._error_report(),
            trends=self._trends_report(),
            alerts=self._alerts_report(),
            recommendations=self._recommendations(),
            health_score=self.get_health_score(),
        )
        self.store.write(HEALTH_REPORT_FILE, report.to_json_dict())
        return report

    def _builds_since(self, delta: timedelta) -> list[BuildRecord]:
        cutoff = self._now() - delta
        return [b for b in self.metrics.builds if parse_timestamp(b.timestamp) > cutoff]

    def _summary(self) -> ReportSummary:
        builds = self.metrics.builds
        successful = sum(1 for b in builds if b.status == "success")
        return ReportSummary(
            total_builds=len(builds),
            successful_builds=successful,
            failed_builds=len(builds) - successful,
            success_rate=f"{calculate_success_rate(builds):.1f}%",
            builds_last_24_hours=len(self._builds_since(timedelta(hours=24))),
            last_build_time=builds[-1].timestamp if builds else None,
        )

    def _performance_report(self) -> dict[str, PerformanceSummary]:
        return {
            key: PerformanceSummary(
                total_builds=perf.total_builds,
                success_rate=f"{perf.success_rate}%",
                average_build_time=f"{perf.average_build_time:.1f}s" if perf.average_build_time else "N/A",
                trend=calculate_build_time_trend(perf.build_times),
            )
            for key, perf in self.metrics.performance.items()
        }

    def _error_frequency(self, metric: ErrorMetric) -> str:
        if not metric.last_occurrence:
            return "unknown"
        days = (self._now() - parse_timestamp(metric.last_occurrence)).total_seconds() / 86400
        if days < 1:
            return "daily"
        if days < 7:
            return "weekly"
        if days < 30:
            return "monthly"
        return "rare"

    def _error_report(self) -> dict[str, ErrorSummary]:
        return {
            category: ErrorSummary(
                occurrences=metric.count,
                last_seen=metric.last_occurrence,
                frequency=self._error_frequency(metric),
                recent_examples=metric.examples[-2:],
            )
            for category, metric in self.metrics.errors.items()
        }

    def _trends_report(self) -> dict[str, TrendWindow]:
        trends = {}
        for label, days in (("last7Days", 7), ("last30Days", 30)):
            builds = self._builds_since(timedelta(days=days))
            trends[label] = TrendWindow(
                total_builds=len(builds),
                success_rate=calculate_success_rate(builds),
                average_builds_per_day=f"{len(builds) / days:.1f}",
            )
        return trends

    def _alerts_report(self) -> AlertsSummary:
        active = self.active_alerts()
        return AlertsSummary(
            active=len(active),
            resolved=len(self.alerts) - len(active),
            high_severity=sum(1 for a in active if a.severity == "high"),
            medium_severity=sum(1 for a in active if a.severity == "medium"),
            recent_alerts=active[-5:],
        )

    def _recommendations(self) -> list[Recommendation]:
        recommendations = []

        averages = [p.average_build_time for p in self.metrics.performance.values() if p.average_build_time > 0]
        if averages and max(averages) > SLOW_AVERAGE_SECONDS:
            recommendations.append(Recommendation(
                type="performance",
                priority="medium",
                message="Build times are high. Consider optimizing Gradle configuration "
                        "or increasing build machine resources.",
            ))

        top_errors = sorted(self.metrics.errors.items(), key=lambda item: item[1].count, reverse=True)[:3]
        for category, metric in top_errors:
            if metric.count >= RECURRING_ERROR_THRESHOLD:
                recommendations.append(Recommendation(
                    type="reliability",
                    priority="high",
                    message=f"Recurring {category.replace('_', ' ')} errors detected. "
                            f"Consider implementing automated resolution.",
                ))

        if self.metrics.builds:
            rate = calculate_success_rate(self.metrics.builds)
            if rate < LOW_SUCCESS_RATE:
                recommendations.append(Recommendation(
                    type="reliability",
                    priority="high",
                    message=f"Build success rate is {rate:.1f}%. Focus on resolving common build failures.",
                ))

        return recommendations

    def get_health_score(self) -> float:
        """
        Success rate less 5 per active alert and 10 more per active high alert,
        clamped to [0, 100].
        """
        active = self.active_alerts()
        high = sum(1 for a in active if a.severity == "high")
        score = calculate_success_rate(self.metrics.builds) - 5 * len(active) - 10 * high
        return max(0.0, min(100.0, score))

    def get_recent_build_status(self) -> str:
        if not self.metrics.builds:
            return "no_builds"
        return self.metrics.builds[-1].status
