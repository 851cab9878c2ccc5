"""
Error Resolver
==============

Pattern-driven remediation for native build failures.

Failure text is matched against an ordered table of known error patterns;
the first pattern that matches decides the resolution. Automated
resolutions apply config file changes and run their commands best-effort,
then append a ResolutionRecord to resolution-history.json. Manual
resolutions only return the steps for a person to follow.

Usage:
    from buildkeeper.error_resolver import ErrorResolver

    resolver = ErrorResolver(config, runner, store)
    outcome = resolver.resolve_error(build_output)
    if outcome.success:
        ...  # worth retrying the build
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from buildkeeper.config import BuildKeeperConfig
from buildkeeper.config_files import upsert_properties
from buildkeeper.output import print_info, print_step, print_success, print_warning
from buildkeeper.platform_utils import get_gradle_wrapper, get_node_tool
from buildkeeper.schemas import (
    ResolutionRecord,
    SchemaError,
    format_timestamp,
    load_resolution_history,
)
from buildkeeper.shell import Command, CommandRunner, StepReport, run_steps
from buildkeeper.storage import RESOLUTION_HISTORY_FILE, JsonStateStore

logger = logging.getLogger(__name__)

GRADLE_JVM_ARGS = "-Xmx4096m -XX:MaxPermSize=512m -XX:+HeapDumpOnOutOfMemoryError -Dfile.encoding=UTF-8"


# =============================================================================
# Pattern Table
# =============================================================================

@dataclass(frozen=True)
class ConfigChange:
    """``key=value`` upserts for one project-relative descriptor file."""
    file: str
    changes: tuple


@dataclass(frozen=True)
class AutomatedResolution:
    commands: tuple = ()
    config_changes: tuple = ()


@dataclass(frozen=True)
class ManualResolution:
    manual_steps: tuple = ()
    commands: tuple = ()


Resolution = Union[AutomatedResolution, ManualResolution]


@dataclass(frozen=True)
class ErrorPattern:
    id: str
    pattern: re.Pattern
    category: str
    severity: str
    description: str
    resolution: Resolution

    @property
    def automated(self) -> bool:
        return isinstance(self.resolution, AutomatedResolution)

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


def _gradlew(*args: str) -> Command:
    return Command(("{gradlew}",) + args, cwd="android")


# Order matters: the first matching pattern wins.
ERROR_PATTERNS = (
    ErrorPattern(
        id="signature_mismatch",
        pattern=re.compile(r"INSTALL_FAILED_UPDATE_INCOMPATIBLE|signatures do not match", re.IGNORECASE),
        category="installation",
        severity="error",
        description="App signature mismatch between installed and new version",
        resolution=AutomatedResolution(commands=(
            Command(("adb", "uninstall", "{package_name}")),
        )),
    ),
    ErrorPattern(
        id="cpp_dollar_identifier",
        pattern=re.compile(r"warning.*identifier.*begins with.*dollar sign", re.IGNORECASE),
        category="compilation",
        severity="warning",
        description="C++ identifier naming warnings in React Native modules",
        resolution=AutomatedResolution(commands=(
            Command(("{npx}", "patch-package")),
        )),
    ),
    ErrorPattern(
        id="gradle_daemon_failure",
        pattern=re.compile(r"Gradle build daemon disappeared unexpectedly", re.IGNORECASE),
        category="build",
        severity="error",
        description="Gradle daemon crashed during build",
        resolution=AutomatedResolution(commands=(
            _gradlew("--stop"),
            _gradlew("clean"),
        )),
    ),
    ErrorPattern(
        id="out_of_memory",
        pattern=re.compile(r"OutOfMemoryError|Java heap space", re.IGNORECASE),
        category="build",
        severity="error",
        description="Build process ran out of memory",
        resolution=AutomatedResolution(config_changes=(
            ConfigChange("android/gradle.properties", (("org.gradle.jvmargs", GRADLE_JVM_ARGS),)),
        )),
    ),
    ErrorPattern(
        id="dependency_conflict",
        pattern=re.compile(r"Duplicate class|Multiple dex files define", re.IGNORECASE),
        category="dependencies",
        severity="error",
        description="Conflicting dependencies detected",
        resolution=AutomatedResolution(commands=(
            _gradlew("clean"),
            Command(("{npm}", "run", "android")),
        )),
    ),
    ErrorPattern(
        id="metro_cache_issue",
        pattern=re.compile(r"Metro.*cache|Unable to resolve module", re.IGNORECASE),
        category="bundler",
        severity="error",
        description="Metro bundler cache corruption",
        resolution=AutomatedResolution(commands=(
            Command(("{npx}", "expo", "start", "--clear")),
            Command(("{npm}", "start", "--", "--reset-cache")),
        )),
    ),
    ErrorPattern(
        id="sdk_not_found",
        pattern=re.compile(r"SDK location not found|ANDROID_HOME", re.IGNORECASE),
        category="environment",
        severity="error",
        description="Android SDK not found or not configured",
        resolution=ManualResolution(manual_steps=(
            "Install Android Studio",
            "Set ANDROID_HOME to SDK path",
            "Add platform-tools to PATH",
        )),
    ),
    ErrorPattern(
        id="linking_error",
        pattern=re.compile(r"Native module.*cannot be null|RN.*not found", re.IGNORECASE),
        category="linking",
        severity="error",
        description="Native module linking failure",
        resolution=AutomatedResolution(commands=(
            _gradlew("clean"),
            Command(("{npm}", "install")),
            _gradlew("build"),
        )),
    ),
    ErrorPattern(
        id="build_tools_version",
        pattern=re.compile(r"build-tools.*not found|buildToolsVersion", re.IGNORECASE),
        category="environment",
        severity="error",
        description="Android build tools version mismatch",
        resolution=ManualResolution(manual_steps=(
            "Open Android Studio SDK Manager",
            "Install required build tools version",
            "Update build.gradle if necessary",
        )),
    ),
)

# Keyword buckets for failures no pattern recognizes
GENERIC_SUGGESTIONS = (
    (("build",), (
        "Try cleaning the build: cd android && ./gradlew clean",
        "Clear Metro cache: npx expo start --clear",
    )),
    (("install",), (
        "Check device connection: adb devices",
        "Try uninstalling existing app first",
    )),
    (("module", "package"), (
        "Reinstall dependencies: rm -rf node_modules && npm install",
        "Check package.json for version conflicts",
    )),
    (("memory", "heap"), (
        "Increase Gradle memory in gradle.properties",
        "Close other applications to free memory",
    )),
)


@dataclass
class ResolutionOutcome:
    """What resolve_error() did (or suggests doing) about a failure."""
    success: bool
    pattern_id: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    description: Optional[str] = None
    automated: bool = False
    requires_manual_intervention: bool = False
    manual_steps: list = field(default_factory=list)
    suggested_commands: list = field(default_factory=list)
    suggestions: list = field(default_factory=list)
    config_changes: dict = field(default_factory=dict)
    report: StepReport = field(default_factory=StepReport)
    error: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.pattern_id is not None


def generate_generic_suggestions(text: str) -> list[str]:
    """Suggestions picked by keywords in the failure text."""
    lowered = text.lower()
    suggestions = []
    for keywords, bucket in GENERIC_SUGGESTIONS:
        if any(k in lowered for k in keywords):
            suggestions.extend(bucket)
    return suggestions


class ErrorResolver:
    """Matches failure text to known patterns and applies their fixes."""

    def __init__(
        self,
        config: BuildKeeperConfig,
        runner: CommandRunner,
        store: JsonStateStore,
        patterns: tuple = ERROR_PATTERNS,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.runner = runner
        self.store = store
        self.patterns = patterns
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.history: list[ResolutionRecord] = self._load_history()

    def _load_history(self) -> list[ResolutionRecord]:
        raw = self.store.read(RESOLUTION_HISTORY_FILE)
        if raw is None:
            return []
        try:
            records, rejected = load_resolution_history(raw)
        except SchemaError as e:
            logger.warning("Ignoring resolution history: %s", e)
            return []
        if rejected:
            logger.warning("Dropped %d unreadable resolution record(s)", rejected)
        return records

    def _save_history(self) -> None:
        self.store.write(RESOLUTION_HISTORY_FILE, [r.to_json_dict() for r in self.history])

    def _command_context(self) -> dict:
        return {
            "package_name": self.config.package_name,
            "gradlew": get_gradle_wrapper(),
            "npm": get_node_tool("npm"),
            "npx": get_node_tool("npx"),
        }

    def find_matching_pattern(self, text: str) -> Optional[ErrorPattern]:
        for pattern in self.patterns:
            if pattern.matches(text):
                return pattern
        return None

    def resolve_error(self, text: str) -> ResolutionOutcome:
        """
        Resolve a failure by its first matching pattern.

        Returns:
            ResolutionOutcome. Unmatched text gets keyword suggestions and
            nothing is executed or recorded.
        """
        text = text or ""
        pattern = self.find_matching_pattern(text)

        if pattern is None:
            print_warning("No known resolution for this error")
            return ResolutionOutcome(success=False, suggestions=generate_generic_suggestions(text))

        outcome = ResolutionOutcome(
            success=False,
            pattern_id=pattern.id,
            category=pattern.category,
            severity=pattern.severity,
            description=pattern.description,
            automated=pattern.automated,
        )
        print_info(f"Detected: {pattern.description}")

        context = self._command_context()
        commands = [c.format(**context) for c in pattern.resolution.commands]

        if isinstance(pattern.resolution, ManualResolution):
            outcome.requires_manual_intervention = True
            outcome.manual_steps = list(pattern.resolution.manual_steps)
            outcome.suggested_commands = [str(c) for c in commands]
            return outcome

        try:
            outcome.config_changes = self.apply_config_changes(pattern.resolution.config_changes)
        except OSError as e:
            logger.warning("Could not apply config changes for %s: %s", pattern.id, e)
            outcome.error = str(e)
            outcome.requires_manual_intervention = True
            outcome.manual_steps = [
                f"Set {key}={value} in {change.file}"
                for change in pattern.resolution.config_changes
                for key, value in change.changes
            ]
            outcome.suggested_commands = [str(c) for c in commands]
            self.record_resolution(pattern.id, False, outcome.error)
            return outcome

        # Command failures are reported in the step report, not the outcome
        if commands:
            outcome.report = run_steps(self.runner, [(str(c), c) for c in commands])
        outcome.success = True

        if outcome.report.failures:
            print_warning(f"Applied resolution: {pattern.id} ({len(outcome.report.failures)} step(s) failed)")
        else:
            print_success(f"Applied resolution: {pattern.id}")

        self.record_resolution(pattern.id, outcome.success, outcome.error)
        return outcome

    def apply_config_changes(self, config_changes) -> dict:
        """
        Upsert every config change into its file.

        Raises:
            OSError: if a file cannot be read or written
        """
        applied = {}
        for change in config_changes:
            print_step(f"Updating {change.file}")
            path = self.config.project_dir / change.file
            applied[change.file] = upsert_properties(path, dict(change.changes))
        return applied

    def record_resolution(self, pattern_id: str, success: bool, error: Optional[str] = None) -> None:
        self.history.append(ResolutionRecord(
            timestamp=format_timestamp(self._now()),
            pattern_id=pattern_id,
            success=success,
            error=error,
        ))
        self._save_history()

    def get_resolution_stats(self) -> dict:
        total = len(self.history)
        successful = sum(1 for r in self.history if r.success)

        frequency: dict[str, int] = {}
        for record in self.history:
            frequency[record.pattern_id] = frequency.get(record.pattern_id, 0) + 1

        return {
            "total_attempts": total,
            "successful": successful,
            "success_rate": f"{successful / total * 100:.1f}" if total else "0.0",
            "pattern_frequency": frequency,
        }
