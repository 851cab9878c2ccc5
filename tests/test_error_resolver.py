"""
Tests for Error Resolver
========================

Tests for buildkeeper/error_resolver.py
"""

import json
from unittest.mock import patch

import pytest

from buildkeeper.config_files import read_properties
from buildkeeper.error_resolver import (
    ERROR_PATTERNS,
    GRADLE_JVM_ARGS,
    ErrorResolver,
    ManualResolution,
    generate_generic_suggestions,
)
from buildkeeper.storage import RESOLUTION_HISTORY_FILE


@pytest.fixture
def resolver(config, runner, store, clock):
    with patch("buildkeeper.error_resolver.get_gradle_wrapper", return_value="./gradlew"), \
            patch("buildkeeper.error_resolver.get_node_tool", side_effect=lambda name: name):
        yield ErrorResolver(config, runner, store, now=clock)


class TestPatternTable:
    """Ordered pattern table."""

    def test_declared_order(self):
        assert [p.id for p in ERROR_PATTERNS] == [
            "signature_mismatch",
            "cpp_dollar_identifier",
            "gradle_daemon_failure",
            "out_of_memory",
            "dependency_conflict",
            "metro_cache_issue",
            "sdk_not_found",
            "linking_error",
            "build_tools_version",
        ]

    def test_manual_patterns(self):
        manual = [p.id for p in ERROR_PATTERNS if isinstance(p.resolution, ManualResolution)]
        assert manual == ["sdk_not_found", "build_tools_version"]

    @pytest.mark.parametrize("text,pattern_id", [
        ("INSTALL_FAILED_UPDATE_INCOMPATIBLE: Package signatures do not match", "signature_mismatch"),
        ("warning: identifier '$foo' begins with a dollar sign", "cpp_dollar_identifier"),
        ("Gradle build daemon disappeared unexpectedly", "gradle_daemon_failure"),
        ("java.lang.OutOfMemoryError: Java heap space", "out_of_memory"),
        ("Duplicate class com.foo.Bar found in modules", "dependency_conflict"),
        ("Unable to resolve module ./Foo", "metro_cache_issue"),
        ("SDK location not found. Define ANDROID_HOME", "sdk_not_found"),
        ("Native module RNFoo cannot be null", "linking_error"),
        ("Failed to find build-tools revision 33.0.0: not found", "build_tools_version"),
    ])
    def test_each_pattern_matches(self, resolver, text, pattern_id):
        assert resolver.find_matching_pattern(text).id == pattern_id

    def test_first_match_wins(self, resolver):
        # Matches signature_mismatch and out_of_memory; the earlier entry wins
        text = "Java heap space then INSTALL_FAILED_UPDATE_INCOMPATIBLE"
        assert resolver.find_matching_pattern(text).id == "signature_mismatch"

    def test_case_insensitive(self, resolver):
        assert resolver.find_matching_pattern("gradle BUILD daemon DISAPPEARED unexpectedly").id == \
            "gradle_daemon_failure"

    def test_no_match(self, resolver):
        assert resolver.find_matching_pattern("all good") is None


class TestAutomatedResolution:
    """Automated resolutions run commands and record history."""

    def test_signature_mismatch_uninstalls(self, resolver, runner, config):
        outcome = resolver.resolve_error("INSTALL_FAILED_UPDATE_INCOMPATIBLE: Package signatures do not match")

        assert outcome.pattern_id == "signature_mismatch"
        assert outcome.automated
        assert outcome.success
        assert runner.ran("adb", "uninstall", config.package_name)

    def test_commands_run_in_order(self, resolver, runner):
        resolver.resolve_error("Native module RNFoo cannot be null")

        assert [c.args for c in runner.calls] == [
            ("./gradlew", "clean"),
            ("npm", "install"),
            ("./gradlew", "build"),
        ]
        assert runner.calls[0].cwd == "android"

    def test_partial_failure_still_succeeds(self, resolver, runner):
        runner.on("./gradlew", returncode=1, stderr="boom")
        outcome = resolver.resolve_error("Native module RNFoo cannot be null")

        assert outcome.success
        assert len(outcome.report.failures) == 2
        assert len(outcome.report.steps) == 3

    def test_command_failures_do_not_fail_resolution(self, resolver, runner):
        runner.on("adb", returncode=1, stderr="Failure [DELETE_FAILED_INTERNAL_ERROR]")
        outcome = resolver.resolve_error("INSTALL_FAILED_UPDATE_INCOMPATIBLE")

        assert outcome.success
        assert outcome.error is None
        assert [s.reason for s in outcome.report.failures] == ["Failure [DELETE_FAILED_INTERNAL_ERROR]"]
        assert resolver.history[-1].success is True

    def test_out_of_memory_config_change(self, resolver, runner, config):
        props = config.android_dir / "gradle.properties"
        props.write_text("org.gradle.jvmargs=-Xmx2048m\nandroid.useAndroidX=true\n")

        outcome = resolver.resolve_error("java.lang.OutOfMemoryError: Java heap space")

        assert outcome.success
        assert runner.calls == []
        values = read_properties(props)
        assert values["org.gradle.jvmargs"] == GRADLE_JVM_ARGS
        assert values["android.useAndroidX"] == "true"
        assert outcome.config_changes == {"android/gradle.properties": {"org.gradle.jvmargs": "updated"}}

    def test_config_change_idempotent(self, resolver, config):
        resolver.resolve_error("Java heap space")
        first = (config.android_dir / "gradle.properties").read_bytes()
        outcome = resolver.resolve_error("Java heap space")

        assert (config.android_dir / "gradle.properties").read_bytes() == first
        assert outcome.config_changes["android/gradle.properties"]["org.gradle.jvmargs"] == "unchanged"

    def test_config_write_failure_gives_manual_fallback(self, resolver):
        with patch("buildkeeper.error_resolver.upsert_properties", side_effect=PermissionError("read-only")):
            outcome = resolver.resolve_error("Java heap space")

        assert not outcome.success
        assert outcome.requires_manual_intervention
        assert outcome.manual_steps == [f"Set org.gradle.jvmargs={GRADLE_JVM_ARGS} in android/gradle.properties"]
        assert resolver.history[-1].success is False

    def test_history_persisted(self, resolver, store, clock):
        resolver.resolve_error("Gradle build daemon disappeared unexpectedly")

        data = json.loads(store.path(RESOLUTION_HISTORY_FILE).read_text())
        assert data == [{
            "timestamp": "2025-06-01T12:00:00.000Z",
            "patternId": "gradle_daemon_failure",
            "success": True,
            "error": None,
        }]


class TestManualAndUnmatched:
    """Manual and unmatched failures execute and record nothing."""

    def test_manual_resolution(self, resolver, runner):
        outcome = resolver.resolve_error("SDK location not found")

        assert outcome.pattern_id == "sdk_not_found"
        assert outcome.requires_manual_intervention
        assert outcome.manual_steps == [
            "Install Android Studio",
            "Set ANDROID_HOME to SDK path",
            "Add platform-tools to PATH",
        ]
        assert not outcome.success
        assert runner.calls == []
        assert resolver.history == []

    def test_unmatched_suggestions(self, resolver, runner):
        outcome = resolver.resolve_error("install step failed while loading module")

        assert not outcome.matched
        assert "Check device connection: adb devices" in outcome.suggestions
        assert "Check package.json for version conflicts" in outcome.suggestions
        assert runner.calls == []
        assert resolver.history == []

    def test_generic_suggestion_buckets(self):
        assert generate_generic_suggestions("nothing relevant") == []
        assert generate_generic_suggestions("HEAP exhausted") == [
            "Increase Gradle memory in gradle.properties",
            "Close other applications to free memory",
        ]
        assert len(generate_generic_suggestions("build of package")) == 4


class TestHistory:
    """Resolution history loading and stats."""

    def test_stats(self, resolver, runner):
        resolver.resolve_error("Gradle build daemon disappeared unexpectedly")
        resolver.resolve_error("Gradle build daemon disappeared unexpectedly")
        with patch("buildkeeper.error_resolver.upsert_properties", side_effect=PermissionError("read-only")):
            resolver.resolve_error("Java heap space")

        stats = resolver.get_resolution_stats()
        assert stats["total_attempts"] == 3
        assert stats["successful"] == 2
        assert stats["success_rate"] == "66.7"
        assert stats["pattern_frequency"] == {"gradle_daemon_failure": 2, "out_of_memory": 1}

    def test_empty_stats(self, resolver):
        assert resolver.get_resolution_stats()["success_rate"] == "0.0"

    def test_legacy_history_upgraded(self, config, runner, store, clock):
        store.write(RESOLUTION_HISTORY_FILE, [
            {"timestamp": "2025-01-01T00:00:00Z", "patternId": "out_of_memory",
             "success": False, "errorMessage": "disk full"},
            {"garbage": True},
        ])
        resolver = ErrorResolver(config, runner, store, now=clock)

        assert len(resolver.history) == 1
        assert resolver.history[0].error == "disk full"

    def test_history_not_an_array(self, config, runner, store, clock):
        store.write(RESOLUTION_HISTORY_FILE, {"oops": 1})
        assert ErrorResolver(config, runner, store, now=clock).history == []
