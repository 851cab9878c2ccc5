"""
Tests for Workflow Automation
=============================

Tests for buildkeeper/workflow_automation.py
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from buildkeeper.config_files import read_properties
from buildkeeper.errors import UnknownTargetError
from buildkeeper.platform_utils import OSType, PlatformInfo
from buildkeeper.signature_manager import InstallResult
from buildkeeper.workflow_automation import (
    BUILD_CONFIGS,
    GRADLE_OPTIMIZATIONS,
    WorkflowAutomation,
)

MACOS = PlatformInfo(OSType.MACOS, "./gradlew", "", True)
LINUX = PlatformInfo(OSType.LINUX, "./gradlew", "", False)


@pytest.fixture
def signatures():
    mock = MagicMock()
    mock.install_with_signature_handling.return_value = InstallResult(True)
    return mock


@pytest.fixture
def gradle_cache(tmp_path):
    cache = tmp_path / "gradle-caches"
    (cache / "modules-2").mkdir(parents=True)
    return cache


@pytest.fixture
def workflow(config, runner, signatures, gradle_cache):
    with patch("buildkeeper.workflow_automation.get_gradle_wrapper", return_value="./gradlew"), \
            patch("buildkeeper.workflow_automation.get_node_tool", side_effect=lambda name: name), \
            patch("buildkeeper.workflow_automation.get_gradle_cache_dir", return_value=gradle_cache), \
            patch("buildkeeper.workflow_automation.get_platform_info", return_value=LINUX):
        yield WorkflowAutomation(config, runner, signatures)


def make_apk(config, build_type="debug", name="app-debug.apk", size=2048):
    apk_dir = config.android_dir / "app" / "build" / "outputs" / "apk" / build_type
    apk_dir.mkdir(parents=True, exist_ok=True)
    apk = apk_dir / name
    apk.write_bytes(b"x" * size)
    return apk


class TestBuildConfigs:

    def test_table(self):
        dev = BUILD_CONFIGS["development"]["android"]
        prod = BUILD_CONFIGS["production"]["android"]
        staging = BUILD_CONFIGS["staging"]["android"]

        assert (dev.build_type, dev.signing_config, dev.minify, dev.shrink) == ("debug", "debug", False, False)
        assert (staging.build_type, staging.signing_config, staging.minify, staging.shrink) == \
            ("release", "debug", True, False)
        assert (prod.build_type, prod.signing_config, prod.minify, prod.shrink) == \
            ("release", "release", True, True)
        assert BUILD_CONFIGS["development"]["ios"].configuration == "Debug"
        assert BUILD_CONFIGS["production"]["ios"].code_sign_identity == "iPhone Distribution"

    def test_gradle_task(self):
        assert BUILD_CONFIGS["staging"]["android"].gradle_task == "assembleRelease"


class TestSetupBuildEnvironment:

    def test_android_descriptor(self, workflow, config):
        workflow.setup_build_environment("android", "production")

        props = read_properties(config.android_dir / "gradle.properties")
        assert props["android.buildVariant"] == "release"
        assert props["android.signingConfig"] == "release"
        assert props["android.enableProguardInReleaseBuilds"] == "true"
        assert props["android.enableShrinkResourcesInReleaseBuilds"] == "true"
        for key, value in GRADLE_OPTIMIZATIONS.items():
            assert props[key] == value

    def test_idempotent(self, workflow, config):
        workflow.setup_build_environment("android", "development")
        first = (config.android_dir / "gradle.properties").read_bytes()
        workflow.setup_build_environment("android", "development")
        assert (config.android_dir / "gradle.properties").read_bytes() == first

    def test_preserves_other_lines(self, workflow, config):
        path = config.android_dir / "gradle.properties"
        path.write_text("# project settings\nhermesEnabled=true\norg.gradle.daemon=false\n")

        workflow.setup_build_environment("android", "development")

        content = path.read_text()
        assert content.startswith("# project settings\nhermesEnabled=true\norg.gradle.daemon=true\n")
        assert content.count("org.gradle.daemon=") == 1

    def test_ios_descriptor(self, workflow, config):
        workflow.setup_build_environment("ios", "staging")
        props = read_properties(config.ios_dir / "build.properties")
        assert props == {"CONFIGURATION": "Release", "CODE_SIGN_IDENTITY": "iPhone Distribution"}


class TestAndroidBuild:

    def test_development_build_installs(self, workflow, runner, config, signatures):
        apk = make_apk(config)

        result = workflow.build("android", "development")

        assert result.success
        assert result.artifact_path == apk
        assert result.artifact_size == 2048
        assert result.build_time is not None
        assert runner.ran("./gradlew", "assembleDebug")
        assert runner.calls[0].cwd == "android"
        signatures.install_with_signature_handling.assert_called_once_with(apk)

    def test_release_build_not_installed(self, workflow, runner, config, signatures):
        make_apk(config, "release", "app-release.apk")

        result = workflow.build("android", "production")

        assert result.success
        assert runner.ran("./gradlew", "assembleRelease")
        signatures.install_with_signature_handling.assert_not_called()

    def test_build_failure_returns_output(self, workflow, runner, signatures):
        runner.on("./gradlew", returncode=1, stderr="FAILURE: Build failed with an exception.\nJava heap space")

        result = workflow.build("android", "development")

        assert not result.success
        assert "Java heap space" in result.error
        signatures.install_with_signature_handling.assert_not_called()

    def test_install_failure_fails_build(self, workflow, config, signatures):
        make_apk(config)
        signatures.install_with_signature_handling.return_value = InstallResult(
            False, error="Failure [INSTALL_FAILED_INSUFFICIENT_STORAGE]",
        )

        result = workflow.build("android", "development")

        assert not result.success
        assert result.error == "Failure [INSTALL_FAILED_INSUFFICIENT_STORAGE]"

    def test_missing_apk_fails_development_install(self, workflow, signatures):
        result = workflow.build("android", "development")
        assert not result.success
        assert "APK not found" in result.error
        signatures.install_with_signature_handling.assert_not_called()

    def test_unknown_targets(self, workflow, runner):
        with pytest.raises(UnknownTargetError):
            workflow.build("windows", "development")
        with pytest.raises(UnknownTargetError):
            workflow.build("android", "qa")
        assert runner.calls == []


class TestIosBuild:

    def test_requires_macos(self, workflow, runner):
        result = workflow.build("ios", "development")
        assert not result.success
        assert "macOS" in result.error
        assert runner.calls == []

    def test_xcodebuild(self, workflow, runner, config):
        (config.ios_dir / "CircleLink.xcworkspace").mkdir(parents=True)
        app = config.ios_dir / "build" / "Build" / "Products" / "Release-iphoneos" / "CircleLink.app"
        app.mkdir(parents=True)
        (app / "CircleLink").write_bytes(b"x" * 100)
        (app / "Info.plist").write_bytes(b"x" * 20)

        with patch("buildkeeper.workflow_automation.get_platform_info", return_value=MACOS):
            result = workflow.build("ios", "production")

        assert result.success
        assert result.artifact_path == app
        assert result.artifact_size == 120
        args = runner.calls[0].args
        assert args[0] == "xcodebuild"
        assert args[args.index("-scheme") + 1] == "CircleLink"
        assert args[args.index("-configuration") + 1] == "Release"
        assert runner.calls[0].cwd == "ios"

    def test_missing_workspace(self, workflow):
        with patch("buildkeeper.workflow_automation.get_platform_info", return_value=MACOS):
            result = workflow.build("ios", "development")
        assert not result.success
        assert "workspace" in result.error


class TestCleanBuild:

    def test_step_order(self, workflow, runner):
        report = workflow.clean_build()

        assert [s.name for s in report.steps] == [
            "Clear Metro cache",
            "Clean npm cache",
            "Remove node_modules",
            "Remove Android build",
            "Reinstall dependencies",
            "Clear Gradle cache",
        ]
        assert report.succeeded

    def test_only_cache_clear_is_bounded(self, workflow, runner, config):
        workflow.clean_build()
        assert runner.timeouts[0] == config.cache_clear_timeout
        assert all(t is None for t in runner.timeouts[1:])

    def test_removes_directories(self, workflow, project_dir, gradle_cache):
        workflow.clean_build()
        assert not (project_dir / "node_modules").exists()
        assert not gradle_cache.exists()

    def test_continues_past_failures(self, workflow, runner, project_dir):
        (project_dir / "node_modules").rmdir()
        runner.on("npm", "cache", returncode=1, stderr="EPERM")

        report = workflow.clean_build()

        assert len(report.steps) == 6
        assert [s.name for s in report.failures] == ["Clean npm cache", "Remove node_modules"]
        assert runner.ran("npm", "install")

    def test_timed_out_metro_is_a_failed_step(self, workflow, runner):
        runner.on("npx", "expo", timed_out=True)
        report = workflow.clean_build()
        assert report.steps[0].ok is False
        assert len(report.steps) == 6


class TestSwitchEnvironment:

    def test_development(self, workflow, project_dir):
        report = workflow.switch_environment("development")

        app = json.loads((project_dir / "app.json").read_text())
        assert app["expo"]["developmentClient"] == {"silentLaunch": False}
        assert read_properties(project_dir / ".env") == {
            "NODE_ENV": "development",
            "EXPO_PUBLIC_ENV": "development",
        }
        assert report.succeeded

    def test_staging_removes_dev_client(self, workflow, project_dir):
        workflow.switch_environment("development")
        workflow.switch_environment("staging")

        app = json.loads((project_dir / "app.json").read_text())
        assert "developmentClient" not in app["expo"]
        assert read_properties(project_dir / ".env") == {"NODE_ENV": "production", "EXPO_PUBLIC_ENV": "staging"}

    def test_keeps_other_env_vars(self, workflow, project_dir):
        (project_dir / ".env").write_text("API_URL=https://example.test\nNODE_ENV=development")
        workflow.switch_environment("production")

        props = read_properties(project_dir / ".env")
        assert props["API_URL"] == "https://example.test"
        assert props["NODE_ENV"] == "production"

    def test_cache_clears_bounded(self, workflow, runner, config):
        workflow.switch_environment("production")
        assert runner.ran("npx", "expo", "start", "--clear")
        assert runner.ran("npm", "start", "--", "--reset-cache")
        assert runner.timeouts == [config.cache_clear_timeout, config.cache_clear_timeout]

    def test_unknown_target_touches_nothing(self, workflow, project_dir, runner):
        before = (project_dir / "app.json").read_bytes()
        with pytest.raises(UnknownTargetError):
            workflow.switch_environment("qa")
        assert (project_dir / "app.json").read_bytes() == before
        assert not (project_dir / ".env").exists()
        assert runner.calls == []

    def test_current_environment_in_report(self, workflow):
        workflow.switch_environment("staging")
        report = workflow.generate_workflow_report()
        assert report["current_environment"] == "staging"
        assert report["available_environments"] == ["development", "staging", "production"]
        assert report["descriptors"]["env"] is True
