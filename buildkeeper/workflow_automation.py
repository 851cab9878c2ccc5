"""
Workflow Automation
===================

Environment-specific builds for the android and ios targets, the clean
build sequence, and switching the project between development, staging
and production.

Build configuration table:

    environment   android (variant, signing, minify, shrink)   ios (configuration, identity)
    development   debug, debug, false, false                   Debug, iPhone Developer
    staging       release, debug, true, false                  Release, iPhone Distribution
    production    release, release, true, true                 Release, iPhone Distribution

Build failures come back as a BuildResult with ``success=False`` and the
tool output; only an unknown platform or environment raises.
"""

import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from buildkeeper.config import BuildKeeperConfig
from buildkeeper.config_files import delete_json_value, read_properties, set_json_value, upsert_properties
from buildkeeper.errors import UnknownTargetError
from buildkeeper.error_resolver import GRADLE_JVM_ARGS
from buildkeeper.output import print_error, print_info, print_step, print_success, print_warning, spinner
from buildkeeper.platform_utils import get_gradle_cache_dir, get_gradle_wrapper, get_node_tool, get_platform_info
from buildkeeper.shell import Command, CommandRunner, StepReport, run_steps
from buildkeeper.signature_manager import InstallResult, SignatureManager

PLATFORMS = ("android", "ios")
ENVIRONMENTS = ("development", "staging", "production")


@dataclass(frozen=True)
class AndroidBuildConfig:
    build_type: str
    signing_config: str
    minify: bool
    shrink: bool

    @property
    def gradle_task(self) -> str:
        return f"assemble{self.build_type.capitalize()}"


@dataclass(frozen=True)
class IosBuildConfig:
    configuration: str
    code_sign_identity: str


BUILD_CONFIGS = {
    "development": {
        "android": AndroidBuildConfig("debug", "debug", minify=False, shrink=False),
        "ios": IosBuildConfig("Debug", "iPhone Developer"),
    },
    "staging": {
        "android": AndroidBuildConfig("release", "debug", minify=True, shrink=False),
        "ios": IosBuildConfig("Release", "iPhone Distribution"),
    },
    "production": {
        "android": AndroidBuildConfig("release", "release", minify=True, shrink=True),
        "ios": IosBuildConfig("Release", "iPhone Distribution"),
    },
}

GRADLE_OPTIMIZATIONS = {
    "org.gradle.jvmargs": GRADLE_JVM_ARGS,
    "org.gradle.parallel": "true",
    "org.gradle.configureondemand": "true",
    "org.gradle.daemon": "true",
    "android.useAndroidX": "true",
    "android.enableJetifier": "true",
}

ENVIRONMENT_VARIABLES = {
    "development": {"NODE_ENV": "development", "EXPO_PUBLIC_ENV": "development"},
    "staging": {"NODE_ENV": "production", "EXPO_PUBLIC_ENV": "staging"},
    "production": {"NODE_ENV": "production", "EXPO_PUBLIC_ENV": "production"},
}


def _gradle_bool(value: bool) -> str:
    return "true" if value else "false"


def validate_target(platform: Optional[str] = None, environment: Optional[str] = None) -> None:
    """
    Raises:
        UnknownTargetError: for a platform or environment not in the table
    """
    if platform is not None and platform not in PLATFORMS:
        raise UnknownTargetError(f"Unknown platform: {platform} (expected one of {', '.join(PLATFORMS)})")
    if environment is not None and environment not in ENVIRONMENTS:
        raise UnknownTargetError(
            f"Unknown environment: {environment} (expected one of {', '.join(ENVIRONMENTS)})"
        )


@dataclass
class BuildResult:
    success: bool
    platform: str
    environment: str
    artifact_path: Optional[Path] = None
    build_time: Optional[float] = None
    artifact_size: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    install: Optional[InstallResult] = None


def artifact_size(path: Path) -> int:
    """Size in bytes of a file, or of every file under a bundle directory."""
    path = Path(path)
    if path.is_dir():
        return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
    return path.stat().st_size


class WorkflowAutomation:
    """Build, clean and environment switching for the mobile project."""

    def __init__(self, config: BuildKeeperConfig, runner: CommandRunner, signature_manager: SignatureManager):
        self.config = config
        self.runner = runner
        self.signature_manager = signature_manager

    @property
    def gradle_properties_path(self) -> Path:
        return self.config.android_dir / "gradle.properties"

    @property
    def ios_properties_path(self) -> Path:
        return self.config.ios_dir / "build.properties"

    # =========================================================================
    # Build
    # =========================================================================

    def build(self, platform: str, environment: str) -> BuildResult:
        """
        Configure, build, locate the artifact and, for development android
        builds, install it on the connected device.

        Raises:
            UnknownTargetError: for an unknown platform or environment
        """
        validate_target(platform, environment)
        print_info(f"Building {platform} for {environment}...")

        try:
            self.setup_build_environment(platform, environment)
        except OSError as e:
            print_error(f"Could not prepare build configuration: {e}")
            return BuildResult(False, platform, environment, error=str(e))

        started = time.monotonic()
        if platform == "android":
            result = self._build_android(environment)
        else:
            result = self._build_ios(environment)
        result.build_time = round(time.monotonic() - started, 2)

        if not result.success:
            print_error(f"Build failed: {result.error.splitlines()[-1] if result.error else 'unknown error'}")
            return result

        print_success(f"Build completed in {result.build_time}s")

        if platform == "android" and environment == "development":
            if result.artifact_path is None:
                result.install = InstallResult(False, error="APK not found, cannot install")
            else:
                result.install = self.signature_manager.install_with_signature_handling(result.artifact_path)
            if not result.install.success:
                result.success = False
                result.error = result.install.error
                print_error(f"Install failed: {result.error}")

        return result

    def setup_build_environment(self, platform: str, environment: str) -> dict:
        """Write the environment's settings into the platform's build descriptor."""
        validate_target(platform, environment)
        print_step(f"Setting up {platform} build environment for {environment}...")
        target = BUILD_CONFIGS[environment][platform]

        if platform == "android":
            changes = {
                "android.buildVariant": target.build_type,
                "android.signingConfig": target.signing_config,
                "android.enableProguardInReleaseBuilds": _gradle_bool(target.minify),
                "android.enableShrinkResourcesInReleaseBuilds": _gradle_bool(target.shrink),
                **GRADLE_OPTIMIZATIONS,
            }
            return upsert_properties(self.gradle_properties_path, changes)

        return upsert_properties(self.ios_properties_path, {
            "CONFIGURATION": target.configuration,
            "CODE_SIGN_IDENTITY": target.code_sign_identity,
        })

    def _build_android(self, environment: str) -> BuildResult:
        target = BUILD_CONFIGS[environment]["android"]
        command = Command((get_gradle_wrapper(), target.gradle_task), cwd="android")
        with spinner(f"Building Android {target.build_type}..."):
            result = self.runner.run(command)
        if not result.ok:
            return BuildResult(False, "android", environment, output=result.output, error=result.output)

        apk = self.find_artifact("android", environment)
        if apk is None:
            print_warning(f"No APK found for {target.build_type}")
        return BuildResult(
            True, "android", environment,
            artifact_path=apk,
            artifact_size=artifact_size(apk) if apk else None,
            output=result.output,
        )

    def _find_workspace(self) -> Optional[Path]:
        if not self.config.ios_dir.is_dir():
            return None
        return next(iter(sorted(self.config.ios_dir.glob("*.xcworkspace"))), None)

    def _build_ios(self, environment: str) -> BuildResult:
        target = BUILD_CONFIGS[environment]["ios"]

        if not get_platform_info().can_build_ios:
            return BuildResult(False, "ios", environment, error="iOS builds require macOS with Xcode")

        workspace = self._find_workspace()
        if workspace is None:
            return BuildResult(
                False, "ios", environment,
                error="No Xcode workspace found in ios/ (run `npx expo prebuild` first)",
            )

        scheme = self.config.ios_scheme or workspace.stem
        command = Command((
            "xcodebuild",
            "-workspace", workspace.name,
            "-scheme", scheme,
            "-configuration", target.configuration,
            "-sdk", "iphoneos",
            "-derivedDataPath", "build",
            f"CODE_SIGN_IDENTITY={target.code_sign_identity}",
        ), cwd="ios")
        with spinner(f"Building iOS {target.configuration} ({scheme})..."):
            result = self.runner.run(command)
        if not result.ok:
            return BuildResult(False, "ios", environment, output=result.output, error=result.output)

        app = self.find_artifact("ios", environment)
        return BuildResult(
            True, "ios", environment,
            artifact_path=app,
            artifact_size=artifact_size(app) if app else None,
            output=result.output,
        )

    def find_artifact(self, platform: str, environment: str) -> Optional[Path]:
        """First built artifact for the environment, or None."""
        validate_target(platform, environment)
        target = BUILD_CONFIGS[environment][platform]

        if platform == "android":
            directory = self.config.android_dir / "app" / "build" / "outputs" / "apk" / target.build_type
            pattern = "*.apk"
        else:
            directory = self.config.ios_dir / "build" / "Build" / "Products" / f"{target.configuration}-iphoneos"
            pattern = "*.app"

        if not directory.is_dir():
            return None
        return next(iter(sorted(directory.glob(pattern))), None)

    # =========================================================================
    # Clean & Environment Switching
    # =========================================================================

    def _cache_clear_commands(self) -> list:
        return [
            ("Clear Metro cache", Command((get_node_tool("npx"), "expo", "start", "--clear"))),
            ("Reset bundler cache", Command((get_node_tool("npm"), "start", "--", "--reset-cache"))),
        ]

    def clear_build_caches(self) -> StepReport:
        """Run the bundler cache clears with a bounded wait."""
        return run_steps(self.runner, self._cache_clear_commands(), timeout=self.config.cache_clear_timeout)

    def clean_build(self) -> StepReport:
        """
        Full clean: caches, node_modules, android build output, reinstall.

        Every step runs even if earlier ones fail.
        """
        print_info("Starting clean build process...")
        npm = get_node_tool("npm")

        report = run_steps(
            self.runner,
            self._cache_clear_commands()[:1],
            timeout=self.config.cache_clear_timeout,
        )
        report.extend(run_steps(self.runner, [
            ("Clean npm cache", Command((npm, "cache", "clean", "--force"))),
            ("Remove node_modules", lambda: shutil.rmtree(self.config.project_dir / "node_modules")),
            ("Remove Android build", Command((get_gradle_wrapper(), "clean"), cwd="android")),
            ("Reinstall dependencies", Command((npm, "install"))),
            ("Clear Gradle cache", lambda: shutil.rmtree(get_gradle_cache_dir())),
        ]))

        if report.succeeded:
            print_success("Clean build process completed")
        else:
            print_warning(f"Clean build finished with {len(report.failures)} failed step(s)")
        return report

    def _update_app_json(self, environment: str) -> None:
        app_json = self.config.project_dir / "app.json"
        if not app_json.exists():
            return
        if environment == "development":
            set_json_value(app_json, ("expo", "developmentClient"), {"silentLaunch": False})
        else:
            delete_json_value(app_json, ("expo", "developmentClient"))

    def switch_environment(self, target: str) -> StepReport:
        """
        Point app.json and .env at another environment and clear caches.

        Raises:
            UnknownTargetError: before any file is touched
        """
        validate_target(environment=target)
        print_info(f"Switching to {target} environment...")

        report = run_steps(self.runner, [
            ("Update app.json", lambda: self._update_app_json(target)),
            ("Update .env", lambda: upsert_properties(
                self.config.project_dir / ".env", ENVIRONMENT_VARIABLES[target],
            )),
        ])
        report.extend(self.clear_build_caches())

        print_success(f"Switched to {target} environment")
        return report

    def generate_workflow_report(self) -> dict:
        return {
            "available_environments": list(ENVIRONMENTS),
            "supported_platforms": list(PLATFORMS),
            "can_build_ios": get_platform_info().can_build_ios,
            "descriptors": {
                "android": self.gradle_properties_path.exists(),
                "ios": self.ios_properties_path.exists(),
                "env": (self.config.project_dir / ".env").exists(),
                "app_json": (self.config.project_dir / "app.json").exists(),
            },
            "current_environment": self._current_environment(),
        }

    def _current_environment(self) -> Optional[str]:
        env_path = self.config.project_dir / ".env"
        if not env_path.exists():
            return None
        return read_properties(env_path).get("EXPO_PUBLIC_ENV")
