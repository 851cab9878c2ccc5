"""
Environment Validator
=====================

Checks that the local toolchain can build the mobile project: Node/npm,
the JDK, the Android SDK and build tools, gradle, the framework versions
declared in package.json, adb connectivity, environment variables and
installed dependencies.

Each check is independent and returns a CheckOutcome. A missing required
tool is an error, an outdated but usable one is a warning. A check that
raises is recorded as an error and the batch carries on.

Usage:
    from buildkeeper.environment_validator import EnvironmentValidator

    validator = EnvironmentValidator(project_dir, runner)
    result = validator.validate_all()
    if not result.success:
        print(result.errors)
"""

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from rich.markup import escape

from buildkeeper.output import (
    console,
    create_table,
    print_error,
    print_step,
    print_success,
    print_table,
    print_warning,
    status_markup,
)
from buildkeeper.shell import Command, CommandRunner


class CheckStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class VersionRequirement:
    minimum: str
    recommended: Optional[str] = None


DEFAULT_REQUIREMENTS = {
    "node": VersionRequirement("18.0.0", "20.0.0"),
    "npm": VersionRequirement("8.0.0", "10.0.0"),
    "java": VersionRequirement("11", "17"),
    "gradle": VersionRequirement("7.0.0", "8.0.0"),
    "build_tools": VersionRequirement("33.0.0", "34.0.0"),
    "react_native": VersionRequirement("0.70.0", "0.79.5"),
    "expo": VersionRequirement("50.0.0", "53.0.20"),
}

REQUIRED_SDK_PLATFORMS = ("android-33", "android-34")
REQUIRED_ENV_VARS = ("ANDROID_HOME", "JAVA_HOME")

# ANDROID_HOME may be provided under its older name
ENV_VAR_ALIASES = {"ANDROID_HOME": "ANDROID_SDK_ROOT"}


@dataclass
class CheckOutcome:
    """What a single check function returns."""
    status: CheckStatus
    message: str
    version: Optional[str] = None
    resolution: Optional[str] = None


@dataclass
class EnvironmentCheck:
    """A named check result as reported by validate_all()."""
    name: str
    status: CheckStatus
    message: str
    version: Optional[str] = None
    resolution: Optional[str] = None


@dataclass
class ValidationResult:
    success: bool = True
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    checks: list = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for c in self.checks if c.status == CheckStatus.SUCCESS)


def _leading_int(segment: str) -> int:
    match = re.match(r"\s*(\d+)", segment)
    return int(match.group(1)) if match else 0


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare dotted versions segment by segment, numerically.

    Missing trailing segments count as 0, so "1.2" == "1.2.0", and
    "1.2.0" < "1.10.0".

    Returns:
        -1, 0 or 1
    """
    v1 = [_leading_int(s) for s in str(version1).split(".")]
    v2 = [_leading_int(s) for s in str(version2).split(".")]

    for i in range(max(len(v1), len(v2))):
        a = v1[i] if i < len(v1) else 0
        b = v2[i] if i < len(v2) else 0
        if a > b:
            return 1
        if a < b:
            return -1
    return 0


def clean_version_spec(spec: str) -> str:
    """Strip range operators from a package.json version ("^0.79.5" -> "0.79.5")."""
    return re.sub(r"^[\^~>=<v\s]+", "", spec.strip())


class EnvironmentValidator:
    """Runs the fixed list of environment checks."""

    def __init__(
        self,
        project_dir: Path,
        runner: CommandRunner,
        env: Optional[Mapping[str, str]] = None,
        requirements: Optional[dict] = None,
    ):
        self.project_dir = Path(project_dir)
        self.runner = runner
        self.env = os.environ if env is None else env
        self.requirements = {**DEFAULT_REQUIREMENTS, **(requirements or {})}

        self.checks: list[tuple[str, Callable[[], CheckOutcome]]] = [
            ("Node.js", self.check_node_version),
            ("NPM", self.check_npm_version),
            ("Java", self.check_java_version),
            ("Android SDK", self.check_android_sdk),
            ("Android Build Tools", self.check_android_build_tools),
            ("Gradle", self.check_gradle_version),
            ("React Native", self.check_react_native_version),
            ("Expo", self.check_expo_version),
            ("ADB", self.check_adb_connection),
            ("Environment Variables", self.check_environment_variables),
            ("Project Dependencies", self.check_project_dependencies),
        ]

    def validate_all(self) -> ValidationResult:
        """
        Run every check in order.

        Returns:
            ValidationResult; success is False iff some check is an error
        """
        result = ValidationResult()

        for name, check in self.checks:
            print_step(f"Checking {name}...")
            try:
                outcome = check()
            except Exception as e:
                outcome = CheckOutcome(CheckStatus.ERROR, str(e) or type(e).__name__)

            result.checks.append(EnvironmentCheck(
                name=name,
                status=outcome.status,
                message=outcome.message,
                version=outcome.version,
                resolution=outcome.resolution,
            ))

            if outcome.status == CheckStatus.ERROR:
                result.success = False
                result.errors.append(f"{name}: {outcome.message}")
            elif outcome.status == CheckStatus.WARNING:
                result.warnings.append(f"{name}: {outcome.message}")

        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_env(self, name: str) -> Optional[str]:
        value = self.env.get(name)
        if not value and name in ENV_VAR_ALIASES:
            value = self.env.get(ENV_VAR_ALIASES[name])
        return value or None

    def _android_home(self) -> Optional[Path]:
        value = self._get_env("ANDROID_HOME")
        return Path(value) if value else None

    def _read_manifest(self) -> dict:
        with open(self.project_dir / "package.json", "r", encoding="utf-8") as f:
            return json.load(f)

    def _check_tool_version(
        self,
        requirement_key: str,
        version: str,
        label: str,
        below_status: CheckStatus,
        resolution: str,
    ) -> CheckOutcome:
        req = self.requirements[requirement_key]
        if compare_versions(version, req.minimum) >= 0:
            return CheckOutcome(CheckStatus.SUCCESS, f"{label} version is compatible", version)
        return CheckOutcome(
            below_status,
            f"{label} version {version} is below minimum {req.minimum}",
            version,
            resolution,
        )

    def _check_declared_dependency(self, package: str, requirement_key: str, label: str) -> CheckOutcome:
        try:
            declared = self._read_manifest().get("dependencies", {}).get(package)
        except (OSError, json.JSONDecodeError):
            declared = None

        if not declared:
            return CheckOutcome(
                CheckStatus.ERROR,
                f"Could not determine {label} version",
                resolution=f"Ensure {package} is listed in package.json dependencies",
            )

        version = clean_version_spec(declared)
        return self._check_tool_version(
            requirement_key, version, label, CheckStatus.WARNING,
            f"Consider updating {label} to {self.requirements[requirement_key].recommended}",
        )

    # =========================================================================
    # Checks
    # =========================================================================

    def check_node_version(self) -> CheckOutcome:
        result = self.runner.run(Command(("node", "--version")))
        if not result.ok:
            return CheckOutcome(
                CheckStatus.ERROR, "Node.js not found",
                resolution="Install Node.js from https://nodejs.org/",
            )
        version = result.stdout.strip().lstrip("v")
        req = self.requirements["node"]
        return self._check_tool_version(
            "node", version, "Node.js", CheckStatus.ERROR,
            f"Update Node.js to version {req.recommended} or higher",
        )

    def check_npm_version(self) -> CheckOutcome:
        result = self.runner.run(Command(("npm", "--version")))
        if not result.ok:
            return CheckOutcome(
                CheckStatus.ERROR, "NPM not found",
                resolution="NPM should be installed with Node.js",
            )
        return self._check_tool_version(
            "npm", result.stdout.strip(), "NPM", CheckStatus.WARNING,
            "Update NPM with: npm install -g npm@latest",
        )

    def check_java_version(self) -> CheckOutcome:
        # java -version prints to stderr
        result = self.runner.run(Command(("java", "-version")))
        if not result.ok:
            return CheckOutcome(
                CheckStatus.ERROR, "Java not found",
                resolution="Install a Java Development Kit (JDK) 11 or higher",
            )

        match = re.search(r'version "([^"]+)"', result.output)
        if not match:
            return CheckOutcome(
                CheckStatus.ERROR, "Could not parse Java version",
                resolution="Check that `java -version` runs the JDK you expect",
            )

        version = match.group(1)
        segments = version.split(".")
        # Pre-9 JDKs report "1.8.0_292"
        major = segments[1] if segments[0] == "1" and len(segments) > 1 else segments[0]

        req = self.requirements["java"]
        if compare_versions(major, req.minimum) >= 0:
            return CheckOutcome(CheckStatus.SUCCESS, "Java version is compatible", version)
        return CheckOutcome(
            CheckStatus.ERROR,
            f"Java version {version} is below minimum Java {req.minimum}",
            version,
            f"Install Java {req.minimum} or higher (recommended: Java {req.recommended})",
        )

    def check_android_sdk(self) -> CheckOutcome:
        android_home = self._android_home()
        if android_home is None:
            return CheckOutcome(
                CheckStatus.ERROR, "ANDROID_HOME environment variable not set",
                resolution="Set ANDROID_HOME to your Android SDK installation path",
            )
        if not android_home.exists():
            return CheckOutcome(
                CheckStatus.ERROR, f"Android SDK not found at {android_home}",
                resolution="Install the Android SDK or update ANDROID_HOME",
            )

        platforms_dir = android_home / "platforms"
        if not platforms_dir.is_dir():
            return CheckOutcome(
                CheckStatus.ERROR, "Android SDK platforms not found",
                resolution="Install SDK platforms with the Android Studio SDK Manager",
            )

        installed = [p.name for p in platforms_dir.iterdir()]
        if any(required in name for name in installed for required in REQUIRED_SDK_PLATFORMS):
            return CheckOutcome(CheckStatus.SUCCESS, "Android SDK is properly configured", str(android_home))
        return CheckOutcome(
            CheckStatus.WARNING, "Required Android SDK platforms not found", str(android_home),
            f"Install one of {', '.join(REQUIRED_SDK_PLATFORMS)} using the SDK Manager",
        )

    def check_android_build_tools(self) -> CheckOutcome:
        android_home = self._android_home()
        if android_home is None:
            return CheckOutcome(
                CheckStatus.ERROR, "Cannot check build tools without ANDROID_HOME",
                resolution="Set ANDROID_HOME environment variable",
            )

        build_tools_dir = android_home / "build-tools"
        if not build_tools_dir.is_dir():
            return CheckOutcome(
                CheckStatus.ERROR, "Android build tools not found",
                resolution="Install Android build tools using the SDK Manager",
            )

        versions = sorted(p.name for p in build_tools_dir.iterdir())
        minimum = self.requirements["build_tools"].minimum
        if any(compare_versions(v, minimum) >= 0 for v in versions):
            return CheckOutcome(CheckStatus.SUCCESS, "Android build tools are up to date", ", ".join(versions))
        return CheckOutcome(
            CheckStatus.WARNING, "Consider updating Android build tools", ", ".join(versions),
            f"Install build tools {minimum} or newer using the SDK Manager",
        )

    def check_gradle_version(self) -> CheckOutcome:
        result = self.runner.run(Command(("gradle", "--version")))
        match = re.search(r"Gradle (\d+\.\d+(?:\.\d+)?)", result.output) if result.ok else None

        if match:
            return self._check_tool_version(
                "gradle", match.group(1), "Gradle", CheckStatus.WARNING,
                "Update the Gradle wrapper or install a newer Gradle",
            )

        if (self.project_dir / "android" / "gradlew").exists():
            return CheckOutcome(CheckStatus.SUCCESS, "Using Gradle wrapper (recommended)", "wrapper")
        return CheckOutcome(
            CheckStatus.WARNING, "Gradle not found globally and no wrapper present",
            resolution="Install Gradle or generate the android/ project with its wrapper",
        )

    def check_react_native_version(self) -> CheckOutcome:
        return self._check_declared_dependency("react-native", "react_native", "React Native")

    def check_expo_version(self) -> CheckOutcome:
        return self._check_declared_dependency("expo", "expo", "Expo")

    def check_adb_connection(self) -> CheckOutcome:
        result = self.runner.run(Command(("adb", "devices")))
        if not result.ok:
            return CheckOutcome(
                CheckStatus.ERROR, "ADB not found or not working",
                resolution="Install Android SDK platform-tools and add them to PATH",
            )

        devices = []
        for line in result.stdout.splitlines()[1:]:
            parts = line.split()
            if len(parts) >= 2 and parts[1] == "device":
                devices.append(parts[0])

        if devices:
            return CheckOutcome(
                CheckStatus.SUCCESS, f"{len(devices)} Android device(s) connected", f"{len(devices)} device(s)",
            )
        return CheckOutcome(
            CheckStatus.WARNING, "No Android devices connected", "0 device(s)",
            "Connect an Android device or start an emulator",
        )

    def check_environment_variables(self) -> CheckOutcome:
        present, missing = [], []
        for name in REQUIRED_ENV_VARS:
            value = self._get_env(name)
            if value:
                present.append(f"{name}={value}")
            else:
                missing.append(name)

        if not missing:
            return CheckOutcome(
                CheckStatus.SUCCESS, "All required environment variables are set", ", ".join(present),
            )
        return CheckOutcome(
            CheckStatus.WARNING, f"Missing: {', '.join(missing)}", ", ".join(present) or None,
            f"Set missing environment variables: {', '.join(missing)}",
        )

    def check_project_dependencies(self) -> CheckOutcome:
        try:
            manifest = self._read_manifest()
        except (OSError, json.JSONDecodeError):
            return CheckOutcome(
                CheckStatus.ERROR, "Could not read package.json",
                resolution="Ensure package.json exists and is valid JSON",
            )

        if not (self.project_dir / "node_modules").is_dir():
            return CheckOutcome(
                CheckStatus.ERROR, "node_modules not found",
                resolution="Run npm install to install dependencies",
            )

        declared = {**manifest.get("dependencies", {}), **manifest.get("devDependencies", {})}
        return CheckOutcome(
            CheckStatus.SUCCESS, "Project dependencies look good", f"{len(declared)} packages",
        )


def print_validation_results(result: ValidationResult) -> None:
    """Render a ValidationResult as a table plus a one-line verdict."""
    table = create_table(title="Environment Validation", columns=["Check", "Status", "Version", "Details"])
    for check in result.checks:
        details = escape(check.message)
        if check.resolution:
            details += f"\n[bk.muted]{escape(check.resolution)}[/]"
        table.add_row(check.name, status_markup(check.status.value), escape(check.version or "-"), details)
    print_table(table)

    console.print(
        f"[bk.ok]{result.passed} passed[/]  "
        f"[bk.warn]{len(result.warnings)} warnings[/]  "
        f"[bk.err]{len(result.errors)} errors[/]"
    )
    if result.success:
        print_success("Environment validation passed")
    elif result.errors:
        print_error("Environment validation found issues that need attention")
    else:
        print_warning("Environment validation finished with warnings")
