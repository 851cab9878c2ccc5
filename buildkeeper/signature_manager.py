"""
Signature Manager
=================

Keeps the debug keystore and the app installed on the connected device
signed with the same certificate.

When the installed app was signed with a different key, ``adb install -r``
fails with INSTALL_FAILED_UPDATE_INCOMPATIBLE. The manager compares SHA-1
fingerprints read from ``keytool`` output and uninstalls the stale app only
when both fingerprints are known and differ.

Usage:
    from buildkeeper.signature_manager import SignatureManager

    signatures = SignatureManager(config, runner)
    resolution = signatures.resolve_conflicts()
    install = signatures.install_with_signature_handling(apk_path)
"""

import logging
import re
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from buildkeeper.config import BuildKeeperConfig
from buildkeeper.errors import KeystoreError
from buildkeeper.output import print_info, print_step, print_success, print_warning
from buildkeeper.shell import Command, CommandRunner

logger = logging.getLogger(__name__)

KEYSTORE_DNAME = "CN=Android Debug,O=Android,C=US"

SIGNATURE_MISMATCH_PATTERNS = (
    re.compile(r"INSTALL_FAILED_UPDATE_INCOMPATIBLE"),
    re.compile(r"signatures do not match", re.IGNORECASE),
    re.compile(r"INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES"),
)

_SHA1_LINE = re.compile(r"^[ \t]*SHA1:[ \t]*([0-9A-Fa-f:]+)", re.MULTILINE)


def normalize_fingerprint(fingerprint: str) -> str:
    """Strip separators and lower-case a hex fingerprint."""
    return re.sub(r"[^0-9a-f]", "", fingerprint.lower())


def parse_sha1_fingerprint(text: str) -> Optional[str]:
    """Find the labelled ``SHA1:`` line in keytool output."""
    match = _SHA1_LINE.search(text)
    if not match:
        return None
    return normalize_fingerprint(match.group(1)) or None


@dataclass
class ConflictResolution:
    """Outcome of resolve_conflicts(). ``action`` is none, skipped or uninstalled."""
    success: bool
    action: str
    message: str
    error: Optional[str] = None


@dataclass
class InstallResult:
    success: bool
    error: Optional[str] = None
    retried: bool = False


@dataclass
class SignatureReport:
    keystore_exists: bool
    app_installed: bool
    debug_signature: Optional[str]
    installed_signature: Optional[str]
    configuration_valid: bool

    @property
    def signature_match(self) -> Optional[bool]:
        """None when either fingerprint is unknown."""
        if not self.debug_signature or not self.installed_signature:
            return None
        return self.debug_signature == self.installed_signature

    def to_dict(self) -> dict:
        data = asdict(self)
        data["signature_match"] = self.signature_match
        return data


class SignatureManager:
    """Debug keystore and on-device signature reconciliation."""

    def __init__(self, config: BuildKeeperConfig, runner: CommandRunner):
        self.config = config
        self.runner = runner

    @property
    def package_name(self) -> str:
        return self.config.package_name

    @property
    def keystore_path(self) -> Path:
        return self.config.keystore_path

    @property
    def build_gradle_path(self) -> Path:
        return self.config.android_dir / "app" / "build.gradle"

    # =========================================================================
    # Keystore
    # =========================================================================

    def ensure_debug_keystore(self) -> Path:
        """
        Generate the debug keystore if it does not exist yet.

        Raises:
            KeystoreError: if keytool fails
        """
        if self.keystore_path.exists():
            return self.keystore_path

        print_step("Generating debug keystore...")
        self.keystore_path.parent.mkdir(parents=True, exist_ok=True)
        result = self.runner.run(Command((
            "keytool", "-genkeypair", "-v",
            "-keystore", str(self.keystore_path),
            "-alias", self.config.keystore_alias,
            "-keyalg", "RSA",
            "-keysize", "2048",
            "-validity", "10000",
            "-storepass", self.config.keystore_password,
            "-keypass", self.config.keystore_password,
            "-dname", KEYSTORE_DNAME,
        )))
        if not result.ok:
            raise KeystoreError(f"Failed to generate debug keystore: {result.output}")

        print_success(f"Debug keystore created at {self.keystore_path}")
        return self.keystore_path

    def get_debug_signature(self) -> Optional[str]:
        """SHA-1 fingerprint of the debug keystore, or None if unreadable."""
        if not self.keystore_path.exists():
            return None
        result = self.runner.run(Command((
            "keytool", "-list", "-v",
            "-keystore", str(self.keystore_path),
            "-alias", self.config.keystore_alias,
            "-storepass", self.config.keystore_password,
        )))
        if not result.ok:
            logger.warning("Could not read debug keystore signature: %s", result.output)
            return None
        return parse_sha1_fingerprint(result.output)

    def validate_keystore_configuration(self) -> bool:
        """True if app/build.gradle has a debug signing config using debug.keystore."""
        try:
            content = self.build_gradle_path.read_text(encoding="utf-8")
        except OSError:
            return False
        return "signingConfigs" in content and "debug {" in content and "debug.keystore" in content

    # =========================================================================
    # Device
    # =========================================================================

    def is_app_installed(self) -> bool:
        result = self.runner.run(Command(("adb", "shell", "pm", "list", "packages", self.package_name)))
        if not result.ok:
            return False
        return f"package:{self.package_name}" in (line.strip() for line in result.stdout.splitlines())

    def get_installed_signature(self) -> Optional[str]:
        """
        SHA-1 fingerprint of the installed app's signing certificate.

        Pulls the base APK into a temporary directory and reads its
        certificate with ``keytool -printcert -jarfile``.

        Returns:
            Normalized fingerprint, or None if any step fails
        """
        result = self.runner.run(Command(("adb", "shell", "pm", "path", self.package_name)))
        if not result.ok:
            return None

        apk_paths = [
            line.strip()[len("package:"):]
            for line in result.stdout.splitlines()
            if line.strip().startswith("package:")
        ]
        if not apk_paths:
            return None
        base = next((p for p in apk_paths if p.endswith("base.apk")), apk_paths[0])

        with tempfile.TemporaryDirectory(prefix="buildkeeper-") as tmp:
            local_apk = Path(tmp) / "installed.apk"
            pulled = self.runner.run(Command(("adb", "pull", base, str(local_apk))))
            if not pulled.ok:
                logger.warning("Could not pull installed APK: %s", pulled.output)
                return None

            cert = self.runner.run(Command(("keytool", "-printcert", "-jarfile", str(local_apk))))
            if not cert.ok:
                logger.warning("Could not read installed APK certificate: %s", cert.output)
                return None
            return parse_sha1_fingerprint(cert.output)

    def uninstall_app(self) -> bool:
        print_step(f"Uninstalling {self.package_name}...")
        result = self.runner.run(Command(("adb", "uninstall", self.package_name)))
        return result.ok and "Failure" not in result.output

    # =========================================================================
    # Conflict handling
    # =========================================================================

    def resolve_conflicts(self) -> ConflictResolution:
        """
        Make sure the next install will not hit a signature conflict.

        Never raises; failures are reported in the result.
        """
        try:
            self.ensure_debug_keystore()

            if not self.is_app_installed():
                return ConflictResolution(True, "none", "App not installed, no conflict possible")

            debug_signature = self.get_debug_signature()
            installed_signature = self.get_installed_signature()

            if not debug_signature or not installed_signature:
                print_warning("Could not compare signatures, leaving installed app in place")
                return ConflictResolution(True, "skipped", "Signature comparison unavailable")

            if debug_signature == installed_signature:
                return ConflictResolution(True, "none", "Signatures match")

            print_warning("Installed app is signed with a different key")
            if self.uninstall_app():
                print_success("Removed app with conflicting signature")
                return ConflictResolution(True, "uninstalled", "Uninstalled app with mismatched signature")
            return ConflictResolution(
                False, "uninstalled", "Failed to uninstall app with mismatched signature",
                error="adb uninstall failed",
            )
        except Exception as e:
            logger.warning("Signature conflict resolution failed: %s", e)
            return ConflictResolution(False, "none", "Signature conflict resolution failed", error=str(e))

    def detect_signature_mismatch(self, text: str) -> bool:
        return any(p.search(text or "") for p in SIGNATURE_MISMATCH_PATTERNS)

    def _install(self, apk_path: Path):
        result = self.runner.run(Command(("adb", "install", "-r", str(apk_path))))
        # Older adb versions exit 0 and print "Failure [...]"
        ok = result.ok and "Failure" not in result.output
        return ok, result.output

    def install_with_signature_handling(self, apk_path: Path) -> InstallResult:
        """
        Install an APK, uninstalling and retrying once on a signature mismatch.
        """
        print_step(f"Installing {Path(apk_path).name}...")
        ok, output = self._install(apk_path)
        if ok:
            print_success("App installed")
            return InstallResult(True)

        if not self.detect_signature_mismatch(output):
            return InstallResult(False, error=output)

        print_info("Signature mismatch detected, reinstalling")
        self.uninstall_app()
        ok, output = self._install(apk_path)
        if ok:
            print_success("App installed after removing conflicting version")
            return InstallResult(True, retried=True)
        return InstallResult(False, error=output, retried=True)

    def generate_signature_report(self) -> SignatureReport:
        installed = self.is_app_installed()
        return SignatureReport(
            keystore_exists=self.keystore_path.exists(),
            app_installed=installed,
            debug_signature=self.get_debug_signature(),
            installed_signature=self.get_installed_signature() if installed else None,
            configuration_valid=self.validate_keystore_configuration(),
        )
