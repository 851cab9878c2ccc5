"""Exception hierarchy for buildkeeper."""

from typing import Optional


class BuildKeeperError(Exception):
    """Base error for all buildkeeper failures."""


class CommandError(BuildKeeperError):
    """An external tool exited non-zero (or could not be started)."""

    def __init__(self, command: str, returncode: Optional[int], output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        detail = output.strip() or f"exit status {returncode}"
        super().__init__(f"Command failed: {command}\n{detail}")


class EnvironmentValidationError(BuildKeeperError):
    """Environment checks reported at least one error."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Environment validation failed: {', '.join(self.errors)}")


class BuildFailedError(BuildKeeperError):
    """A build is still failing after the single automated retry."""

    def __init__(self, platform: str, environment: str, error: str):
        self.platform = platform
        self.environment = environment
        self.error = error
        super().__init__(f"Build failed: {error}")


class KeystoreError(BuildKeeperError):
    """The debug signing keystore could not be generated or read."""


class UnknownTargetError(BuildKeeperError, ValueError):
    """Unknown platform or environment name."""
