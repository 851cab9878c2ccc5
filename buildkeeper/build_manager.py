"""
Build Manager
=============

Wires the buildkeeper services together and runs the end-to-end
build-and-deploy flow:

    validate -> resolve signature conflicts -> build
             -> on failure, resolve the error and retry once
             -> record the outcome

Usage:
    from buildkeeper.build_manager import BuildManager
    from buildkeeper.config import BuildKeeperConfig

    manager = BuildManager.from_config(BuildKeeperConfig.load())
    result = manager.build_and_deploy("android", "development")
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from buildkeeper.config import BuildKeeperConfig
from buildkeeper.environment_validator import EnvironmentValidator, ValidationResult
from buildkeeper.error_resolver import ErrorResolver, ResolutionOutcome
from buildkeeper.errors import BuildFailedError, EnvironmentValidationError
from buildkeeper.health_monitor import BuildHealthMonitor
from buildkeeper.output import print_header, print_info, print_warning
from buildkeeper.schemas import HealthReport
from buildkeeper.shell import CommandRunner, StepReport
from buildkeeper.signature_manager import ConflictResolution, SignatureManager
from buildkeeper.storage import JsonStateStore
from buildkeeper.workflow_automation import BuildResult, WorkflowAutomation, validate_target

logger = logging.getLogger(__name__)


class BuildManager:
    """Facade over the validator, signature manager, resolver, workflows and monitor."""

    def __init__(
        self,
        config: BuildKeeperConfig,
        validator: EnvironmentValidator,
        signature_manager: SignatureManager,
        error_resolver: ErrorResolver,
        workflow: WorkflowAutomation,
        health_monitor: BuildHealthMonitor,
    ):
        self.config = config
        self.validator = validator
        self.signature_manager = signature_manager
        self.error_resolver = error_resolver
        self.workflow = workflow
        self.health_monitor = health_monitor

    @classmethod
    def from_config(
        cls,
        config: BuildKeeperConfig,
        runner: Optional[CommandRunner] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> "BuildManager":
        """Construct every service for one project from its configuration."""
        runner = runner or CommandRunner(config.project_dir)
        store = JsonStateStore(config.state_dir)
        signature_manager = SignatureManager(config, runner)

        return cls(
            config=config,
            validator=EnvironmentValidator(config.project_dir, runner),
            signature_manager=signature_manager,
            error_resolver=ErrorResolver(config, runner, store, now=now),
            workflow=WorkflowAutomation(config, runner, signature_manager),
            health_monitor=BuildHealthMonitor(store, now=now),
        )

    def validate_environment(self) -> ValidationResult:
        print_header("Validating build environment")
        return self.validator.validate_all()

    def fix_signature_issues(self) -> ConflictResolution:
        print_header("Resolving signature conflicts")
        return self.signature_manager.resolve_conflicts()

    def clean_build(self) -> StepReport:
        print_header("Performing clean build")
        return self.workflow.clean_build()

    def switch_environment(self, environment: str) -> StepReport:
        return self.workflow.switch_environment(environment)

    def resolve_error(self, error_text: str) -> ResolutionOutcome:
        return self.error_resolver.resolve_error(error_text)

    def generate_report(self) -> HealthReport:
        print_header("Generating build health report")
        return self.health_monitor.generate_report()

    def build_and_deploy(self, platform: str = "android", environment: str = "development") -> BuildResult:
        """
        Validate, build and record one build, retrying once after a
        successful automated resolution.

        Every failure that escapes is recorded as a failed build first.

        Raises:
            UnknownTargetError: for an unknown platform or environment (not recorded)
            EnvironmentValidationError: if validation reports errors
            BuildFailedError: if the build still fails
        """
        validate_target(platform, environment)
        print_header(f"Building and deploying {platform} ({environment})")

        build_time = None
        try:
            validation = self.validate_environment()
            if not validation.success:
                raise EnvironmentValidationError(validation.errors)

            if platform == "android":
                self.fix_signature_issues()

            result = self.workflow.build(platform, environment)
            build_time = result.build_time

            if not result.success:
                outcome = self.error_resolver.resolve_error(result.error or "")
                if not outcome.success:
                    raise BuildFailedError(platform, environment, result.error or "unknown error")

                print_info("Retrying build after automated resolution")
                result = self.workflow.build(platform, environment)
                build_time = result.build_time
                if not result.success:
                    raise BuildFailedError(platform, environment, result.error or "unknown error")

        except Exception as e:
            logger.debug("Build and deploy failed", exc_info=True)
            error = e.error if isinstance(e, BuildFailedError) else str(e)
            self.health_monitor.record_build_failure(platform, environment, error, build_time)
            raise

        self.health_monitor.record_build_success(
            platform, environment,
            build_time=result.build_time,
            artifact_size=result.artifact_size,
        )
        if result.artifact_path is None:
            print_warning("Build succeeded but no artifact was found")
        return result
