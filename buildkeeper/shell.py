"""
Command Execution
=================

Blocking subprocess invocation for the external tools buildkeeper drives
(gradle, adb, keytool, npm, xcodebuild) plus step reports for best-effort
sequences.

Usage:
    from buildkeeper.shell import Command, CommandRunner

    runner = CommandRunner(project_dir)
    result = runner.run(Command(("adb", "devices")))
    if result.ok:
        print(result.stdout)
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from buildkeeper.errors import CommandError
from buildkeeper.output import print_step, print_warning, print_verbose


# Conventional shell exit status for "command not found"
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class Command:
    """
    An argv-style command, optionally run from a project subdirectory.

    Arguments may contain ``{placeholders}`` that are filled by ``format``.
    """
    args: tuple
    cwd: Optional[str] = None

    def __str__(self) -> str:
        line = " ".join(self.args)
        if self.cwd:
            return f"cd {self.cwd} && {line}"
        return line

    def format(self, **context) -> "Command":
        """Substitute ``{name}`` placeholders in every argument."""
        return Command(tuple(arg.format(**context) for arg in self.args), self.cwd)


@dataclass
class CommandResult:
    """Outcome of a single external command."""
    command: str
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, the text that pattern matching sees."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


class CommandRunner:
    """
    Runs commands relative to the project directory.

    Every call blocks until the process exits. Only callers that pass
    ``timeout`` get a bounded wait.
    """

    def __init__(self, project_dir: Path):
        self.project_dir = Path(project_dir)

    def run(
        self,
        command: Command,
        *,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            command: The command to run
            timeout: Seconds to wait before giving up, None waits forever
            check: Raise CommandError when the command does not succeed

        Returns:
            CommandResult with exit status and captured text
        """
        cwd = self.project_dir / command.cwd if command.cwd else self.project_dir
        print_verbose(f"$ {command}")

        try:
            completed = subprocess.run(
                list(command.args),
                cwd=cwd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
            result = CommandResult(
                command=str(command),
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
        except FileNotFoundError as e:
            result = CommandResult(
                command=str(command),
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{command.args[0]}: command not found ({e})",
            )
        except subprocess.TimeoutExpired:
            result = CommandResult(
                command=str(command),
                returncode=None,
                stderr=f"timed out after {timeout}s",
                timed_out=True,
            )

        if check and not result.ok:
            raise CommandError(result.command, result.returncode, result.output)
        return result


# =============================================================================
# Step Reports
# =============================================================================

@dataclass
class StepResult:
    """Outcome of one step in a best-effort sequence."""
    name: str
    ok: bool
    reason: str = ""
    command: Optional[str] = None


@dataclass
class StepReport:
    """Aggregated outcome of a best-effort sequence."""
    steps: list = field(default_factory=list)

    def add(self, step: StepResult) -> StepResult:
        self.steps.append(step)
        return step

    @property
    def succeeded(self) -> bool:
        """True when every step succeeded (vacuously true when empty)."""
        return all(step.ok for step in self.steps)

    @property
    def failures(self) -> list:
        return [step for step in self.steps if not step.ok]

    def extend(self, other: "StepReport") -> None:
        self.steps.extend(other.steps)


StepAction = Union[Command, Callable[[], None]]


def run_steps(
    runner: CommandRunner,
    steps: Sequence[tuple],
    *,
    timeout: Optional[float] = None,
) -> StepReport:
    """
    Run ``(name, action)`` steps in order, continuing past failures.

    An action is either a Command, run through ``runner``, or a callable that
    signals failure by raising. Failures are logged and recorded, never raised.
    """
    report = StepReport()

    for name, action in steps:
        print_step(f"{name}...")
        if isinstance(action, Command):
            result = runner.run(action, timeout=timeout)
            if result.ok:
                report.add(StepResult(name, True, command=result.command))
            else:
                reason = result.output.splitlines()[-1] if result.output else f"exit status {result.returncode}"
                print_warning(f"{name} failed: {reason}")
                report.add(StepResult(name, False, reason, command=result.command))
        else:
            try:
                action()
                report.add(StepResult(name, True))
            except Exception as e:
                print_warning(f"{name} failed: {e}")
                report.add(StepResult(name, False, str(e)))

    return report
