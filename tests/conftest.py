"""
Shared fixtures: a temporary mobile project, its config and state store,
a controllable clock, and a scripted command runner that never starts a
real process.
"""

import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from buildkeeper.config import BuildKeeperConfig
from buildkeeper.errors import CommandError
from buildkeeper.shell import Command, CommandResult
from buildkeeper.storage import JsonStateStore


class FakeRunner:
    """
    Stand-in for CommandRunner.

    Responses are matched on an argv prefix. Later rules win, and a rule
    registered with ``times`` stops matching once used up. Anything
    unmatched succeeds with empty output.
    """

    def __init__(self, project_dir=None):
        self.project_dir = project_dir
        self.calls = []
        self.timeouts = []
        self._rules = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", times=None, timed_out=False):
        self._rules.append({
            "prefix": tuple(prefix),
            "returncode": returncode,
            "stdout": stdout,
            "stderr": stderr,
            "times": times,
            "timed_out": timed_out,
        })
        return self

    def run(self, command: Command, *, timeout=None, check=False) -> CommandResult:
        self.calls.append(command)
        self.timeouts.append(timeout)

        result = CommandResult(command=str(command), returncode=0)
        for rule in reversed(self._rules):
            prefix = rule["prefix"]
            if tuple(command.args[:len(prefix)]) != prefix or rule["times"] == 0:
                continue
            if rule["times"] is not None:
                rule["times"] -= 1
            result = CommandResult(
                command=str(command),
                returncode=None if rule["timed_out"] else rule["returncode"],
                stdout=rule["stdout"],
                stderr=rule["stderr"],
                timed_out=rule["timed_out"],
            )
            break

        if check and not result.ok:
            raise CommandError(result.command, result.returncode, result.output)
        return result

    def ran(self, *args) -> bool:
        """True if some call contained ``args`` as a contiguous run."""
        n = len(args)
        for command in self.calls:
            for i in range(len(command.args) - n + 1):
                if tuple(command.args[i:i + n]) == args:
                    return True
        return False

    def count(self, *args) -> int:
        n = len(args)
        return sum(
            1 for command in self.calls
            if any(tuple(command.args[i:i + n]) == args for i in range(len(command.args) - n + 1))
        )


class Clock:
    """Injectable ``now`` that tests can move forward."""

    def __init__(self, start=None):
        self.current = start or datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def project_dir():
    """A minimal Expo project: package.json, node_modules, android/ and app.json."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "package.json").write_text(json.dumps({
            "name": "circlelink",
            "dependencies": {
                "expo": "~53.0.20",
                "react": "19.0.0",
                "react-native": "0.79.5",
            },
            "devDependencies": {"jest": "^29.7.0"},
        }))
        (root / "node_modules").mkdir()
        (root / "android" / "app").mkdir(parents=True)
        (root / "android" / "gradlew").write_text("#!/bin/sh\n")
        (root / "app.json").write_text(json.dumps({"expo": {"name": "CircleLink", "slug": "circlelink"}}, indent=2))
        yield root


@pytest.fixture
def config(project_dir):
    return BuildKeeperConfig.from_dict(project_dir, {})


@pytest.fixture
def runner(project_dir):
    return FakeRunner(project_dir)


@pytest.fixture
def store(config):
    return JsonStateStore(config.state_dir)


@pytest.fixture
def clock():
    return Clock()
