#!/usr/bin/env python3
"""
Build Manager CLI
=================

Command-line interface for validating, building and monitoring a
React Native / Expo project.

Usage:
    buildkeeper validate
    buildkeeper fix-signatures
    buildkeeper clean
    buildkeeper build [PLATFORM] [ENVIRONMENT]
    buildkeeper report [--json]
    buildkeeper switch-env ENVIRONMENT
    buildkeeper resolve ERROR_TEXT...
    buildkeeper signatures

Every command accepts --project-dir and --verbose. Exit status is 0 on
success and 1 on any failure, including a failed validation.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.markup import escape

from buildkeeper import __version__
from buildkeeper.build_manager import BuildManager
from buildkeeper.config import BuildKeeperConfig
from buildkeeper.environment_validator import print_validation_results
from buildkeeper.errors import BuildKeeperError
from buildkeeper.output import (
    console,
    create_table,
    print_error,
    print_header,
    print_key_value_table,
    print_list,
    print_muted,
    print_subheader,
    print_success,
    print_table,
    print_warning,
    set_verbose,
    setup_rich_logging,
    status_markup,
)
from buildkeeper.shell import StepReport


def get_manager(args) -> BuildManager:
    return BuildManager.from_config(BuildKeeperConfig.load(args.project_dir))


def print_step_report(report: StepReport, title: str) -> None:
    table = create_table(title=title, columns=["Step", "Status", "Details"])
    for step in report.steps:
        table.add_row(escape(step.name), status_markup("success" if step.ok else "warning"), escape(step.reason or ""))
    print_table(table)


def cmd_validate(args):
    """Validate the build environment."""
    manager = get_manager(args)
    result = manager.validate_environment()
    print_validation_results(result)
    return 0 if result.success else 1


def cmd_fix_signatures(args):
    """Resolve signature conflicts with the installed app."""
    manager = get_manager(args)
    resolution = manager.fix_signature_issues()

    if resolution.success:
        print_success(f"{resolution.message} (action: {resolution.action})")
        return 0
    print_error(f"{resolution.message}: {resolution.error}")
    return 1


def cmd_clean(args):
    """Run the full clean build sequence."""
    manager = get_manager(args)
    report = manager.clean_build()
    print_step_report(report, "Clean Build")
    return 0


def cmd_build(args):
    """Build and deploy one platform/environment."""
    manager = get_manager(args)
    try:
        result = manager.build_and_deploy(args.platform, args.environment)
    except BuildKeeperError as e:
        print_error(str(e))
        return 1

    print_key_value_table({
        "Platform": result.platform,
        "Environment": result.environment,
        "Build time": f"{result.build_time}s" if result.build_time is not None else None,
        "Artifact": result.artifact_path,
        "Artifact size": f"{result.artifact_size / 1024 / 1024:.1f} MB" if result.artifact_size else None,
        "Installed": result.install.success if result.install else None,
    }, title="Build Result")
    return 0


def cmd_report(args):
    """Generate and show the build health report."""
    manager = get_manager(args)
    report = manager.generate_report()

    if args.json:
        console.print_json(json.dumps(report.to_json_dict()))
        return 0

    summary = report.summary
    print_key_value_table({
        "Health score": f"{report.health_score:.1f}",
        "Total builds": summary.total_builds,
        "Successful": summary.successful_builds,
        "Failed": summary.failed_builds,
        "Success rate": summary.success_rate,
        "Builds (24h)": summary.builds_last_24_hours,
        "Last build": summary.last_build_time,
    }, title="Build Health")

    if report.performance:
        console.print()
        table = create_table(title="Performance", columns=["Target", "Builds", "Success", "Avg time", "Trend"])
        for key, perf in report.performance.items():
            table.add_row(key, str(perf.total_builds), perf.success_rate, perf.average_build_time, perf.trend)
        print_table(table)

    if report.errors:
        console.print()
        table = create_table(title="Errors", columns=["Category", "Count", "Last seen", "Frequency"])
        for category, info in report.errors.items():
            table.add_row(category, str(info.occurrences), info.last_seen or "-", info.frequency)
        print_table(table)

    if report.alerts.recent_alerts:
        console.print()
        print_subheader(f"Active alerts ({report.alerts.active})")
        for alert in report.alerts.recent_alerts:
            style = "bk.err" if alert.severity == "high" else "bk.warn"
            console.print(f"  [{style}]{alert.severity.upper()}[/] {escape(alert.message)} [bk.muted]{alert.id}[/]")

    if report.recommendations:
        console.print()
        print_subheader("Recommendations")
        print_list([f"({r.priority}) {r.message}" for r in report.recommendations])

    console.print()
    print_muted(f"Report written to {manager.config.state_dir / 'health-report.json'}")
    return 0


def cmd_switch_env(args):
    """Switch app.json and .env to another environment."""
    manager = get_manager(args)
    try:
        report = manager.switch_environment(args.environment)
    except BuildKeeperError as e:
        print_error(str(e))
        return 1
    print_step_report(report, f"Switch to {args.environment}")
    return 0


def cmd_resolve(args):
    """Resolve a build error by pattern."""
    manager = get_manager(args)
    outcome = manager.resolve_error(" ".join(args.error_text))

    if not outcome.matched:
        print_warning("No matching error pattern")
        if outcome.suggestions:
            print_subheader("Suggestions")
            print_list(outcome.suggestions)
        return 1

    print_key_value_table({
        "Pattern": outcome.pattern_id,
        "Category": outcome.category,
        "Severity": outcome.severity,
        "Description": outcome.description,
    }, title="Matched Pattern")

    if outcome.requires_manual_intervention:
        print_subheader("Manual steps")
        print_list(outcome.manual_steps, numbered=True)
        if outcome.suggested_commands:
            print_subheader("Suggested commands")
            print_list(outcome.suggested_commands)
        return 1

    if outcome.report.steps:
        print_step_report(outcome.report, "Resolution Steps")
    if outcome.success:
        print_success("Resolution applied")
        return 0
    print_error(f"Resolution failed: {outcome.error}")
    return 1


def cmd_signatures(args):
    """Show the signature report."""
    manager = get_manager(args)
    report = manager.signature_manager.generate_signature_report()

    match = report.signature_match
    print_key_value_table({
        "Keystore exists": report.keystore_exists,
        "App installed": report.app_installed,
        "Debug signature": report.debug_signature,
        "Installed signature": report.installed_signature,
        "Signatures match": "unknown" if match is None else match,
        "build.gradle signing config": report.configuration_valid,
    }, title="Signature Report")
    return 0 if match is not False else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildkeeper",
        description="Build automation and health monitoring for React Native / Expo projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Mobile project root containing package.json (default: current dir)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show commands and debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("validate", help="Validate build environment")
    subparsers.add_parser("fix-signatures", help="Resolve signature conflicts")
    subparsers.add_parser("clean", help="Perform clean build")

    build_parser_ = subparsers.add_parser("build", help="Build and deploy (default: android development)")
    build_parser_.add_argument("platform", nargs="?", default="android", help="android or ios")
    build_parser_.add_argument(
        "environment", nargs="?", default="development", help="development, staging or production",
    )

    report_parser = subparsers.add_parser("report", help="Generate build health report")
    report_parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")

    switch_parser = subparsers.add_parser("switch-env", help="Switch app configuration to another environment")
    switch_parser.add_argument("environment", help="development, staging or production")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a build error by pattern")
    resolve_parser.add_argument("error_text", nargs="+", help="Error output to match")

    subparsers.add_parser("signatures", help="Show debug and installed app signatures")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    set_verbose(args.verbose)
    setup_rich_logging(logging.DEBUG if args.verbose else logging.INFO)
    load_dotenv(args.project_dir / ".env")

    if not args.command:
        print_header(f"buildkeeper {__version__}")
        parser.print_help()
        return 1

    commands = {
        "validate": cmd_validate,
        "fix-signatures": cmd_fix_signatures,
        "clean": cmd_clean,
        "build": cmd_build,
        "report": cmd_report,
        "switch-env": cmd_switch_env,
        "resolve": cmd_resolve,
        "signatures": cmd_signatures,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
