"""
CLI command for converging a plan (apply) and previewing it (dry-run).
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from convergent.backends import ServiceManager, default_registry
from convergent.cli.ux import console, error, header, info, success, warning
from convergent.config.loader import (
    LoadedPlan,
    find_plan_file,
    load_plan,
    load_variables,
    parse_var_overrides,
)
from convergent.config.settings import Settings, get_settings
from convergent.core.errors import (
    ConfigurationError,
    ConvergentError,
    ExitCode,
    format_error_message,
    main_with_error_handling,
)
from convergent.engine import ConvergenceEngine
from convergent.graph import ResourceGraph
from convergent.logging import bind_context
from convergent.resources.models import ConvergenceResult, ResourceOutcome, RunPlan

OUTCOME_STYLE = {
    ResourceOutcome.UNCHANGED: ("muted", "="),
    ResourceOutcome.CREATED: ("success", "+"),
    ResourceOutcome.UPDATED: ("warning", "~"),
    ResourceOutcome.FAILED: ("error", "✗"),
}


def load_run_plan(
    plan_file: Optional[str],
    vars_file: Optional[str] = None,
    var_overrides: Optional[List[str]] = None,
) -> tuple[LoadedPlan, RunPlan]:
    """Resolve variables, read the plan and order it."""
    path = find_plan_file(plan_file)
    if path is None:
        raise ConfigurationError(
            f"Plan file not found: {plan_file}" if plan_file else "No plan file found",
            details={"searched": plan_file or "convergent.yaml, .convergent/plan.yaml"},
        )

    variables = load_variables(vars_file) if vars_file else {}
    variables.update(parse_var_overrides(var_overrides))

    loaded = load_plan(path, variables=variables)
    return loaded, ResourceGraph().load(loaded.declarations)


def print_result_summary(
    result: ConvergenceResult, plan_path: Path, verbose: bool = False
) -> None:
    """Print per-resource outcomes and the run summary."""
    header(f"{'Plan' if result.dry_run else 'Apply'}: {plan_path}")
    console.print()

    for report in result.reports:
        style, symbol = OUTCOME_STYLE[report.outcome]
        label = report.outcome.value
        if result.dry_run and report.outcome in (ResourceOutcome.CREATED, ResourceOutcome.UPDATED):
            label = f"would be {label}"
        console.print(f"  [{style}]{symbol} {escape(str(report.ref)):<48}[/{style}] {label}")
        if verbose or result.dry_run:
            for change in report.changes:
                console.print(f"     [muted]└[/muted] {escape(str(change))}")
        if report.error:
            console.print(f"     [error]└ {escape(report.error)}[/error]")

    notifications = result.pending_notifications if result.dry_run else result.notifications
    if notifications:
        console.print()
        verb = "Would notify" if result.dry_run else "Notified"
        console.print(f"[bold]{verb}:[/bold]")
        for notification in notifications:
            console.print(f"  [info]↻[/info] {escape(str(notification))}")

    console.print()
    counts = ", ".join(f"{n} {outcome}" for outcome, n in result.counts().items() if n)
    duration = f" in {result.duration_seconds:.1f}s" if result.duration_seconds > 0 else ""
    summary = f"{len(result.reports)} resources: {counts or 'none'}{duration}"

    if result.success:
        success(summary)
    else:
        warning(summary)
        if result.failed_index is not None:
            failed = result.reports[result.failed_index]
            error(f"Failed at resource #{result.failed_index} ({failed.ref})")
        for err in result.errors:
            console.print(f"  [muted]•[/muted] {escape(err)}")
    if result.dry_run:
        info("Dry run: nothing was changed")
    console.print()


def print_result_json(result: ConvergenceResult, plan_path: Path) -> None:
    """Print run result in JSON format."""
    output = {
        "plan": str(plan_path),
        "dry_run": result.dry_run,
        "resources": [
            {
                "resource": str(report.ref),
                "outcome": report.outcome.value,
                "changes": [
                    {"attribute": c.attribute, "current": c.current, "desired": c.desired}
                    for c in report.changes
                ],
                "error": report.error,
            }
            for report in result.reports
        ],
        "notifications": [
            {"target": str(n.target), "action": n.action}
            for n in (result.pending_notifications if result.dry_run else result.notifications)
        ],
        "counts": result.counts(),
        "failed_index": result.failed_index,
        "errors": result.errors,
        "duration_seconds": result.duration_seconds,
        "success": result.success,
    }
    print(json.dumps(output, indent=2, default=str))


@main_with_error_handling()
def apply_command(
    plan_file: Optional[str],
    dry_run: bool = False,
    vars_file: Optional[str] = None,
    var_overrides: Optional[List[str]] = None,
    output_format: str = "text",
    verbose: bool = False,
    settings: Optional[Settings] = None,
    service_manager: Optional[ServiceManager] = None,
) -> int:
    """
    Converge the host towards a plan.

    Args:
        plan_file: Path to the plan file (YAML or JSON)
        dry_run: Compute and report diffs without applying
        vars_file: Template variables file
        var_overrides: KEY=VALUE template variable overrides
        output_format: Output format (text, json)
        verbose: Show attribute changes for every resource
        settings: Settings to use instead of the environment
        service_manager: Service manager to use instead of the configured one

    Returns:
        Exit code (0 success, 1 apply failed, 10 bad input, 12 rejected plan)
    """
    settings = settings or get_settings()
    try:
        loaded, plan = load_run_plan(plan_file, vars_file, var_overrides)
    except ConvergentError as e:
        if output_format != "json":
            error(format_error_message(e))
        raise

    log = bind_context(run_id=uuid.uuid4().hex[:12], plan=str(loaded.path))
    log.info("run_started", resources=len(plan), dry_run=dry_run)

    registry = default_registry(settings, base_dir=loaded.base_dir, service_manager=service_manager)
    result = ConvergenceEngine(registry).apply(plan, dry_run=dry_run)

    log.info(
        "run_finished",
        success=result.success,
        failed_index=result.failed_index,
        duration_seconds=round(result.duration_seconds, 3),
        **result.counts(),
    )

    if output_format == "json":
        print_result_json(result, loaded.path)
    else:
        print_result_summary(result, loaded.path, verbose=verbose)

    return ExitCode.SUCCESS if result.success else ExitCode.APPLY_FAILED


def plan_command(
    plan_file: Optional[str],
    vars_file: Optional[str] = None,
    var_overrides: Optional[List[str]] = None,
    output_format: str = "text",
    settings: Optional[Settings] = None,
    service_manager: Optional[ServiceManager] = None,
) -> int:
    """Preview changes without applying them (same as apply --dry-run)."""
    return apply_command(
        plan_file,
        dry_run=True,
        vars_file=vars_file,
        var_overrides=var_overrides,
        output_format=output_format,
        settings=settings,
        service_manager=service_manager,
    )
