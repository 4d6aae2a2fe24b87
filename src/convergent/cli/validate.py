"""
CLI command for validating a plan without touching the host.
"""

from __future__ import annotations

import json
from typing import List, Optional

from convergent.cli.apply import load_run_plan
from convergent.cli.ux import console, error, print_table, success
from convergent.core.errors import ConvergentError, format_error_message, main_with_error_handling


@main_with_error_handling()
def validate_command(
    plan_file: Optional[str],
    vars_file: Optional[str] = None,
    var_overrides: Optional[List[str]] = None,
    output_format: str = "text",
) -> int:
    """
    Load a plan, check its references and print the order it would run in.

    Returns:
        Exit code (0 valid, 10 unreadable plan, 12 rejected plan)
    """
    try:
        loaded, plan = load_run_plan(plan_file, vars_file, var_overrides)
    except ConvergentError as e:
        if output_format != "json":
            error(format_error_message(e))
        raise

    if output_format == "json":
        output = {
            "plan": str(loaded.path),
            "order": [str(ref) for ref in plan.refs],
            "variables": sorted(loaded.variables),
            "valid": True,
        }
        print(json.dumps(output, indent=2))
        return 0

    rows = []
    for position, decl in enumerate(plan):
        requires = ", ".join(str(r) for r in decl.requires) or "-"
        notifies = ", ".join(str(n) for n in decl.notifies) or "-"
        rows.append([str(position), str(decl.ref), requires, notifies])

    console.print()
    print_table(str(loaded.path), ["#", "Resource", "Requires", "Notifies"], rows)
    success(f"Plan is valid ({len(plan)} resources)")
    return 0
