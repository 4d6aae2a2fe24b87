"""Settings and plan loading."""

from convergent.config.loader import (
    LoadedPlan,
    find_plan_file,
    load_plan,
    load_variables,
    parse_declarations,
    parse_var_overrides,
)
from convergent.config.settings import Settings, get_settings

__all__ = [
    "LoadedPlan",
    "Settings",
    "find_plan_file",
    "get_settings",
    "load_plan",
    "load_variables",
    "parse_declarations",
    "parse_var_overrides",
]
