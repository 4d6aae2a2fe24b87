"""
Plan and variables file loading.

Plan search order:
1. Explicit path (--plan flag)
2. ./convergent.yaml
3. ./.convergent/plan.yaml

Variables are resolved once, before declarations are built:
plan `variables`, then a --vars file, then --var KEY=VALUE overrides.
Template declarations receive the merged mapping, so nothing reads
global state while the run is in progress.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog
import yaml

from convergent.backends.service import ACTION_TARGETS, DECLARABLE_ACTIONS
from convergent.core.errors import ConfigurationError, ValidationError
from convergent.resources.models import (
    Notification,
    ResourceDeclaration,
    ResourceKind,
    ResourceRef,
)

logger = structlog.get_logger()

SCALAR_TYPES = (str, int, float, bool, type(None))

COMMON_KEYS = {"kind", "requires", "notifies"}
ALLOWED_KEYS = {
    ResourceKind.FILE.value: {"path", "content", "source", "owner", "group", "mode", "backup"},
    ResourceKind.TEMPLATE.value: {
        "path",
        "content",
        "source",
        "owner",
        "group",
        "mode",
        "backup",
        "variables",
    },
    ResourceKind.SERVICE.value: {"name", "actions", "supports"},
}
IDENTITY_KEYS = {
    ResourceKind.FILE.value: "path",
    ResourceKind.TEMPLATE.value: "path",
    ResourceKind.SERVICE.value: "name",
}


@dataclass
class LoadedPlan:
    """Declarations read from a plan file, with resolved variables."""

    path: Path
    declarations: list[ResourceDeclaration] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)

    @property
    def base_dir(self) -> Path:
        return self.path.parent


def find_plan_file(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the plan file to use.

    Returns:
        Path to plan file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        return path if path.exists() else None

    for candidate in (Path.cwd() / "convergent.yaml", Path.cwd() / ".convergent" / "plan.yaml"):
        if candidate.exists():
            return candidate
    return None


def read_structured_file(path: Path) -> Any:
    """Read a YAML or JSON file (chosen by suffix)."""
    try:
        with open(path) as f:
            if path.suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e.strerror or e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e


def load_variables(path: str | Path) -> dict[str, Any]:
    """Load a flat mapping of template variables."""
    data = read_structured_file(Path(path)) or {}
    return _check_variables(data, source=str(path))


def parse_var_overrides(items: Iterable[str] | None) -> dict[str, Any]:
    """Parse KEY=VALUE overrides; values are read as YAML scalars."""
    overrides: dict[str, Any] = {}
    for item in items or []:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid variable override '{item}', expected KEY=VALUE")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        if not isinstance(value, SCALAR_TYPES):
            value = raw
        overrides[key.strip()] = value
    return overrides


def load_plan(
    path: str | Path,
    variables: Mapping[str, Any] | None = None,
) -> LoadedPlan:
    """Read a plan file and build its declarations."""
    plan_path = Path(path)
    data = read_structured_file(plan_path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{plan_path} must contain a mapping with a 'resources' list")

    resolved = _check_variables(data.get("variables") or {}, source=f"{plan_path}:variables")
    resolved.update(variables or {})

    declarations = parse_declarations(data.get("resources") or [], resolved)
    logger.debug("plan_loaded", plan=str(plan_path), resources=len(declarations))
    return LoadedPlan(path=plan_path, declarations=declarations, variables=resolved)


def parse_declarations(
    resources: Any,
    variables: Mapping[str, Any] | None = None,
) -> list[ResourceDeclaration]:
    """Build declarations from the `resources` list of a plan."""
    if not isinstance(resources, list):
        raise ValidationError("'resources' must be a list")
    return [
        parse_declaration(entry, index, variables or {}) for index, entry in enumerate(resources)
    ]


def parse_declaration(
    entry: Any,
    index: int,
    variables: Mapping[str, Any],
) -> ResourceDeclaration:
    """Validate one plan entry and normalise its attributes."""
    where = f"resources[{index}]"
    if not isinstance(entry, dict):
        raise ValidationError(f"{where} must be a mapping")

    kind = entry.get("kind")
    if kind not in IDENTITY_KEYS:
        raise ValidationError(
            f"{where}: unknown kind '{kind}'",
            details={"choices": ", ".join(k.value for k in ResourceKind)},
        )

    unknown = set(entry) - COMMON_KEYS - ALLOWED_KEYS[kind]
    if unknown:
        raise ValidationError(f"{where}: unknown attributes {', '.join(sorted(unknown))}")

    identity = entry.get(IDENTITY_KEYS[kind])
    if not isinstance(identity, str) or not identity.strip():
        raise ValidationError(f"{where}: '{IDENTITY_KEYS[kind]}' is required")
    identity = identity.strip()
    where = f"{where} ({kind}:{identity})"

    attributes = {k: v for k, v in entry.items() if k not in COMMON_KEYS}
    if kind == ResourceKind.SERVICE.value:
        _normalise_service(attributes, where)
    else:
        _normalise_file(kind, identity, attributes, variables, where)

    return ResourceDeclaration(
        kind=kind,
        identity=identity,
        attributes=attributes,
        requires=tuple(_parse_requires(entry.get("requires"), where)),
        notifies=tuple(_parse_notifies(entry.get("notifies"), where)),
        index=index,
    )


def parse_mode(value: Any) -> int:
    """Parse a file mode given as int (0o644) or octal string ("0644")."""
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, int):
        mode = value
    else:
        text = str(value).strip().lower().removeprefix("0o")
        mode = int(text, 8)
    if not 0 <= mode <= 0o7777:
        raise ValueError(value)
    return mode


def _normalise_file(
    kind: str,
    identity: str,
    attributes: dict[str, Any],
    variables: Mapping[str, Any],
    where: str,
) -> None:
    if not Path(identity).is_absolute():
        raise ValidationError(f"{where}: path must be absolute")
    if attributes.get("content") is not None and attributes.get("source") is not None:
        raise ValidationError(f"{where}: 'content' and 'source' are mutually exclusive")
    if kind == ResourceKind.TEMPLATE.value and attributes.get("content") is None:
        if not attributes.get("source"):
            raise ValidationError(f"{where}: templates need a 'source' or 'content'")

    if attributes.get("mode") is not None:
        try:
            attributes["mode"] = parse_mode(attributes["mode"])
        except ValueError:
            raise ValidationError(f"{where}: invalid mode {attributes['mode']!r}") from None

    for key in ("owner", "group"):
        if attributes.get(key) is not None:
            attributes[key] = str(attributes[key])

    if "backup" in attributes:
        backup = attributes["backup"]
        if backup is True:
            del attributes["backup"]
        elif backup is False or backup is None:
            attributes["backup"] = 0
        elif isinstance(backup, int) and backup >= 0:
            attributes["backup"] = backup
        else:
            raise ValidationError(f"{where}: 'backup' must be a non-negative integer")

    if kind == ResourceKind.TEMPLATE.value:
        merged = dict(variables)
        merged.update(_check_variables(attributes.get("variables") or {}, source=where))
        attributes["variables"] = merged


def _normalise_service(attributes: dict[str, Any], where: str) -> None:
    actions = attributes.get("actions") or ["nothing"]
    if isinstance(actions, str):
        actions = [actions]
    if not isinstance(actions, list):
        raise ValidationError(f"{where}: 'actions' must be a list")
    for action in actions:
        if action == "restart":
            raise ValidationError(
                f"{where}: 'restart' cannot be declared; notify the service to restart it"
            )
        if action not in DECLARABLE_ACTIONS:
            raise ValidationError(
                f"{where}: unknown action '{action}'",
                details={"choices": ", ".join(sorted(DECLARABLE_ACTIONS))},
            )
    attributes["actions"] = tuple(actions)

    wanted: dict[str, bool] = {}
    for action in actions:
        if action in ACTION_TARGETS:
            attribute, desired = ACTION_TARGETS[action]
            if wanted.setdefault(attribute, desired) != desired:
                raise ValidationError(f"{where}: conflicting actions for '{attribute}'")

    supports = attributes.get("supports") or {}
    if not isinstance(supports, dict):
        raise ValidationError(f"{where}: 'supports' must be a mapping")
    attributes["supports"] = dict(supports)


def _parse_requires(value: Any, where: str) -> list[ResourceRef]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError(f"{where}: 'requires' must be a list of kind:identity references")
    return [ResourceRef.parse(item) for item in value]


def _parse_notifies(value: Any, where: str) -> list[Notification]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError(f"{where}: 'notifies' must be a list")

    notifications = []
    for item in value:
        if isinstance(item, str):
            notifications.append(Notification(target=ResourceRef.parse(item)))
        elif isinstance(item, dict) and item.get("target"):
            notifications.append(
                Notification(
                    target=ResourceRef.parse(item["target"]),
                    action=str(item.get("action", "restart")),
                )
            )
        else:
            raise ValidationError(f"{where}: notifications need a 'target'")
    return notifications


def _check_variables(data: Any, source: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: variables must be a mapping")
    for key, value in data.items():
        if not isinstance(value, SCALAR_TYPES):
            raise ConfigurationError(
                f"{source}: variable '{key}' must be a scalar, got {type(value).__name__}"
            )
    return {str(k): v for k, v in data.items()}
