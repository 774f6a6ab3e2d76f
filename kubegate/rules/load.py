from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from importlib import resources
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

import yaml

from ..errors import ConfigurationError
from .messages import compile_template
from .predicates import BuildEnv, build_predicate
from .schema import SEVERITIES, RuleDescriptor, RulesetDef

logger = logging.getLogger(__name__)

BUILTIN_RULESET = "core.toml"

# Each field accepts its snake_case name and the camelCase name used by
# JSON policy stores.
_RULE_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "kinds": ("kinds", "applicableKinds"),
    "default": ("default", "defaultVerdict"),
    "predicate": ("predicate",),
    "current": ("current", "currentMessageTemplate"),
    "expected": ("expected", "expectedMessageTemplate"),
    "title": ("title",),
    "description": ("description",),
    "severity": ("severity",),
    "tags": ("tags",),
}
_KNOWN_RULE_KEYS = {name for names in _RULE_FIELDS.values() for name in names}


def _pick(raw: Mapping[str, Any], field: str) -> Any:
    for name in _RULE_FIELDS[field]:
        if name in raw:
            return raw[name]
    return None


def _optional_str(raw: Mapping[str, Any], field: str, err) -> str | None:
    value = _pick(raw, field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise err(f"{field} must be a string")
    return value


def _parse_document(text: str, fmt: str, source: str) -> Any:
    try:
        if fmt == "toml":
            return tomllib.loads(text)
        if fmt == "json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot parse {fmt.upper()}: {exc}", source=source) from exc


def _format_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".toml":
        return "toml"
    if suffix == ".json":
        return "json"
    if suffix in (".yaml", ".yml"):
        return "yaml"
    raise ConfigurationError(f"unsupported ruleset format {suffix!r} (use .toml, .yaml or .json)", source=str(path))


def _build_rule(raw: Any, index: int, *, source: str, ruleset_id: str, aliases: Mapping[str, str]) -> RuleDescriptor:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"rules[{index}] must be a table", source=source)

    rule_id = _pick(raw, "id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise ConfigurationError(f"rules[{index}] is missing a non-empty id", source=source)
    rule_id = rule_id.strip()

    def err(message: str) -> ConfigurationError:
        return ConfigurationError(message, source=source, rule_id=rule_id)

    unknown = sorted(set(raw) - _KNOWN_RULE_KEYS)
    if unknown:
        raise err(f"unknown keys: {', '.join(unknown)}")
    for field, names in _RULE_FIELDS.items():
        present = [name for name in names if name in raw]
        if len(present) > 1:
            raise err(f"{field} is set more than once ({', '.join(present)})")

    kinds = _pick(raw, "kinds")
    if isinstance(kinds, str):
        kinds = [kinds]
    if not isinstance(kinds, list) or not kinds or not all(isinstance(k, str) and k.strip() for k in kinds):
        raise err("kinds must be a non-empty list of resource kinds")

    default = _pick(raw, "default")
    if default is None:
        default = "fail"
    if default not in ("pass", "fail"):
        raise err(f"default must be 'pass' or 'fail', got {default!r}")

    severity = _pick(raw, "severity")
    if severity is None:
        severity = "medium"
    if severity not in SEVERITIES:
        raise err(f"severity must be one of {', '.join(SEVERITIES)}, got {severity!r}")

    tags = _pick(raw, "tags")
    if tags is None:
        tags = []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise err("tags must be a list of strings")

    pred_raw = _pick(raw, "predicate")
    if pred_raw is None:
        raise err("predicate is required")
    predicate = build_predicate(pred_raw, BuildEnv(aliases=aliases, source=source, rule_id=rule_id))

    current = _optional_str(raw, "current", err) or ""
    expected = _optional_str(raw, "expected", err) or ""

    return RuleDescriptor(
        id=rule_id,
        kinds=frozenset(k.strip() for k in kinds),
        predicate=predicate,
        default_verdict=default,
        current_template=compile_template(current, aliases, source=source, rule_id=rule_id),
        expected_template=compile_template(expected, aliases, source=source, rule_id=rule_id),
        title=_optional_str(raw, "title", err),
        description=_optional_str(raw, "description", err),
        severity=severity,
        tags=tuple(tags),
        source=ruleset_id,
    )


def parse_ruleset(data: Any, *, source: str = "<memory>") -> RulesetDef:
    """
    Build a ruleset from already-decoded data.

    A malformed rule is never skipped: any problem raises
    so that a policy gap cannot appear silently.

    Raises:
        ConfigurationError: If the ruleset or any rule is malformed
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError("ruleset must be a table", source=source)

    ruleset_id = str(data.get("ruleset_id", "")).strip()
    if not ruleset_id:
        raise ConfigurationError("ruleset_id is required", source=source)

    version = data.get("version", 0)
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ConfigurationError("version must be a positive integer", source=source)

    paths = data.get("paths") or {}
    if not isinstance(paths, Mapping) or not all(isinstance(k, str) and isinstance(v, str) for k, v in paths.items()):
        raise ConfigurationError("paths must be a table of alias = path strings", source=source)

    raw_rules = data.get("rules", [])
    if not isinstance(raw_rules, list):
        raise ConfigurationError("rules must be an array of tables", source=source)

    rules: list[RuleDescriptor] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_rules):
        rule = _build_rule(raw, index, source=source, ruleset_id=ruleset_id, aliases=paths)
        if rule.id in seen:
            raise ConfigurationError("duplicate rule id", source=source, rule_id=rule.id)
        seen.add(rule.id)
        rules.append(rule)

    description = data.get("description")
    logger.debug("loaded ruleset %s v%d (%d rules) from %s", ruleset_id, version, len(rules), source)
    return RulesetDef(
        ruleset_id=ruleset_id,
        version=version,
        description=description if isinstance(description, str) else None,
        rules=rules,
        paths=dict(paths),
    )


def load_ruleset(path: Path) -> RulesetDef:
    """
    Load a ruleset from a TOML, YAML or JSON file.

    The schema is intentionally small: rules are data, evaluation is code.
    """
    path = Path(path)
    fmt = _format_for(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read ruleset: {exc.strerror or exc}", source=str(path)) from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(f"ruleset is not valid UTF-8: {exc.reason} at byte {exc.start}", source=str(path)) from exc
    return parse_ruleset(_parse_document(text, fmt, str(path)), source=str(path))


def load_builtin_ruleset() -> RulesetDef:
    """Load the core ruleset shipped with the package."""
    ref = resources.files("kubegate").joinpath("rulesets").joinpath(BUILTIN_RULESET)
    text = ref.read_text(encoding="utf-8")
    return parse_ruleset(_parse_document(text, "toml", f"builtin:{BUILTIN_RULESET}"), source=f"builtin:{BUILTIN_RULESET}")


def load_rulesets(paths: Iterable[Path] = (), *, builtin: bool = True) -> list[RulesetDef]:
    """Load the built-in ruleset (optionally) followed by each file in `paths`."""
    rulesets: list[RulesetDef] = []
    if builtin:
        rulesets.append(load_builtin_ruleset())
    for path in paths:
        rulesets.append(load_ruleset(Path(path)))
    return rulesets
