"""Rule inspection commands: list, explain, validate."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import KubegateConfig
from ..errors import ConfigurationError
from ..rules.load import load_ruleset, load_rulesets
from ..rules.registry import RuleRegistry
from ..rules.schema import RuleDescriptor


def build_registry(config: KubegateConfig) -> RuleRegistry:
    """Load the configured rulesets into a registry.

    Raises:
        ConfigurationError: If any ruleset fails to load
    """
    rulesets = load_rulesets(config.rulesets, builtin=config.builtin)
    return RuleRegistry.from_rulesets(rulesets, disabled=config.disabled_rules)


def _rule_to_dict(rule: RuleDescriptor) -> dict:
    return {
        "id": rule.id,
        "kinds": sorted(rule.kinds),
        "default": rule.default_verdict,
        "severity": rule.severity,
        "title": rule.title,
        "description": rule.description,
        "tags": list(rule.tags),
        "ruleset": rule.source,
        "predicate": str(rule.predicate),
        "current": str(rule.current_template),
        "expected": str(rule.expected_template),
    }


def run_rules_list(registry: RuleRegistry, *, kind: str | None = None, output_json: bool = False) -> int:
    rules = list(registry.lookup(kind)) if kind else list(registry)

    if output_json:
        print(json.dumps([_rule_to_dict(r) for r in rules], indent=2))
        return 0

    console = Console()
    if not rules:
        console.print(f"No rules apply to kind {kind}" if kind else "No rules loaded", style="yellow")
        return 0

    table = Table(title=f"Rules for {kind}" if kind else "Rules")
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("kinds")
    table.add_column("default")
    table.add_column("severity")
    table.add_column("title")

    for r in rules:
        table.add_row(escape(r.id), escape(", ".join(sorted(r.kinds))), r.default_verdict, r.severity, escape(r.title or ""))

    console.print(table)
    return 0


def run_rules_explain(registry: RuleRegistry, rule_id: str) -> int:
    """Explain a single rule.

    Returns:
        Exit code (0 = success, 1 = rule not found)
    """
    console = Console()
    rule = registry.get(rule_id.strip())
    if rule is None:
        console.print(f"Unknown rule: {rule_id}", style="bold red", markup=False)
        console.print()
        console.print("Known rules:", style="bold")
        for r in sorted(registry, key=lambda r: r.id):
            console.print(f"  - {r.id}", markup=False)
        return 1

    console.print(f"[bold cyan]{escape(rule.id)}[/] {escape(rule.title or '')}")
    if rule.description:
        console.print(rule.description, markup=False)
    console.print()
    console.print(f"Ruleset:  {rule.source or 'unknown'}", markup=False)
    console.print(f"Kinds:    {', '.join(sorted(rule.kinds))}", markup=False)
    console.print(f"Severity: {rule.severity}")
    if rule.default_verdict == "fail":
        console.print("Polarity: fails unless the predicate proves compliance")
    else:
        console.print("Polarity: passes unless the predicate detects a violation")
    console.print(f"Predicate: {rule.predicate}", markup=False)
    console.print(f"Current:  {rule.current_template}", markup=False)
    console.print(f"Expected: {rule.expected_template}", markup=False)
    if rule.tags:
        console.print(f"Tags:     {', '.join(rule.tags)}", markup=False)
    return 0


def run_rules_validate(paths: list[Path]) -> int:
    """Load each ruleset file and report whether it is well formed.

    Returns:
        Exit code (0 = all valid, 1 = at least one invalid)
    """
    console = Console()
    failures = 0
    for path in paths:
        try:
            ruleset = load_ruleset(path)
        except ConfigurationError as exc:
            failures += 1
            console.print(f"✗ {exc}", style="bold red", markup=False)
            continue
        console.print(
            f"✓ {path}: {ruleset.ruleset_id} v{ruleset.version} ({len(ruleset.rules)} rules)",
            style="green",
            markup=False,
        )
    return 1 if failures else 0
