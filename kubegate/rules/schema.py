from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from .messages import MessageTemplate, compile_template
from .predicates import Predicate


Result = Literal["pass", "fail", "skip"]
DefaultVerdict = Literal["pass", "fail"]
Severity = Literal["low", "medium", "high", "critical"]

SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class RuleDescriptor:
    """One policy rule.

    With default_verdict "fail" the predicate proves compliance; with "pass"
    the predicate detects a violation.
    """

    id: str
    kinds: frozenset[str]
    predicate: Predicate
    default_verdict: DefaultVerdict = "fail"
    current_template: MessageTemplate = field(default_factory=lambda: compile_template(""))
    expected_template: MessageTemplate = field(default_factory=lambda: compile_template(""))
    title: str | None = None
    description: str | None = None
    severity: Severity = "medium"
    tags: tuple[str, ...] = ()
    source: str | None = None


@dataclass(frozen=True)
class RulesetDef:
    ruleset_id: str
    version: int
    description: str | None = None
    rules: list[RuleDescriptor] = field(default_factory=list)
    paths: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Verdict:
    rule_id: str
    result: Result
    current_configuration: str = ""
    expected_configuration: str = ""
    severity: Severity | None = None
    kind: str | None = None
    name: str | None = None
