"""Declarative policy engine (rules as data, predicates as code)."""

from .engine import Evaluator
from .load import load_builtin_ruleset, load_ruleset, load_rulesets, parse_ruleset
from .registry import RegistryBuilder, RuleRegistry
from .report import render, render_report, summarize

__all__ = [
    "Evaluator",
    "RegistryBuilder",
    "RuleRegistry",
    "load_builtin_ruleset",
    "load_ruleset",
    "load_rulesets",
    "parse_ruleset",
    "render",
    "render_report",
    "summarize",
]
