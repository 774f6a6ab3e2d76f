"""Verdict rendering and per-manifest summaries. Pure formatting, no output."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .schema import Result, Verdict


@dataclass(frozen=True)
class Summary:
    result: Result
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    failing_rules: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result,
            "pass": self.passed,
            "fail": self.failed,
            "skip": self.skipped,
            "failingRules": list(self.failing_rules),
        }


def render(verdict: Verdict) -> dict[str, Any]:
    """Render a verdict in the result/currentConfiguration/expectedConfiguration shape."""
    out: dict[str, Any] = {
        "ruleId": verdict.rule_id,
        "result": verdict.result,
        "currentConfiguration": verdict.current_configuration,
        "expectedConfiguration": verdict.expected_configuration,
    }
    if verdict.severity is not None:
        out["severity"] = verdict.severity
    return out


def summarize(verdicts: Iterable[Verdict]) -> Summary:
    """
    Aggregate verdicts for one manifest.

    The overall result is fail if any verdict failed, else pass if any
    passed, else skip.
    """
    passed = failed = skipped = 0
    failing: list[str] = []
    for v in verdicts:
        if v.result == "fail":
            failed += 1
            failing.append(v.rule_id)
        elif v.result == "pass":
            passed += 1
        else:
            skipped += 1

    result: Result = "fail" if failed else "pass" if passed else "skip"
    return Summary(result=result, passed=passed, failed=failed, skipped=skipped, failing_rules=failing)


def render_report(verdicts: list[Verdict], *, resource: str | None = None) -> dict[str, Any]:
    """Combine rendered verdicts and their summary for one manifest."""
    return {
        "resource": resource,
        "summary": summarize(verdicts).to_dict(),
        "verdicts": [render(v) for v in verdicts],
    }


def resource_ref(kind: str | None, name: str | None, namespace: str | None = None) -> str:
    ref = f"{kind or '?'}/{name or '<unnamed>'}"
    return f"{namespace}/{ref}" if namespace else ref
