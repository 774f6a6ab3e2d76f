from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from ..errors import EvaluationCancelled, StructuralError
from .predicates import EvaluationContext
from .registry import RuleRegistry
from .schema import Result, RuleDescriptor, Verdict

logger = logging.getLogger(__name__)

NO_RULES_ID = "no-applicable-rules"


def check_structure(manifest: Any) -> str:
    """
    Return the manifest kind, or raise if the document cannot be evaluated.

    Raises:
        StructuralError: If the root is not a mapping or `kind` is missing/empty
    """
    if not isinstance(manifest, Mapping):
        raise StructuralError(f"manifest root must be a mapping, got {type(manifest).__name__}")
    kind = manifest.get("kind")
    if not isinstance(kind, str) or not kind.strip():
        raise StructuralError("manifest has no 'kind'")
    return kind


def _identity(manifest: Mapping[str, Any]) -> str | None:
    metadata = manifest.get("metadata")
    if isinstance(metadata, Mapping):
        name = metadata.get("name")
        if isinstance(name, str):
            return name
    return None


def evaluate_rule(rule: RuleDescriptor, manifest: Mapping[str, Any]) -> Verdict:
    """Evaluate one descriptor against a structurally valid manifest."""
    kind = manifest.get("kind")
    name = _identity(manifest)
    ctx = EvaluationContext()
    try:
        matched = rule.predicate.evaluate(manifest, ctx)
        current = rule.current_template.render(manifest, ctx.evidence)
        expected = rule.expected_template.render(manifest, ctx.evidence)
    except Exception as exc:
        # A broken rule fails closed without aborting the other rules.
        logger.warning("rule %s raised %s: %s", rule.id, type(exc).__name__, exc)
        return Verdict(
            rule_id=rule.id,
            result="fail",
            current_configuration=f"Rule evaluation error: {type(exc).__name__}: {exc}",
            expected_configuration=rule.expected_template.text,
            severity=rule.severity,
            kind=kind,
            name=name,
        )

    result: Result
    if rule.default_verdict == "fail":
        result = "pass" if matched else "fail"
    else:
        result = "fail" if matched else "pass"

    logger.debug("rule %s on %s/%s: %s", rule.id, kind, name, result)
    return Verdict(
        rule_id=rule.id,
        result=result,
        current_configuration=current,
        expected_configuration=expected,
        severity=rule.severity,
        kind=kind,
        name=name,
    )


class Evaluator:
    """
    Evaluate manifests against a rule registry.

    The evaluator holds no per-manifest state: evaluating the same manifest
    twice yields identical verdicts.

    Args:
        registry: Rules to apply
        workers: Evaluate rules for one manifest on this many threads (1 = inline)
    """

    def __init__(self, registry: RuleRegistry, *, workers: int = 1):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.registry = registry
        self.workers = workers

    def evaluate(
        self,
        manifest: Any,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> list[Verdict]:
        """
        Evaluate every applicable rule against `manifest`.

        Args:
            manifest: Decoded resource document
            cancel: Checked between rules; when set, evaluation stops
            deadline: time.monotonic() value after which evaluation stops

        Returns:
            One verdict per applicable rule in registry order, or a single
            skip verdict if no rule applies to the manifest kind

        Raises:
            StructuralError: If the manifest cannot be evaluated at all
            EvaluationCancelled: If cancelled or past the deadline
        """
        kind = check_structure(manifest)
        rules = self.registry.lookup(kind)
        if not rules:
            return [
                Verdict(
                    rule_id=NO_RULES_ID,
                    result="skip",
                    current_configuration=f"No rules apply to kind {kind}",
                    expected_configuration="A resource kind covered by the loaded rulesets",
                    kind=kind,
                    name=_identity(manifest),
                )
            ]

        if self.workers == 1 or len(rules) == 1:
            verdicts: list[Verdict] = []
            for rule in rules:
                _check_cancel(cancel, deadline, completed=len(verdicts))
                verdicts.append(evaluate_rule(rule, manifest))
            return verdicts
        return self._evaluate_parallel(rules, manifest, cancel, deadline)

    def _evaluate_parallel(
        self,
        rules: tuple[RuleDescriptor, ...],
        manifest: Mapping[str, Any],
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> list[Verdict]:
        def run(rule: RuleDescriptor) -> Verdict:
            _check_cancel(cancel, deadline)
            return evaluate_rule(rule, manifest)

        with ThreadPoolExecutor(max_workers=min(self.workers, len(rules)), thread_name_prefix="kubegate") as pool:
            futures = [pool.submit(run, rule) for rule in rules]
            verdicts: list[Verdict] = []
            cancelled: EvaluationCancelled | None = None
            # Join every future before reporting, even after a cancellation.
            for future in futures:
                try:
                    verdicts.append(future.result())
                except EvaluationCancelled as exc:
                    cancelled = cancelled or exc
        if cancelled is not None:
            raise EvaluationCancelled(str(cancelled), completed=len(verdicts))
        return verdicts


def _check_cancel(cancel: threading.Event | None, deadline: float | None, *, completed: int = 0) -> None:
    if cancel is not None and cancel.is_set():
        raise EvaluationCancelled("evaluation cancelled", completed=completed)
    if deadline is not None and time.monotonic() >= deadline:
        raise EvaluationCancelled("evaluation deadline exceeded", completed=completed)
