"""Evaluate command implementation."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterable
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import KubegateConfig
from ..errors import EvaluationCancelled, StructuralError
from ..manifests import LoadedManifest, load_manifests
from ..rules.engine import Evaluator
from ..rules.registry import RuleRegistry
from ..rules.report import render_report, resource_ref, summarize
from ..rules.schema import Verdict
from .rules_cmd import build_registry

CANCELLED_ID = "evaluation-cancelled"

_RESULT_STYLES = {
    "pass": ("PASS", "green"),
    "fail": ("FAIL", "bold red"),
    "skip": ("SKIP", "dim"),
}


def _ref_for(item: LoadedManifest) -> str:
    doc = item.document
    if not isinstance(doc, dict):
        return f"<invalid> ({item.location})"
    metadata = doc.get("metadata") if isinstance(doc.get("metadata"), dict) else {}
    return resource_ref(doc.get("kind"), metadata.get("name"), metadata.get("namespace"))


def evaluate_loaded(
    evaluator: Evaluator,
    manifests: Iterable[LoadedManifest],
    *,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> list[tuple[LoadedManifest, list[Verdict]]]:
    """Evaluate each manifest, turning per-manifest errors into single fail verdicts."""
    results: list[tuple[LoadedManifest, list[Verdict]]] = []
    for item in manifests:
        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            verdicts = evaluator.evaluate(item.document, cancel=cancel, deadline=deadline)
        except StructuralError as exc:
            verdicts = [exc.to_verdict()]
        except EvaluationCancelled as exc:
            verdicts = [
                Verdict(
                    rule_id=CANCELLED_ID,
                    result="fail",
                    current_configuration=f"{exc} after {exc.completed} rule(s)",
                    expected_configuration="All applicable rules evaluated",
                )
            ]
        results.append((item, verdicts))
    return results


def run_evaluate(
    targets: list[str],
    config: KubegateConfig,
    *,
    output_json: bool = False,
    registry: RuleRegistry | None = None,
) -> int:
    """Evaluate manifests against the configured rules.

    Args:
        targets: Manifest files, directories, or '-' for stdin
        config: Effective configuration (CLI overrides already applied)
        output_json: Output results as JSON instead of human-readable
        registry: Pre-built registry (built from config when omitted)

    Returns:
        Exit code (0 = success, 1 = failing verdicts and fail_on == "fail")
    """
    if registry is None:
        registry = build_registry(config)
    manifests = load_manifests(targets)
    evaluator = Evaluator(registry, workers=config.workers)
    results = evaluate_loaded(evaluator, manifests, timeout=config.timeout)

    all_verdicts = [v for _, verdicts in results for v in verdicts]
    overall = summarize(all_verdicts)

    if output_json:
        _output_json(results, overall)
    else:
        _print_human_output(Console(), results, overall)

    if config.fail_on == "fail" and overall.failed > 0:
        return 1
    return 0


def _output_json(results: list[tuple[LoadedManifest, list[Verdict]]], overall) -> None:
    output = {
        "results": [
            {"source": item.location, **render_report(verdicts, resource=_ref_for(item))}
            for item, verdicts in results
        ],
        "summary": {"manifests": len(results), **overall.to_dict()},
    }
    print(json.dumps(output, indent=2, default=str))


def _print_human_output(console: Console, results: list[tuple[LoadedManifest, list[Verdict]]], overall) -> None:
    if not results:
        console.print("No manifests found", style="yellow")
        return

    for item, verdicts in results:
        summary = summarize(verdicts)
        label, style = _RESULT_STYLES[summary.result]
        console.print(f"[{style}]{label}[/] {escape(_ref_for(item))} [dim]({escape(item.location)})[/]")

        table = Table(show_header=True, header_style="bold")
        table.add_column("rule", style="cyan", no_wrap=True)
        table.add_column("result")
        table.add_column("severity")
        table.add_column("current")
        table.add_column("expected", style="dim")
        for v in verdicts:
            text, vstyle = _RESULT_STYLES[v.result]
            table.add_row(
                escape(v.rule_id),
                f"[{vstyle}]{text}[/]",
                v.severity or "",
                escape(v.current_configuration),
                escape(v.expected_configuration),
            )
        console.print(table)
        console.print()

    if overall.failed:
        console.print(f"❌ {overall.failed} failed, {overall.passed} passed, {overall.skipped} skipped", style="bold red")
    else:
        console.print(f"✅ {overall.passed} passed, {overall.skipped} skipped", style="bold green")
