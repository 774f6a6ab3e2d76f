from __future__ import annotations

from kubegate.rules.report import render, render_report, resource_ref, summarize
from kubegate.rules.schema import Verdict


def test_render_verdict_shape() -> None:
    verdict = Verdict(
        rule_id="deployment-min-replicas",
        result="fail",
        current_configuration="Deployment api has spec.replicas = 1",
        expected_configuration="spec.replicas >= 2",
        severity="high",
    )
    assert render(verdict) == {
        "ruleId": "deployment-min-replicas",
        "result": "fail",
        "currentConfiguration": "Deployment api has spec.replicas = 1",
        "expectedConfiguration": "spec.replicas >= 2",
        "severity": "high",
    }


def test_render_omits_missing_severity() -> None:
    assert "severity" not in render(Verdict(rule_id="no-applicable-rules", result="skip"))


def test_summary_fail_wins() -> None:
    summary = summarize(
        [
            Verdict(rule_id="a", result="pass"),
            Verdict(rule_id="b", result="fail"),
            Verdict(rule_id="c", result="skip"),
            Verdict(rule_id="d", result="fail"),
        ]
    )
    assert summary.result == "fail"
    assert (summary.passed, summary.failed, summary.skipped) == (1, 2, 1)
    assert summary.failing_rules == ["b", "d"]
    assert summary.total == 4


def test_summary_pass_and_skip() -> None:
    assert summarize([Verdict(rule_id="a", result="pass"), Verdict(rule_id="b", result="skip")]).result == "pass"
    assert summarize([Verdict(rule_id="a", result="skip")]).result == "skip"
    assert summarize([]).result == "skip"


def test_render_report() -> None:
    verdicts = [Verdict(rule_id="a", result="pass"), Verdict(rule_id="b", result="fail")]
    report = render_report(verdicts, resource="shop/Deployment/api")
    assert report["resource"] == "shop/Deployment/api"
    assert report["summary"] == {"result": "fail", "pass": 1, "fail": 1, "skip": 0, "failingRules": ["b"]}
    assert [v["ruleId"] for v in report["verdicts"]] == ["a", "b"]


def test_resource_ref() -> None:
    assert resource_ref("Deployment", "api", "shop") == "shop/Deployment/api"
    assert resource_ref("Pod", "web") == "Pod/web"
    assert resource_ref(None, None) == "?/<unnamed>"
