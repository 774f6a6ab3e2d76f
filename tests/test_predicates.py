from __future__ import annotations

import pytest

from kubegate.errors import ConfigurationError
from kubegate.rules.predicates import (
    And,
    BuildEnv,
    CountWhere,
    EvaluationContext,
    Exists,
    Not,
    Or,
    build_predicate,
    deep_equal,
)
from kubegate.rules.paths import parse_path


def _holds(pred, document) -> bool:
    return pred.evaluate(document, EvaluationContext())


POD = {
    "kind": "Pod",
    "metadata": {"name": "web", "labels": {"app": "web", "team": "core"}},
    "spec": {
        "containers": [
            {"name": "app", "image": "nginx:1.25", "resources": {"requests": {"cpu": "100m"}}},
            {"name": "sidecar", "image": "envoy:latest", "securityContext": {"privileged": True}},
        ],
        "replicas_hint": "3",
    },
}


def test_exists_ignores_null_values() -> None:
    assert _holds(build_predicate({"exists": "spec.containers"}), POD)
    assert not _holds(build_predicate({"exists": "spec.missing"}), POD)
    assert not _holds(build_predicate({"exists": "spec.nothing"}), {"spec": {"nothing": None}})


def test_exists_accepts_table_form() -> None:
    assert _holds(build_predicate({"exists": {"path": "metadata.name"}}), POD)


def test_equals_matches_any_resolved_value() -> None:
    pred = build_predicate({"equals": {"path": "spec.containers[*].name", "value": "sidecar"}})
    assert _holds(pred, POD)


def test_equals_is_deep_and_keeps_bools_distinct() -> None:
    assert _holds(build_predicate({"equals": {"path": "metadata.labels", "value": {"app": "web", "team": "core"}}}), POD)
    assert not _holds(build_predicate({"equals": {"path": "x", "value": True}}), {"x": 1})
    assert not deep_equal(0, False)
    assert deep_equal([1, {"a": True}], [1, {"a": True}])


def test_compare_numeric_values() -> None:
    doc = {"spec": {"replicas": 1}}
    assert _holds(build_predicate({"compare": {"path": "spec.replicas", "op": "<", "value": 2}}), doc)
    assert not _holds(build_predicate({"compare": {"path": "spec.replicas", "op": ">=", "value": 2}}), doc)
    assert _holds(build_predicate({"compare": {"path": "spec.replicas", "op": "!=", "value": 2}}), doc)


def test_compare_fails_closed_on_non_numeric() -> None:
    pred = build_predicate({"compare": {"path": "spec.replicas_hint", "op": ">", "value": 0}})
    assert not _holds(pred, POD)
    assert not _holds(build_predicate({"compare": {"path": "x", "op": "==", "value": 1}}), {"x": True})
    # Missing fields behave the same way.
    assert not _holds(build_predicate({"compare": {"path": "spec.replicas", "op": "<", "value": 100}}), POD)


def test_one_of_set_membership() -> None:
    pred = build_predicate({"one_of": {"path": "metadata.labels.team", "values": ["core", "platform"]}})
    assert _holds(pred, POD)
    assert not _holds(pred, {"metadata": {"labels": {"team": "web"}}})


def test_matches_only_applies_to_strings() -> None:
    pred = build_predicate({"matches": {"path": "spec.containers[*].image", "pattern": ":latest$"}})
    assert _holds(pred, POD)
    assert not _holds(build_predicate({"matches": {"path": "x", "pattern": "1"}}), {"x": 1})


def test_count_where_records_evidence() -> None:
    pred = build_predicate(
        {
            "count": {
                "items": "spec.containers[*]",
                "where": {"exists": "resources.requests.cpu"},
                "op": "==",
                "threshold": 1,
            }
        }
    )
    ctx = EvaluationContext()
    assert pred.evaluate(POD, ctx)
    assert ctx.evidence["matched"] == ["app"]
    assert ctx.evidence["unmatched"] == ["sidecar"]
    assert ctx.evidence["count"] == 1
    assert ctx.evidence["total"] == 2


def test_count_threshold_total() -> None:
    pred = build_predicate(
        {"count": {"items": "spec.containers[*]", "where": {"exists": "name"}, "op": "==", "threshold": "total"}}
    )
    assert _holds(pred, POD)


def test_count_without_guard_passes_vacuously_on_empty() -> None:
    pred = build_predicate(
        {"count": {"items": "spec.containers[*]", "where": {"exists": "image"}, "op": "==", "threshold": "total"}}
    )
    assert _holds(pred, {"spec": {"containers": []}})


def test_all_requires_items_by_default() -> None:
    pred = build_predicate({"all": {"items": "spec.containers[*]", "where": {"exists": "image"}}})
    assert isinstance(pred, CountWhere)
    assert pred.require_items
    assert not _holds(pred, {"spec": {"containers": []}})
    assert not _holds(pred, {"spec": {}})


def test_all_allow_empty_opt_out() -> None:
    pred = build_predicate({"all": {"items": "spec.containers[*]", "where": {"exists": "image"}, "allow_empty": True}})
    assert _holds(pred, {"spec": {"containers": []}})


def test_all_reports_offenders() -> None:
    pred = build_predicate({"all": {"items": "spec.containers[*]", "where": {"exists": "resources.requests.cpu"}}})
    ctx = EvaluationContext()
    assert not pred.evaluate(POD, ctx)
    assert ctx.evidence["offenders"] == ["sidecar"]


def test_none_and_any_quantifiers() -> None:
    privileged = {"equals": {"path": "securityContext.privileged", "value": True}}
    none = build_predicate({"none": {"items": "spec.containers[*]", "where": privileged}})
    any_ = build_predicate({"any": {"items": "spec.containers[*]", "where": privileged}})
    assert not _holds(none, POD)
    assert _holds(any_, POD)

    ctx = EvaluationContext()
    none.evaluate(POD, ctx)
    assert ctx.evidence["offenders"] == ["sidecar"]

    # No containers: nothing is privileged.
    assert _holds(none, {"spec": {"containers": []}})
    assert not _holds(any_, {"spec": {"containers": []}})


def test_count_inner_paths_are_relative_to_each_item() -> None:
    pred = build_predicate({"any": {"items": "spec.containers[*]", "where": {"equals": {"path": "name", "value": "app"}}}})
    assert _holds(pred, POD)


def test_unnamed_items_are_identified_by_index() -> None:
    pred = build_predicate({"all": {"items": "spec.containers[*]", "where": {"exists": "image"}}})
    ctx = EvaluationContext()
    pred.evaluate({"spec": {"containers": [{"image": "a:1"}, {}]}}, ctx)
    assert ctx.evidence["offenders"] == ["[1]"]


def test_labelled_count_prefixes_evidence() -> None:
    pred = build_predicate(
        {"all": {"items": "spec.containers[*]", "where": {"exists": "image"}, "label": "images"}}
    )
    ctx = EvaluationContext()
    pred.evaluate(POD, ctx)
    assert ctx.evidence["images_matched"] == ["app", "sidecar"]
    assert "matched" not in ctx.evidence


def test_missing_labels_set_difference() -> None:
    pred = build_predicate({"missing": {"required": ["app", "team", "owner"], "keys_of": "metadata.labels"}})
    ctx = EvaluationContext()
    assert not pred.evaluate(POD, ctx)
    assert ctx.evidence["missing"] == ["owner"]

    ok = build_predicate({"missing": {"required": ["app"], "keys_of": "metadata.labels"}})
    assert _holds(ok, POD)
    # No labels at all: everything is missing.
    assert not _holds(ok, {"metadata": {}})


def test_labelled_missing_keeps_both_sides() -> None:
    pred = build_predicate(
        {
            "any_of": [
                {"missing": {"required": ["owner"], "keys_of": "metadata.labels", "label": "labels"}},
                {"missing": {"required": ["owner"], "keys_of": "metadata.annotations", "label": "annotations"}},
            ]
        }
    )
    ctx = EvaluationContext()
    assert not pred.evaluate(POD, ctx)
    assert ctx.evidence["labels_missing"] == ["owner"]
    assert ctx.evidence["annotations_missing"] == ["owner"]
    assert "missing" not in ctx.evidence


def test_boolean_combinators_short_circuit() -> None:
    calls: list[str] = []

    class Recording(Exists):
        def evaluate(self, document, ctx):  # type: ignore[override]
            calls.append(str(self.path))
            return super().evaluate(document, ctx)

    first = Recording(parse_path("metadata.name"))
    second = Recording(parse_path("spec.containers"))

    assert _holds(Or((first, second)), POD)
    assert calls == ["metadata.name"]

    calls.clear()
    assert not _holds(And((Not(first), second)), POD)
    assert calls == ["metadata.name"]


def test_nested_tree_from_data() -> None:
    pred = build_predicate(
        {
            "any_of": [
                {"not": {"compare": {"path": "spec.replicas", "op": ">", "value": 2}}},
                {"exists": "spec.template.spec.topologySpreadConstraints"},
            ]
        }
    )
    assert _holds(pred, {"spec": {"replicas": 2}})
    assert not _holds(pred, {"spec": {"replicas": 5}})
    assert _holds(pred, {"spec": {"replicas": 5, "template": {"spec": {"topologySpreadConstraints": [{}]}}}})


def test_predicates_do_not_mutate_documents(clone) -> None:
    snapshot = clone(POD)
    _holds(build_predicate({"all": {"items": "@containers", "where": {"exists": "image"}}}), POD)
    _holds(build_predicate({"missing": {"required": ["x"], "keys_of": "metadata.labels"}}), POD)
    assert POD == snapshot


def test_str_describes_tree() -> None:
    pred = build_predicate({"all": {"items": "spec.containers[*]", "where": {"exists": "image"}}})
    assert str(pred) == "all(spec.containers[*]: exists(image))"


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"exists": "spec.replicas", "equals": {}}, "exactly one form"),
        ({"bogus": {}}, "unknown predicate form"),
        ({"compare": {"path": "spec.replicas", "op": "=>", "value": 2}}, "operator"),
        ({"compare": {"path": "spec.replicas", "op": ">", "value": "2"}}, "must be a number"),
        ({"compare": {"path": "spec.replicas", "op": ">"}}, "missing value"),
        ({"equals": {"path": "a", "value": 1, "extra": 2}}, "unknown parameters"),
        ({"matches": {"path": "a", "pattern": "("}}, "invalid regular expression"),
        ({"count": {"items": "a[*]", "where": {"exists": "b"}, "op": "==", "threshold": -1}}, "threshold"),
        ({"all": {"items": "a[*]", "where": {"exists": "b"}, "allow_empty": "yes"}}, "allow_empty"),
        ({"none": {"items": "a[*]", "where": {"exists": "b"}, "allow_empty": True}}, "unknown parameters"),
        ({"missing": {"required": [], "keys_of": "metadata.labels"}}, "non-empty list"),
        ({"all_of": []}, "non-empty list"),
        ({"exists": "spec..replicas"}, "spec..replicas"),
        ({"one_of": {"path": "a", "values": []}}, "non-empty list"),
    ],
)
def test_malformed_predicates_raise(raw, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        build_predicate(raw, BuildEnv(source="test.toml", rule_id="r1"))


def test_build_errors_carry_source_and_rule() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        build_predicate({"bogus": 1}, BuildEnv(source="test.toml", rule_id="r1"))
    assert excinfo.value.source == "test.toml"
    assert excinfo.value.rule_id == "r1"
    assert "test.toml" in str(excinfo.value)
