from __future__ import annotations

import operator
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from ..errors import ConfigurationError, PathSyntaxError
from .paths import FieldPath, parse_path


CompareOp = Literal["<", "<=", ">", ">=", "==", "!="]

OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass
class EvaluationContext:
    """Evidence gathered while a predicate tree is evaluated.

    Keys are first-writer-wins so the outermost node supplies message fields.
    """

    evidence: dict[str, Any] = field(default_factory=dict)

    def record(self, key: str, value: Any) -> None:
        self.evidence.setdefault(key, value)


class Predicate(ABC):
    """A pure boolean test over a document."""

    @abstractmethod
    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        ...


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality that keeps booleans distinct from 0/1."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    return a == b


@dataclass(frozen=True)
class Exists(Predicate):
    path: FieldPath

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return any(v is not None for v in self.path.resolve(document))

    def __str__(self) -> str:
        return f"exists({self.path})"


@dataclass(frozen=True)
class Equals(Predicate):
    path: FieldPath
    value: Any

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return any(deep_equal(v, self.value) for v in self.path.resolve(document))

    def __str__(self) -> str:
        return f"{self.path} == {self.value!r}"


@dataclass(frozen=True)
class Compare(Predicate):
    path: FieldPath
    op: CompareOp
    value: int | float

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        fn = OPS[self.op]
        # Non-numeric values never satisfy a numeric comparison.
        return any(_is_number(v) and fn(v, self.value) for v in self.path.resolve(document))

    def __str__(self) -> str:
        return f"{self.path} {self.op} {self.value!r}"


@dataclass(frozen=True)
class OneOf(Predicate):
    path: FieldPath
    values: tuple[Any, ...]

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return any(
            deep_equal(v, candidate)
            for v in self.path.resolve(document)
            for candidate in self.values
        )

    def __str__(self) -> str:
        return f"{self.path} in {list(self.values)!r}"


@dataclass(frozen=True)
class Matches(Predicate):
    path: FieldPath
    pattern: re.Pattern[str]

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return any(isinstance(v, str) and self.pattern.search(v) is not None for v in self.path.resolve(document))

    def __str__(self) -> str:
        return f"{self.path} matches /{self.pattern.pattern}/"


Quantifier = Literal["count", "all", "any", "none"]


@dataclass(frozen=True)
class CountWhere(Predicate):
    """Count the items at `items` that satisfy `where` and compare the count.

    `threshold` is an int or "total" (the number of items). With
    `require_items` set, an empty item set is never compliant.
    """

    items: FieldPath
    where: Predicate
    op: CompareOp
    threshold: int | Literal["total"]
    require_items: bool = False
    quantifier: Quantifier = "count"
    label: str | None = None

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        matched: list[str] = []
        unmatched: list[str] = []
        items = self.items.values(document)
        for idx, item in enumerate(items):
            if self.where.evaluate(item, EvaluationContext()):
                matched.append(_item_name(item, idx))
            else:
                unmatched.append(_item_name(item, idx))

        total = len(items)
        prefix = f"{self.label}_" if self.label else ""
        ctx.record(f"{prefix}matched", matched)
        ctx.record(f"{prefix}unmatched", unmatched)
        ctx.record(f"{prefix}count", len(matched))
        ctx.record(f"{prefix}total", total)
        if self.quantifier == "all":
            ctx.record(f"{prefix}offenders", unmatched)
        elif self.quantifier == "none":
            ctx.record(f"{prefix}offenders", matched)

        if self.require_items and total == 0:
            return False
        threshold = total if self.threshold == "total" else self.threshold
        return OPS[self.op](len(matched), threshold)

    def __str__(self) -> str:
        if self.quantifier != "count":
            guard = "" if self.require_items or self.quantifier != "all" else ", allow_empty"
            return f"{self.quantifier}({self.items}: {self.where}{guard})"
        guard = ", require_items" if self.require_items else ""
        return f"count({self.items}: {self.where}) {self.op} {self.threshold}{guard}"


def _item_name(item: Any, idx: int) -> str:
    if isinstance(item, Mapping):
        name = item.get("name")
        if isinstance(name, str) and name:
            return name
        return f"[{idx}]"
    if isinstance(item, (str, int, float)) and not isinstance(item, bool):
        return str(item)
    return f"[{idx}]"


@dataclass(frozen=True)
class SetDifference(Predicate):
    """Compliant iff every required key is present in the mapping(s) at `keys_of`."""

    required: tuple[str, ...]
    keys_of: FieldPath
    label: str | None = None

    def missing(self, document: Any) -> list[str]:
        present: set[str] = set()
        for value in self.keys_of.resolve(document):
            if isinstance(value, Mapping):
                present.update(str(k) for k in value.keys())
        return [k for k in self.required if k not in present]

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        missing = self.missing(document)
        ctx.record(f"{self.label}_missing" if self.label else "missing", missing)
        return not missing

    def __str__(self) -> str:
        return f"missing({list(self.required)!r} - keys({self.keys_of})) is empty"


@dataclass(frozen=True)
class And(Predicate):
    children: tuple[Predicate, ...]

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return all(child.evaluate(document, ctx) for child in self.children)

    def __str__(self) -> str:
        return "(" + " and ".join(str(c) for c in self.children) + ")"


@dataclass(frozen=True)
class Or(Predicate):
    children: tuple[Predicate, ...]

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return any(child.evaluate(document, ctx) for child in self.children)

    def __str__(self) -> str:
        return "(" + " or ".join(str(c) for c in self.children) + ")"


@dataclass(frozen=True)
class Not(Predicate):
    child: Predicate

    def evaluate(self, document: Any, ctx: EvaluationContext) -> bool:
        return not self.child.evaluate(document, ctx)

    def __str__(self) -> str:
        return f"not {self.child}"


# -----------------------------------------------------------------------------
# Building predicate trees from data
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BuildEnv:
    """Where a predicate tree comes from, for error attribution."""

    aliases: Mapping[str, str] = field(default_factory=dict)
    source: str | None = None
    rule_id: str | None = None

    def error(self, message: str) -> ConfigurationError:
        return ConfigurationError(message, source=self.source, rule_id=self.rule_id)

    def path(self, raw: Any, what: str) -> FieldPath:
        if not isinstance(raw, str) or not raw.strip():
            raise self.error(f"{what} must be a non-empty path string")
        try:
            return parse_path(raw, self.aliases)
        except PathSyntaxError as exc:
            raise self.error(str(exc)) from exc


PredicateBuilder = Callable[[Any, BuildEnv], Predicate]


def _params(raw: Any, env: BuildEnv, form: str, required: tuple[str, ...], optional: tuple[str, ...] = ()) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise env.error(f"'{form}' expects a table of parameters")
    missing = [k for k in required if k not in raw]
    if missing:
        raise env.error(f"'{form}' is missing {', '.join(missing)}")
    unknown = sorted(set(raw) - set(required) - set(optional))
    if unknown:
        raise env.error(f"'{form}' has unknown parameters: {', '.join(unknown)}")
    return dict(raw)


def _op(raw: Any, env: BuildEnv) -> CompareOp:
    if raw not in OPS:
        raise env.error(f"unknown comparison operator {raw!r} (expected one of {', '.join(OPS)})")
    return raw  # type: ignore[return-value]


def _build_exists(raw: Any, env: BuildEnv) -> Predicate:
    if isinstance(raw, Mapping):
        raw = _params(raw, env, "exists", ("path",))["path"]
    return Exists(env.path(raw, "exists"))


def _build_equals(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "equals", ("path", "value"))
    return Equals(env.path(params["path"], "equals.path"), params["value"])


def _build_compare(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "compare", ("path", "op", "value"))
    value = params["value"]
    if not _is_number(value):
        raise env.error(f"compare.value must be a number, got {value!r}")
    return Compare(env.path(params["path"], "compare.path"), _op(params["op"], env), value)


def _build_one_of(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "one_of", ("path", "values"))
    values = params["values"]
    if not isinstance(values, (list, tuple)) or not values:
        raise env.error("one_of.values must be a non-empty list")
    return OneOf(env.path(params["path"], "one_of.path"), tuple(values))


def _build_matches(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "matches", ("path", "pattern"))
    pattern = params["pattern"]
    if not isinstance(pattern, str):
        raise env.error("matches.pattern must be a string")
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise env.error(f"invalid regular expression {pattern!r}: {exc}") from exc
    return Matches(env.path(params["path"], "matches.path"), compiled)


def _label(raw: Any, env: BuildEnv) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str) or not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", raw):
        raise env.error(f"label must be an identifier, got {raw!r}")
    return raw


def _build_count(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "count", ("items", "where", "op", "threshold"), ("label", "require_items"))
    threshold = params["threshold"]
    if threshold != "total" and not (isinstance(threshold, int) and not isinstance(threshold, bool) and threshold >= 0):
        raise env.error(f"count.threshold must be a non-negative integer or 'total', got {threshold!r}")
    require_items = params.get("require_items", False)
    if not isinstance(require_items, bool):
        raise env.error("count.require_items must be a boolean")
    return CountWhere(
        items=env.path(params["items"], "count.items"),
        where=build_predicate(params["where"], env),
        op=_op(params["op"], env),
        threshold=threshold,
        require_items=require_items,
        label=_label(params.get("label"), env),
    )


def _quantified(form: Quantifier) -> PredicateBuilder:
    def build(raw: Any, env: BuildEnv) -> Predicate:
        optional = ("label", "allow_empty") if form == "all" else ("label",)
        params = _params(raw, env, form, ("items", "where"), optional)
        allow_empty = params.get("allow_empty", False)
        if not isinstance(allow_empty, bool):
            raise env.error(f"{form}.allow_empty must be a boolean")

        op: CompareOp
        threshold: int | Literal["total"]
        if form == "all":
            op, threshold = "==", "total"
        elif form == "any":
            op, threshold = ">=", 1
        else:
            op, threshold = "==", 0

        return CountWhere(
            items=env.path(params["items"], f"{form}.items"),
            where=build_predicate(params["where"], env),
            op=op,
            threshold=threshold,
            require_items=(form == "all" and not allow_empty),
            quantifier=form,
            label=_label(params.get("label"), env),
        )

    return build


def _build_missing(raw: Any, env: BuildEnv) -> Predicate:
    params = _params(raw, env, "missing", ("required", "keys_of"), ("label",))
    required = params["required"]
    if not isinstance(required, (list, tuple)) or not required or not all(isinstance(k, str) and k for k in required):
        raise env.error("missing.required must be a non-empty list of strings")
    return SetDifference(
        required=tuple(required),
        keys_of=env.path(params["keys_of"], "missing.keys_of"),
        label=_label(params.get("label"), env),
    )


def _children(raw: Any, env: BuildEnv, form: str) -> tuple[Predicate, ...]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise env.error(f"'{form}' expects a non-empty list of predicates")
    return tuple(build_predicate(child, env) for child in raw)


def _build_all_of(raw: Any, env: BuildEnv) -> Predicate:
    return And(_children(raw, env, "all_of"))


def _build_any_of(raw: Any, env: BuildEnv) -> Predicate:
    return Or(_children(raw, env, "any_of"))


def _build_not(raw: Any, env: BuildEnv) -> Predicate:
    return Not(build_predicate(raw, env))


PREDICATES: dict[str, PredicateBuilder] = {
    "exists": _build_exists,
    "equals": _build_equals,
    "compare": _build_compare,
    "one_of": _build_one_of,
    "matches": _build_matches,
    "count": _build_count,
    "all": _quantified("all"),
    "any": _quantified("any"),
    "none": _quantified("none"),
    "missing": _build_missing,
    "all_of": _build_all_of,
    "any_of": _build_any_of,
    "not": _build_not,
}


def build_predicate(raw: Any, env: BuildEnv | None = None) -> Predicate:
    """Build a predicate tree from its data form.

    Each node is a single-key table naming the form, e.g.
    ``{"compare": {"path": "spec.replicas", "op": ">=", "value": 2}}``.

    Raises:
        ConfigurationError: On unknown forms, bad parameters or bad paths
    """
    env = env or BuildEnv()
    if not isinstance(raw, Mapping) or len(raw) != 1:
        raise env.error(f"predicate must be a table with exactly one form, got {raw!r}")
    (form, params), = raw.items()
    builder = PREDICATES.get(form)
    if builder is None:
        raise env.error(f"unknown predicate form {form!r}")
    return builder(params, env)

