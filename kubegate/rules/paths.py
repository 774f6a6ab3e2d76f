"""
Field path resolution against nested manifest documents.

Paths are JMESPath expressions, compiled once at ruleset load time and
resolved many times. A missing key, an out-of-range index or a type mismatch
resolves to nothing instead of raising.

Examples:
    spec.replicas
    spec.template.spec.[containers, initContainers][].resources.requests.cpu
    metadata.labels."app.kubernetes.io/name"
    spec.containers[0].image
    @containers.name            (named prefix, see BUILTIN_ALIASES)
    $                           (the document itself)

A projection (`[*]`, `[]`, `.*`, `[?...]`) fans out: each projected value is
yielded separately. Any other expression yields its single result.
Use `[]` to chain projections so nested lists come back flat.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterator

import jmespath
from jmespath.exceptions import JMESPathError
from jmespath.parser import ParsedResult

from ..errors import PathSyntaxError

_PROJECTIONS = frozenset({"projection", "value_projection", "filter_projection"})

# Container lists live under spec (Pod) or the pod template (workloads).
BUILTIN_ALIASES: dict[str, str] = {
    "pod_spec": "[spec.template.spec, spec.jobTemplate.spec.template.spec, spec][]",
    "containers": "@pod_spec.[containers, initContainers, ephemeralContainers][][]",
    "app_containers": "@pod_spec.containers[]",
    "init_containers": "@pod_spec.initContainers[]",
    "pod_metadata": "[spec.template.metadata, metadata][]",
}

_ALIAS = re.compile(r"@([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class FieldPath:
    text: str
    expression: ParsedResult = field(compare=False, repr=False)

    @property
    def fans_out(self) -> bool:
        return self.expression.parsed["type"] in _PROJECTIONS

    def resolve(self, document: Any) -> Iterator[Any]:
        """Yield every non-null value the path reaches in `document` (possibly none)."""
        result = self.expression.search(document)
        if result is None:
            return
        if self.fans_out and isinstance(result, list):
            yield from result
        else:
            yield result

    def values(self, document: Any) -> list[Any]:
        return list(self.resolve(document))

    def first(self, document: Any, default: Any = None) -> Any:
        for value in self.resolve(document):
            return value
        return default

    def __str__(self) -> str:
        return self.text


def resolve(document: Any, path: FieldPath | str) -> Iterator[Any]:
    """Resolve `path` against `document`, compiling it first if given as text."""
    if isinstance(path, str):
        path = parse_path(path)
    return path.resolve(document)


def expand_aliases(text: str, aliases: Mapping[str, str], expanding: frozenset[str] = frozenset()) -> str:
    """Replace a leading `@name` with the alias target, recursively."""
    match = _ALIAS.match(text)
    if match is None:
        return text
    name = match.group(1)
    if name in expanding:
        raise PathSyntaxError(f"alias cycle through @{name}", text, 0)
    target = aliases.get(name)
    if target is None:
        raise PathSyntaxError(f"unknown path alias @{name}", text, 0)
    try:
        expanded = expand_aliases(target.strip(), aliases, expanding | {name})
    except PathSyntaxError as exc:
        raise PathSyntaxError(f"in alias @{name}: {exc}", text) from exc
    return expanded + text[match.end():]


def parse_path(text: str, aliases: Mapping[str, str] | None = None) -> FieldPath:
    """Compile a textual field path.

    Raises:
        PathSyntaxError: If the text is not a valid path or names an unknown alias
    """
    if not isinstance(text, str):
        raise PathSyntaxError("path must be a string", repr(text))
    stripped = text.strip()
    if not stripped:
        raise PathSyntaxError("empty path", text, 0)
    if stripped == "$":
        return FieldPath(text="$", expression=jmespath.compile("@"))

    merged = dict(BUILTIN_ALIASES)
    if aliases:
        merged.update(aliases)

    source = expand_aliases(stripped, merged)
    try:
        expression = jmespath.compile(source)
    except JMESPathError as exc:
        position = getattr(exc, "lex_position", -1)
        message = getattr(exc, "message", None) or getattr(exc, "msg", None) or "invalid path"
        raise PathSyntaxError(message, source, position if isinstance(position, int) else -1) from exc
    return FieldPath(text=stripped, expression=expression)
