"""Message templates with `{placeholder}` interpolation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from ..errors import ConfigurationError, PathSyntaxError
from .paths import FieldPath, parse_path

_IDENTITY = {
    "kind": "kind",
    "name": "metadata.name",
    "namespace": "metadata.namespace",
}

MISSING = "none"


@dataclass(frozen=True)
class Placeholder:
    key: str
    path: FieldPath | None


Part = Union[str, Placeholder]


@dataclass(frozen=True)
class MessageTemplate:
    """A compiled message template.

    Placeholders resolve from evidence first, then from manifest identity
    (kind, name, namespace), then as a field path against the manifest.
    """

    text: str
    parts: tuple[Part, ...]

    def render(self, manifest: Any, evidence: Mapping[str, Any] | None = None) -> str:
        evidence = evidence or {}
        out: list[str] = []
        for part in self.parts:
            if isinstance(part, str):
                out.append(part)
                continue
            if part.key in evidence:
                out.append(_format(evidence[part.key]))
            elif part.path is not None:
                values = [v for v in part.path.resolve(manifest) if v is not None]
                out.append(_format(values[0] if len(values) == 1 else values))
            else:
                out.append(MISSING)
        return "".join(out)

    def __str__(self) -> str:
        return self.text


def _format(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        if not value:
            return MISSING
        return ", ".join(_format(v) for v in value)
    return str(value)


def compile_template(
    text: str,
    aliases: Mapping[str, str] | None = None,
    *,
    source: str | None = None,
    rule_id: str | None = None,
) -> MessageTemplate:
    """Compile `text` into a MessageTemplate.

    ``{{`` and ``}}`` produce literal braces.

    Raises:
        ConfigurationError: On unbalanced braces or a malformed placeholder path
    """
    if not isinstance(text, str):
        raise ConfigurationError("message template must be a string", source=source, rule_id=rule_id)

    parts: list[Part] = []
    buf: list[str] = []
    i = 0
    while i < len(text):
        c = text[i]
        if c in "{}" and text[i:i + 2] == c * 2:
            buf.append(c)
            i += 2
            continue
        if c == "}":
            raise ConfigurationError(f"unbalanced '}}' in template {text!r}", source=source, rule_id=rule_id)
        if c != "{":
            buf.append(c)
            i += 1
            continue

        end = text.find("}", i + 1)
        if end < 0:
            raise ConfigurationError(f"unterminated placeholder in template {text!r}", source=source, rule_id=rule_id)
        key = text[i + 1:end].strip()
        if not key:
            raise ConfigurationError(f"empty placeholder in template {text!r}", source=source, rule_id=rule_id)

        if buf:
            parts.append("".join(buf))
            buf = []
        try:
            path = parse_path(_IDENTITY.get(key, key), aliases)
        except PathSyntaxError:
            # Evidence keys that are not valid paths are still fine.
            path = None
        parts.append(Placeholder(key=key, path=path))
        i = end + 1

    if buf:
        parts.append("".join(buf))
    return MessageTemplate(text=text, parts=tuple(parts))
