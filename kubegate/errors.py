"""Exception types surfaced to callers of the policy engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .rules.schema import Verdict


class KubegateError(Exception):
    """Base class for all kubegate errors."""


class ConfigurationError(KubegateError):
    """A ruleset or configuration file could not be loaded."""

    def __init__(self, message: str, *, source: str | None = None, rule_id: str | None = None):
        self.source = source
        self.rule_id = rule_id
        prefix = ""
        if source:
            prefix += f"{source}: "
        if rule_id:
            prefix += f"rule {rule_id!r}: "
        super().__init__(f"{prefix}{message}")


class PathSyntaxError(ConfigurationError):
    """A field path expression is malformed."""

    def __init__(self, message: str, path: str, position: int = -1):
        self.path = path
        self.position = position
        where = f" at position {position}" if position >= 0 else ""
        super().__init__(f"{message} in path {path!r}{where}")


class StructuralError(KubegateError):
    """The manifest is not a well-formed resource document."""

    RULE_ID = "structural-error"

    def __init__(self, message: str, *, source: str | None = None):
        self.source = source
        super().__init__(message)

    def to_verdict(self) -> "Verdict":
        from .rules.schema import Verdict

        return Verdict(
            rule_id=self.RULE_ID,
            result="fail",
            current_configuration=f"Malformed manifest: {self}",
            expected_configuration="A mapping with a non-empty string 'kind'",
        )


class EvaluationCancelled(KubegateError):
    """Evaluation stopped before all rules ran (cancel signal or deadline)."""

    def __init__(self, message: str, *, completed: int = 0):
        self.completed = completed
        super().__init__(message)


class ManifestLoadError(KubegateError):
    """A manifest file could not be read or parsed."""
