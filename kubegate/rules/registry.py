"""
Rule registry for kind → descriptor lookup.

Rules are registered on a RegistryBuilder while rulesets load; build()
produces a RuleRegistry that has no mutators, so lookups from several
evaluation threads need no locking.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from types import MappingProxyType

from ..errors import ConfigurationError
from .schema import RuleDescriptor, RulesetDef

logger = logging.getLogger(__name__)


class RegistryBuilder:
    """Collects descriptors in registration order."""

    def __init__(self) -> None:
        self._rules: dict[str, RuleDescriptor] = {}

    def register(self, descriptor: RuleDescriptor) -> None:
        """
        Register a descriptor.

        Raises:
            ConfigurationError: If a rule with the same id is already registered
        """
        existing = self._rules.get(descriptor.id)
        if existing is not None:
            raise ConfigurationError(
                f"duplicate rule id (already registered from {existing.source or 'unknown'})",
                source=descriptor.source,
                rule_id=descriptor.id,
            )
        self._rules[descriptor.id] = descriptor

    def register_ruleset(self, ruleset: RulesetDef) -> None:
        for rule in ruleset.rules:
            self.register(rule)

    def build(self, *, disabled: Iterable[str] = ()) -> "RuleRegistry":
        """
        Freeze the registered rules.

        Args:
            disabled: Rule ids to leave out of the registry

        Raises:
            ConfigurationError: If a disabled id names no registered rule
        """
        disabled_ids = set(disabled)
        unknown = sorted(disabled_ids - set(self._rules))
        if unknown:
            raise ConfigurationError(f"cannot disable unknown rules: {', '.join(unknown)}")
        for rule_id in sorted(disabled_ids):
            logger.info("rule %s disabled by configuration", rule_id)
        return RuleRegistry(r for r in self._rules.values() if r.id not in disabled_ids)


class RuleRegistry:
    """Read-only set of descriptors indexed by resource kind."""

    def __init__(self, descriptors: Iterable[RuleDescriptor] = ()) -> None:
        rules = tuple(descriptors)
        by_kind: dict[str, list[RuleDescriptor]] = {}
        for rule in rules:
            for kind in sorted(rule.kinds):
                by_kind.setdefault(kind, []).append(rule)

        self._rules = rules
        self._by_id = MappingProxyType({r.id: r for r in rules})
        self._by_kind = MappingProxyType({k: tuple(v) for k, v in by_kind.items()})

    @classmethod
    def from_rulesets(cls, rulesets: Iterable[RulesetDef], *, disabled: Iterable[str] = ()) -> "RuleRegistry":
        builder = RegistryBuilder()
        for ruleset in rulesets:
            builder.register_ruleset(ruleset)
        return builder.build(disabled=disabled)

    def lookup(self, kind: str) -> tuple[RuleDescriptor, ...]:
        """Descriptors applicable to `kind`, in registration order."""
        return self._by_kind.get(kind, ())

    def get(self, rule_id: str) -> RuleDescriptor | None:
        return self._by_id.get(rule_id)

    def kinds(self) -> list[str]:
        return sorted(self._by_kind)

    def __iter__(self) -> Iterator[RuleDescriptor]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id
