"""
Project configuration (.kubegate.toml).

Example:

    rulesets = ["policies/team.toml"]
    builtin = true
    disabled_rules = ["memory-limits"]
    workers = 4
    timeout = 2.5
    fail_on = "fail"

Relative ruleset paths resolve against the directory holding the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .errors import ConfigurationError

CONFIG_FILENAME = ".kubegate.toml"

FailOn = Literal["fail", "never"]

_KEYS = {"rulesets", "builtin", "disabled_rules", "workers", "timeout", "fail_on"}


@dataclass(frozen=True)
class KubegateConfig:
    rulesets: tuple[Path, ...] = ()
    builtin: bool = True
    disabled_rules: frozenset[str] = field(default_factory=frozenset)
    workers: int = 1
    timeout: float | None = None
    fail_on: FailOn = "fail"
    path: Path | None = None

    def with_overrides(self, **overrides: Any) -> "KubegateConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def find_config(start: Path) -> Path | None:
    """Find a .kubegate.toml by walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        candidate = p / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path) -> KubegateConfig:
    """
    Load configuration from a TOML file.

    Raises:
        ConfigurationError: If the file is unreadable, not TOML, or holds unknown keys or bad values
    """
    path = Path(path)
    source = str(path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"cannot read config: {exc.strerror or exc}", source=source) from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(f"config is not valid UTF-8: {exc.reason} at byte {exc.start}", source=source) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"cannot parse TOML: {exc}", source=source) from exc

    unknown = sorted(set(data) - _KEYS)
    if unknown:
        raise ConfigurationError(f"unknown keys: {', '.join(unknown)}", source=source)

    rulesets = data.get("rulesets", [])
    if not isinstance(rulesets, list) or not all(isinstance(r, str) for r in rulesets):
        raise ConfigurationError("rulesets must be a list of paths", source=source)

    builtin = data.get("builtin", True)
    if not isinstance(builtin, bool):
        raise ConfigurationError("builtin must be a boolean", source=source)

    disabled = data.get("disabled_rules", [])
    if not isinstance(disabled, list) or not all(isinstance(r, str) for r in disabled):
        raise ConfigurationError("disabled_rules must be a list of rule ids", source=source)

    workers = data.get("workers", 1)
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        raise ConfigurationError("workers must be a positive integer", source=source)

    timeout = data.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0):
        raise ConfigurationError("timeout must be a positive number of seconds", source=source)

    fail_on = data.get("fail_on", "fail")
    if fail_on not in ("fail", "never"):
        raise ConfigurationError("fail_on must be 'fail' or 'never'", source=source)

    base = path.parent
    return KubegateConfig(
        rulesets=tuple((base / r) if not Path(r).is_absolute() else Path(r) for r in rulesets),
        builtin=builtin,
        disabled_rules=frozenset(disabled),
        workers=workers,
        timeout=float(timeout) if timeout is not None else None,
        fail_on=fail_on,
        path=path,
    )
