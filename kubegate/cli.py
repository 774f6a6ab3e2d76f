"""CLI entrypoint for kubegate."""

import logging
import sys
from pathlib import Path

import click

from . import __version__
from .config import KubegateConfig, find_config, load_config
from .errors import KubegateError


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _effective_config(
    ctx: click.Context,
    *,
    rules: tuple[Path, ...] = (),
    no_builtin: bool = False,
    disable: tuple[str, ...] = (),
    **overrides,
) -> KubegateConfig:
    config: KubegateConfig = ctx.obj["config"]
    return config.with_overrides(
        rulesets=config.rulesets + tuple(rules) if rules else None,
        builtin=False if no_builtin else None,
        disabled_rules=config.disabled_rules | set(disable) if disable else None,
        **overrides,
    )


def _ruleset_options(fn):
    fn = click.option(
        "--disable",
        multiple=True,
        metavar="RULE_ID",
        help="Leave this rule out (repeatable)",
    )(fn)
    fn = click.option(
        "--no-builtin",
        is_flag=True,
        help="Do not load the built-in core ruleset",
    )(fn)
    fn = click.option(
        "--rules",
        "-r",
        multiple=True,
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Additional ruleset file (TOML, YAML or JSON; repeatable)",
    )(fn)
    return fn


@click.group()
@click.version_option(__version__, prog_name="kubegate")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="KUBEGATE_CONFIG",
    default=None,
    help="Path to a .kubegate.toml (defaults to the nearest one above the working directory)",
)
@click.option("--verbose", "-v", count=True, help="Log progress to stderr (-vv for debug)")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: int) -> None:
    """kubegate - Declarative policy checks for Kubernetes workload manifests.

    Evaluate Pods, Deployments, DaemonSets and StatefulSets against rulesets
    and report pass / fail / skip per rule.
    """
    ctx.ensure_object(dict)
    _configure_logging(verbose)

    if config_path is None:
        config_path = find_config(Path.cwd())
    try:
        config = load_config(config_path) if config_path else KubegateConfig()
    except KubegateError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["config"] = config


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@_ruleset_options
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Threads per manifest")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds allowed per manifest")
@click.option(
    "--fail-on",
    type=click.Choice(["fail", "never"]),
    default=None,
    help="Exit with error when any rule fails (default) or never",
)
@click.pass_context
def evaluate(
    ctx: click.Context,
    targets: tuple[str, ...],
    rules: tuple[Path, ...],
    no_builtin: bool,
    disable: tuple[str, ...],
    output_json: bool,
    workers: int | None,
    timeout: float | None,
    fail_on: str | None,
) -> None:
    """Evaluate manifests against the loaded rules.

    TARGETS are YAML/JSON manifest files, directories of them, or '-' for
    stdin. Multi-document YAML and `kind: List` wrappers are expanded.

    Examples:

        kubegate evaluate deploy/

        kubectl get deploy -o yaml | kubegate evaluate - --json
    """
    from .commands.evaluate import run_evaluate

    config = _effective_config(
        ctx,
        rules=rules,
        no_builtin=no_builtin,
        disable=disable,
        workers=workers,
        timeout=timeout,
        fail_on=fail_on,
    )
    try:
        exit_code = run_evaluate(list(targets), config, output_json=output_json)
    except KubegateError as exc:
        raise click.ClickException(str(exc)) from exc
    sys.exit(exit_code)


@cli.group()
def rules() -> None:
    """Inspect and validate rulesets."""


@rules.command("list")
@_ruleset_options
@click.option("--kind", default=None, help="Only rules that apply to this resource kind")
@click.option("--json", "output_json", is_flag=True, help="Output rules as JSON")
@click.pass_context
def rules_list(
    ctx: click.Context,
    rules: tuple[Path, ...],
    no_builtin: bool,
    disable: tuple[str, ...],
    kind: str | None,
    output_json: bool,
) -> None:
    """List loaded rules."""
    from .commands.rules_cmd import build_registry, run_rules_list

    config = _effective_config(ctx, rules=rules, no_builtin=no_builtin, disable=disable)
    try:
        registry = build_registry(config)
    except KubegateError as exc:
        raise click.ClickException(str(exc)) from exc
    sys.exit(run_rules_list(registry, kind=kind, output_json=output_json))


@rules.command("explain")
@click.argument("rule_id")
@_ruleset_options
@click.pass_context
def rules_explain(
    ctx: click.Context,
    rule_id: str,
    rules: tuple[Path, ...],
    no_builtin: bool,
    disable: tuple[str, ...],
) -> None:
    """Explain a rule: kinds, polarity, predicate and messages."""
    from .commands.rules_cmd import build_registry, run_rules_explain

    config = _effective_config(ctx, rules=rules, no_builtin=no_builtin, disable=disable)
    try:
        registry = build_registry(config)
    except KubegateError as exc:
        raise click.ClickException(str(exc)) from exc
    sys.exit(run_rules_explain(registry, rule_id))


@rules.command("validate")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
def rules_validate(paths: tuple[Path, ...]) -> None:
    """Check that ruleset files load without errors."""
    from .commands.rules_cmd import run_rules_validate

    sys.exit(run_rules_validate(list(paths)))


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
