"""effinfer command line interface."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from effinfer import __version__
from effinfer.ast_json import load_module
from effinfer.checker import Checker
from effinfer.config import config_for
from effinfer.errors import CompileError, DiagnosticRenderer, Severity


def _ast_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(path.rglob("*.json"))
    return [path]


def _check_files(
    files: list[Path],
    *,
    show_types: bool,
    workers: int,
    color: bool,
) -> bool:
    """Decode and check every file. Returns True if all bindings checked."""
    renderer = DiagnosticRenderer(color=color)
    had_errors = False

    for ast_file in files:
        try:
            module = load_module(ast_file)
        except CompileError as e:
            had_errors = True
            for diag in e.diagnostics:
                click.echo(renderer.render(diag), err=True)
            continue

        checker = Checker(workers=workers)
        result = checker.check(module)

        for diag in checker.diagnostics:
            click.echo(renderer.render(diag), err=True)
            if diag.severity == Severity.ERROR:
                had_errors = True

        if show_types:
            report = result.report()
            if len(files) > 1:
                click.echo(f"-- {ast_file}")
            if report:
                click.echo(report)

    return not had_errors


@click.group()
@click.version_option(__version__, prog_name="effinfer")
def main() -> None:
    """Type and effect inference for trait-polymorphic programs."""


@main.command()
@click.argument("path", default=".", type=click.Path(exists=True))
@click.option("--show-types", is_flag=True, help="Print the inferred signature of every binding.")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Infer independent bindings on N threads.")
@click.option("--color/--no-color", default=None, help="Colorize diagnostics.")
@click.option("-v", "--verbose", is_flag=True, help="Log inference steps to stderr.")
def check(path: str, show_types: bool, workers: int | None, color: bool | None, verbose: bool) -> None:
    """Type-check a JSON syntax tree (or a directory of them)."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    target = Path(path)
    try:
        config = config_for(target)
    except (OSError, ValueError) as e:
        click.echo(f"error: {e}", err=True)
        raise SystemExit(1)

    files = _ast_files(target)
    if not files:
        click.echo("warning: no .json files found", err=True)
        return

    ok = _check_files(
        files,
        show_types=show_types or config.check.show_types,
        workers=config.inference.workers if workers is None else workers,
        color=config.output.color if color is None else color,
    )
    if not ok:
        raise SystemExit(1)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def view(file: str) -> None:
    """View the decoded syntax tree of a JSON file."""
    try:
        module = load_module(Path(file))
    except CompileError as e:
        renderer = DiagnosticRenderer(color=True)
        for diag in e.diagnostics:
            click.echo(renderer.render(diag), err=True)
        raise SystemExit(1)

    _dump_ast(module, 0)


def _dump_ast(node: object, depth: int) -> None:
    """Print a readable AST dump."""
    indent = "  " * depth
    name = type(node).__name__

    if hasattr(node, "__dataclass_fields__"):
        fields = node.__dataclass_fields__  # type: ignore[union-attr]
        click.echo(f"{indent}{name}")
        for field_name in fields:
            if field_name == "span":
                continue
            value = getattr(node, field_name)
            if isinstance(value, tuple) and any(hasattr(v, "__dataclass_fields__") for v in value):
                click.echo(f"{indent}  {field_name}:")
                for item in value:
                    _dump_ast(item, depth + 2)
            elif isinstance(value, tuple) and not value:
                click.echo(f"{indent}  {field_name}: []")
            elif hasattr(value, "__dataclass_fields__"):
                click.echo(f"{indent}  {field_name}:")
                _dump_ast(value, depth + 2)
            elif value is not None:
                click.echo(f"{indent}  {field_name}: {value!r}")
    else:
        click.echo(f"{indent}{name}: {node!r}")
