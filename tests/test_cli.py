"""Tests for the effinfer CLI and error rendering."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from effinfer.ast_json import dumps
from effinfer.cli import main
from effinfer.config import CONFIG_NAME
from effinfer.errors import (
    CompileError,
    Diagnostic,
    DiagnosticLabel,
    DiagnosticRenderer,
    Severity,
    Suggestion,
)
from effinfer.source import Span
from tests.helpers import BOX, EXPECTED_PRELUDE_REPORT, PRELUDE, call, fun, lam, module, v


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def prelude_file(tmp_path):
    path = tmp_path / "prelude.json"
    path.write_text(dumps(module(*PRELUDE), str(path)))
    return path


@pytest.fixture
def failing_file(tmp_path):
    bad = fun("bad", ["x"], call("map", call("Box", v("x")), lam(["y"], v("y"))))
    path = tmp_path / "bad.json"
    path.write_text(dumps(module(*PRELUDE, BOX, bad), str(path)))
    return path


class TestCLI:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "check" in result.output
        assert "view" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_check_quiet_on_success(self, runner, prelude_file):
        result = runner.invoke(main, ["check", str(prelude_file)])
        assert result.exit_code == 0
        assert result.stdout == ""

    def test_check_show_types(self, runner, prelude_file):
        result = runner.invoke(main, ["check", str(prelude_file), "--show-types"])
        assert result.exit_code == 0
        assert result.stdout.strip() == EXPECTED_PRELUDE_REPORT

    def test_check_with_workers(self, runner, prelude_file):
        result = runner.invoke(main, ["check", str(prelude_file), "--show-types", "--workers", "4"])
        assert result.exit_code == 0
        assert result.stdout.strip() == EXPECTED_PRELUDE_REPORT

    def test_invalid_workers(self, runner, prelude_file):
        result = runner.invoke(main, ["check", str(prelude_file), "--workers", "0"])
        assert result.exit_code == 2

    def test_check_failure(self, runner, failing_file):
        result = runner.invoke(main, ["check", str(failing_file), "--no-color"])
        assert result.exit_code == 1
        assert "error[E350]" in result.stderr
        assert "no implementation of Functor for 'Box'" in result.stderr
        assert "\033[" not in result.stderr

    def test_check_invalid_json(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{")
        result = runner.invoke(main, ["check", str(path), "--no-color"])
        assert result.exit_code == 1
        assert "error[E001]" in result.stderr

    def test_check_malformed_tree(self, runner, tmp_path):
        path = tmp_path / "shape.json"
        path.write_text('{"declarations": [{"kind": "FunctionDef", "name": "f", "params": [], "body": "oops"}]}')
        result = runner.invoke(main, ["check", str(path), "--no-color"])
        assert result.exit_code == 1
        assert "error[E001]" in result.stderr
        assert "FunctionDef.body must be Expr" in result.stderr
        assert "Traceback" not in result.output

    def test_check_invalid_utf8(self, runner, tmp_path):
        path = tmp_path / "binary.json"
        path.write_bytes(b'{"declarations": []}\xff')
        result = runner.invoke(main, ["check", str(path), "--no-color"])
        assert result.exit_code == 1
        assert "error[E001]" in result.stderr
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_check_directory(self, runner, tmp_path, prelude_file):
        (tmp_path / "second.json").write_text(dumps(module(*PRELUDE)))
        result = runner.invoke(main, ["check", str(tmp_path), "--show-types"])
        assert result.exit_code == 0
        assert f"-- {prelude_file}" in result.stdout
        assert result.stdout.count("map : forall f c a b.") == 2

    def test_empty_directory_warns(self, runner, tmp_path):
        result = runner.invoke(main, ["check", str(tmp_path)])
        assert result.exit_code == 0
        assert "no .json files found" in result.stderr

    def test_config_enables_show_types(self, runner, tmp_path, prelude_file):
        (tmp_path / CONFIG_NAME).write_text("[check]\nshow_types = true\n")
        result = runner.invoke(main, ["check", str(prelude_file)])
        assert result.exit_code == 0
        assert "wrap : forall m a." in result.stdout

    def test_bad_config(self, runner, tmp_path, prelude_file):
        (tmp_path / CONFIG_NAME).write_text("[inference]\nworkers = -1\n")
        result = runner.invoke(main, ["check", str(prelude_file)])
        assert result.exit_code == 1
        assert "workers must be a positive integer" in result.stderr

    def test_view_command(self, runner, prelude_file):
        result = runner.invoke(main, ["view", str(prelude_file)])
        assert result.exit_code == 0
        assert "Module" in result.stdout
        assert "TraitDef" in result.stdout
        assert "name: 'Functor'" in result.stdout


class TestDiagnostics:
    def test_render_error(self, tmp_path):
        source = tmp_path / "demo.src"
        source.write_text("main = map box id\n")
        diag = Diagnostic(
            severity=Severity.ERROR,
            code="E350",
            message="no implementation of Functor for 'Box'",
            labels=[DiagnosticLabel(span=Span(str(source), 1, 8, 1, 10), message="required here")],
            notes=["'map' requires Functor f"],
            suggestions=[Suggestion("add an implementation of Functor for Box", "impl Functor Box with ...")],
        )
        output = DiagnosticRenderer(color=False).render(diag)
        assert "error[E350]: no implementation of Functor for 'Box'" in output
        assert f"--> {source}:1:8" in output
        assert "main = map box id" in output
        assert "       ^^^" in output
        assert "note: 'map' requires Functor f" in output
        assert "help: add an implementation of Functor for Box" in output

    def test_render_without_position(self):
        diag = Diagnostic(
            severity=Severity.WARNING,
            code="W001",
            message="something odd",
            labels=[DiagnosticLabel(span=Span("<builtin>", 0, 0, 0, 0), message="in the prelude")],
        )
        output = DiagnosticRenderer(color=False).render(diag)
        assert output.startswith("warning[W001]: something odd")
        assert "= in the prelude" in output
        assert "-->" not in output

    def test_secondary_label_uses_dashes(self, tmp_path):
        source = tmp_path / "demo.src"
        source.write_text("x\n")
        diag = Diagnostic(
            severity=Severity.ERROR,
            code="E340",
            message="match arms have incompatible types",
            labels=[DiagnosticLabel(span=Span(str(source), 1, 1, 1, 1), message="", style="secondary")],
        )
        output = DiagnosticRenderer(color=False).render(diag)
        assert "| -" in output

    def test_compile_error(self):
        diags = [
            Diagnostic(severity=Severity.ERROR, code="E001", message="invalid JSON"),
            Diagnostic(severity=Severity.ERROR, code="E001", message="bad span"),
        ]
        err = CompileError(diags)
        assert "2 error(s)" in str(err)
        assert err.diagnostics == diags
