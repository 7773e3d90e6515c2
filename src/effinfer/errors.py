"""Rust-style colored diagnostic rendering and the inference error taxonomy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from effinfer.source import Span
    from effinfer.types import Type


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


# ANSI color codes
_COLORS = {
    Severity.ERROR: "\033[1;31m",    # bold red
    Severity.WARNING: "\033[1;33m",  # bold yellow
    Severity.NOTE: "\033[1;36m",     # bold cyan
}
_BOLD = "\033[1m"
_BLUE = "\033[1;34m"
_RESET = "\033[0m"


@dataclass(frozen=True)
class DiagnosticLabel:
    """Points to a specific source location."""

    span: Span
    message: str
    style: str = "primary"  # "primary" or "secondary"


@dataclass(frozen=True)
class Suggestion:
    """A suggested fix."""

    message: str
    replacement: str


@dataclass
class Diagnostic:
    """A single diagnostic message with optional labels and suggestions."""

    severity: Severity
    code: str
    message: str
    labels: list[DiagnosticLabel] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


class DiagnosticRenderer:
    """Renders diagnostics in Rust-style format with colors."""

    def __init__(self, *, color: bool = True) -> None:
        self.color = color
        self._file_cache: dict[str, list[str]] = {}

    def _c(self, code: str) -> str:
        return code if self.color else ""

    def _get_source_line(self, filename: str, line_num: int) -> str | None:
        """Load and cache source file, return the 1-indexed line."""
        if filename not in self._file_cache:
            try:
                path = Path(filename)
                if path.is_file():
                    self._file_cache[filename] = path.read_text().splitlines()
                else:
                    self._file_cache[filename] = []
            except OSError:
                self._file_cache[filename] = []
        lines = self._file_cache[filename]
        if 1 <= line_num <= len(lines):
            return lines[line_num - 1]
        return None

    def render(self, diag: Diagnostic) -> str:
        lines: list[str] = []
        sev = diag.severity
        color = _COLORS[sev]

        # Header: error[E321]: message
        lines.append(
            f"{self._c(color)}{sev.value}[{diag.code}]{self._c(_RESET)}"
            f"{self._c(_BOLD)}: {diag.message}{self._c(_RESET)}"
        )

        for label in diag.labels:
            span = label.span
            if span.start_line <= 0:
                # Builtin or position-less node: no snippet to show.
                if label.message:
                    lines.append(
                        f"  {self._c(_BLUE)}={self._c(_RESET)} {label.message}"
                    )
                continue
            lines.append(f"  {self._c(_BLUE)}-->{self._c(_RESET)} {span}")
            gutter = f"{span.start_line:>4}"
            lines.append(f"  {self._c(_BLUE)}   |{self._c(_RESET)}")

            source_line = self._get_source_line(span.file, span.start_line)
            if source_line is not None:
                lines.append(
                    f"  {self._c(_BLUE)}{gutter} |{self._c(_RESET)} {source_line}"
                )
                if span.start_line == span.end_line:
                    caret_len = max(1, span.end_col - span.start_col + 1)
                    padding = " " * (span.start_col - 1)
                    carets = ("^" if label.style == "primary" else "-") * caret_len
                    lines.append(
                        f"  {self._c(_BLUE)}   |{self._c(_RESET)} "
                        f"{padding}{self._c(color)}{carets}{self._c(_RESET)}"
                    )

            if label.message:
                lines.append(
                    f"  {self._c(_BLUE)}   |{self._c(_RESET)}   "
                    f"{self._c(color)}{label.message}{self._c(_RESET)}"
                )

        for note in diag.notes:
            lines.append(f"  {self._c(_BLUE)}={self._c(_RESET)} note: {note}")

        for suggestion in diag.suggestions:
            lines.append(
                f"  {self._c(_BLUE)}help:{self._c(_RESET)} {suggestion.message}"
            )
            lines.append(
                f"  {self._c(_BLUE)}try:{self._c(_RESET)} {suggestion.replacement}"
            )

        return "\n".join(lines)


class CompileError(Exception):
    """Batch error carrying multiple diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        messages = [d.message for d in diagnostics]
        super().__init__(f"{len(diagnostics)} error(s): {'; '.join(messages)}")


# ── Inference errors ────────────────────────────────────────────


class InferenceError(Exception):
    """A static failure while inferring one top-level binding.

    Raised by the unifier, solver and inference engine; the checker
    catches it per binding and turns it into a Diagnostic.
    """

    code = "E320"

    def __init__(
        self,
        message: str,
        span: Span | None = None,
        *,
        binding: str | None = None,
        types: tuple[Type, ...] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.span = span
        self.binding = binding
        self.types = types
        self.notes: list[str] = []

    def at(self, span: Span, binding: str | None = None) -> InferenceError:
        """Attach a location (and binding) unless a more precise one is set."""
        if self.span is None:
            self.span = span
        if self.binding is None and binding is not None:
            self.binding = binding
        return self

    def labels(self) -> list[DiagnosticLabel]:
        if self.span is None:
            return []
        return [DiagnosticLabel(span=self.span, message="")]

    def suggestions(self) -> list[Suggestion]:
        return []

    def to_diagnostic(self) -> Diagnostic:
        message = self.message
        if self.binding is not None:
            message = f"in '{self.binding}': {message}"
        return Diagnostic(
            severity=Severity.ERROR,
            code=self.code,
            message=message,
            labels=self.labels(),
            suggestions=self.suggestions(),
            notes=list(self.notes),
        )

    def __str__(self) -> str:
        where = f" at {self.span}" if self.span is not None else ""
        return f"{self.code}: {self.message}{where}"


class UnboundVariable(InferenceError):
    code = "E310"

    def __init__(self, name: str, span: Span | None = None, **kwargs) -> None:
        super().__init__(f"undefined name '{name}'", span, **kwargs)
        self.name = name


class TypeMismatch(InferenceError):
    code = "E321"


class OccursCheckFailure(InferenceError):
    code = "E322"


class MissingField(TypeMismatch):
    """Member access on a type that cannot have the field."""

    code = "E323"

    def __init__(self, message: str, span: Span | None = None, *, field: str, **kwargs) -> None:
        super().__init__(message, span, **kwargs)
        self.field = field


class DuplicateField(InferenceError):
    code = "E324"


class ArityMismatch(InferenceError):
    code = "E330"

    def __init__(self, message: str, span: Span | None = None, *, expected: int, actual: int, **kwargs) -> None:
        super().__init__(message, span, **kwargs)
        self.expected = expected
        self.actual = actual


class PatternArmMismatch(InferenceError):
    code = "E340"

    def __init__(self, message: str, arm_spans: tuple[Span, Span], **kwargs) -> None:
        super().__init__(message, arm_spans[1], **kwargs)
        self.arm_spans = arm_spans

    def labels(self) -> list[DiagnosticLabel]:
        first, offending = self.arm_spans
        return [
            DiagnosticLabel(span=first, message="first arm has this type", style="secondary"),
            DiagnosticLabel(span=offending, message="this arm disagrees"),
        ]


class UnresolvedTrait(InferenceError):
    code = "E350"

    def __init__(self, message: str, span: Span | None = None, *, trait: str, target: str, **kwargs) -> None:
        super().__init__(message, span, **kwargs)
        self.trait = trait
        self.target = target

    def suggestions(self) -> list[Suggestion]:
        if not self.target:
            return []
        return [Suggestion(
            message=f"add an implementation of {self.trait} for {self.target}",
            replacement=f"impl {self.trait} {self.target} with ...",
        )]


class UnknownType(InferenceError):
    code = "E300"


class UnknownTrait(InferenceError):
    """Reference to an undeclared trait or effect."""

    code = "E422"
