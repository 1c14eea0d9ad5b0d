"""Errors and warnings raised while cases are loaded and sequenced.

Every error carries an optional `ErrorContext`. When it is present the
message is followed by the case file position and a YAML rendering of
the document or step the error happened on.
"""

from os import linesep
from pathlib import PurePath
from re import Pattern
from typing import TYPE_CHECKING, Any, TypedDict

from yaml import safe_dump
from yaml.error import MarkedYAMLError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Self

if TYPE_CHECKING:
    from pydantic import BaseModel
    from pydantic_core import ValidationError

if TYPE_CHECKING:
    from pytest_acctest.driver.results import Diagnostic

INDENT = ' ' * 4

UNKNOWN_FILENAME = '<case>'
OPAQUE_VALUE = '<runtime object>'
SNIPPET_HEAD = ' ...'


class ErrorContext(TypedDict, total=False):
    """Where an error happened and what it happened on.

    Positions are zero-based and reported one-based. Keys that are
    missing are left out of the report.
    """

    filename: str | None

    line_num: int | None
    column_num: int | None

    step_num: int | None
    check_num: int | None

    #: Parser or validation error the context was built from.
    error: Exception | None

    #: Document or step rendered below the location.
    element: Any


def to_plain(value: Any) -> Any:  # noqa: ANN401
    """Reduce a value to data YAML can render.

    Compiled patterns are shown by their source and paths as text.
    Hooks, factories and other runtime objects become a placeholder.
    """
    match value:
        case None | str() | bytes() | int() | float():
            return value
        case dict():
            return {key: to_plain(item) for key, item in value.items()}
        case list() | tuple() | set() | frozenset():
            return [to_plain(item) for item in value]
        case Pattern():
            return value.pattern
        case PurePath():
            return f'{value}'

    return OPAQUE_VALUE


def indent_lines(text: str, prefix: str) -> list[str]:
    """Prefix every non-blank line of a text."""
    return [f'{prefix}{line}' for line in text.splitlines() if line.strip()]


class ErrorFormatter:
    """Mixin rendering a message together with its error context."""

    @classmethod
    def format(cls, message: str, context: ErrorContext | None = None) -> str:
        """Render a message followed by its location and snippet.

        Args:
            message: Error description.
            context: Where the error happened, if known.

        Returns:
            The message alone without context, the full report otherwise.
        """
        if not context:
            return message

        return linesep.join((
            message,
            *cls.location_lines(context),
            *cls.snippet_lines(context),
        ))

    @staticmethod
    def location_lines(context: ErrorContext) -> list[str]:
        """Describe the file position and step of an error."""
        position = f'in "{context.get('filename') or UNKNOWN_FILENAME}"'
        if (line_num := context.get('line_num')) is not None:
            position += f', line {line_num + 1}'
            if (column_num := context.get('column_num')) is not None:
                position += f', column {column_num + 1}'

        lines = [f'{INDENT}{position}']

        if (step_num := context.get('step_num')) is not None:
            step = f'on step {step_num + 1}'
            if (check_num := context.get('check_num')) is not None:
                step += f', check {check_num + 1}'
            lines.append(f'{INDENT}{step}')

        return lines

    @staticmethod
    def snippet_lines(context: ErrorContext) -> list[str]:
        """Show the source around a YAML error, or the failing element."""
        prefix = INDENT * 2

        if isinstance(error := context.get('error'), MarkedYAMLError):
            if error.problem_mark is None:
                return []
            return indent_lines(error.problem_mark.get_snippet(indent=0) or '', prefix)

        if element := context.get('element'):
            document = safe_dump(to_plain(element), indent=2, sort_keys=False)
            return [f'{prefix}{SNIPPET_HEAD}', *indent_lines(document, prefix)]

        return []


class CleanupWarning(UserWarning):
    """Warning emitted when the post-case destroy fails.

    Cleanup is best-effort: remote objects may be left behind, but the
    failure never replaces the error that aborted the case.
    """


class DiagnosticWarning(UserWarning):
    """Warning emitted for engine warnings no expectation accounted for."""


class AcceptanceError(Exception, ErrorFormatter):
    """Root of the errors raised by pytest-acctest."""

    def __init__(self, message: str, *,
                 context: ErrorContext | None = None) -> None:
        """Keep the bare message apart from its rendered form.

        Args:
            message: Error description without location.
            context: Where the error happened, if known.
        """
        self.message = message
        self.context = context

        super().__init__(message)

    def __str__(self) -> str:
        """Full report including the context."""
        return self.format(self.message, self.context)

    def with_step(self, step: 'BaseModel', *,
                  step_num: int | None = None,
                  filename: str | None = None) -> 'Self':
        """Attach step location and snippet to the error in place.

        Args:
            step: Step model executed when the error occurred.
            step_num: Position of the step in the case.
            filename: Optional case file name.

        Returns:
            The same error instance.
        """
        if self.context is None:
            self.context = ErrorContext(
                filename=filename,
                step_num=step_num,
                element=step.model_dump(
                    exclude_none=True,
                    exclude_defaults=True,
                ),
            )

        return self


class CaseSchemaError(AcceptanceError):
    """Error raised when a case file is invalid or inconsistent."""

    @classmethod
    def from_yaml_error(cls, error: MarkedYAMLError) -> 'Self':
        """Report a case file the YAML parser refused."""
        context = ErrorContext(error=error)
        if (mark := error.problem_mark) is not None:
            context.update(filename=mark.name, line_num=mark.line, column_num=mark.column)

        message = 'Invalid YAML'
        if error.problem:
            message += f'{linesep}{INDENT}{error.problem}'

        return cls(message, context=context)

    @classmethod
    def from_pydantic_error(cls, error: 'ValidationError', *,
                            data: Any = None,  # noqa: ANN401
                            filename: str | None = None,
                            step_num: int | None = None) -> 'Self':
        """Report a document that does not fit the case schema.

        Only the first message pydantic reports is kept. Documents that
        are not mappings at all are reported as a type error.

        Args:
            error: Validation failure.
            data: Document the failure was raised for.
            filename: Case file name.
            step_num: Position of the step document, if any.
        """
        context = ErrorContext(
            filename=filename,
            step_num=step_num,
            error=error,
            element=data,
        )

        if not isinstance(data, dict):
            return cls('Type validation error', context=context)

        messages = (
            line.strip()
            for item in error.errors(include_url=False, include_input=False)
            for line in (item.get('msg') or '').splitlines()
        )

        return cls(next(filter(None, messages), 'Validation error'), context=context)


class ProviderDeclarationConflict(AcceptanceError):  # noqa: N818
    """Error raised when one provider name is bound to several declaration forms."""

    def __init__(self, name: str, forms: 'Sequence[str]') -> None:
        """Initialize a conflict error.

        Args:
            name: Provider name declared more than once.
            forms: Declaration forms the name was bound to.
        """
        self.name = name
        self.forms = tuple(forms)

        super().__init__(
            f'Provider {name!r} is declared as {' and '.join(self.forms)}',
        )


class EngineError(AcceptanceError):
    """Error raised when an engine call fails outright.

    Error diagnostics reported by the engine for the failed call are kept
    in `diagnostics` so that expectations can be matched against them.
    """

    def __init__(self, message: str, *,
                 diagnostics: 'Sequence[Diagnostic]' = (),
                 command: str | None = None,
                 context: ErrorContext | None = None) -> None:
        """Initialize an engine error.

        Args:
            message: Human-readable error description.
            diagnostics: Diagnostics reported together with the failure.
            command: Engine command that failed.
            context: Error context containing optional location values.
        """
        self.diagnostics = tuple(diagnostics)
        self.command = command

        if self.diagnostics:
            message += ''.join(
                f'{linesep}{INDENT}{item}'
                for item in self.diagnostics
            )

        super().__init__(message, context=context)


class VerificationError(AcceptanceError):
    """Base error for failed verification of engine behaviour."""


class UnexpectedDiagnostic(VerificationError):  # noqa: N818
    """Error raised for an error diagnostic no expectation accounts for."""

    def __init__(self, diagnostic: 'Diagnostic', *,
                 context: ErrorContext | None = None) -> None:
        """Initialize an unexpected diagnostic error.

        Args:
            diagnostic: The unmatched diagnostic.
            context: Error context containing optional location values.
        """
        self.diagnostic = diagnostic

        super().__init__(f'Unexpected {diagnostic}', context=context)


class ExpectationMismatch(VerificationError):  # noqa: N818
    """Error raised when a declared error or warning pattern is never observed."""


class ConvergenceViolation(VerificationError):  # noqa: N818
    """Error raised when plan emptiness after an action breaks its contract."""


class ImportMismatch(VerificationError):  # noqa: N818
    """Error raised when imported attributes differ from the originals."""
