"""YAML case file parser.

A case file is a stream of YAML documents. The first document may be a
case header (`spec: case`) carrying case-wide settings; every other
document is a step, executed in order:

    spec: case
    title: Random password
    providers:
      random:
        source: hashicorp/random
    ---
    config: |
      resource "random_password" "test" {
        length = 12
      }
    check:
      - resource: random_password.test
        attribute: length
        equal: "12"
"""

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from yaml import SafeLoader, load_all
from yaml.error import MarkedYAMLError

from pytest_acctest.errors import AcceptanceError, CaseSchemaError
from pytest_acctest.schema import Case, CaseHeader, Step

if TYPE_CHECKING:
    from io import TextIOBase
    from pathlib import Path

if TYPE_CHECKING:
    from yaml import BaseLoader

HEADER_SPEC = 'case'


class CaseParser:
    """Parser turning YAML case files into validated `Case` models."""

    def __init__(self, loader: type['BaseLoader'] = SafeLoader) -> None:
        """Initialize the parser.

        Args:
            loader: YAML loader class. The safe loader is used by default.
        """
        self.loader = loader

    def load(self, content: 'TextIOBase | str') -> list[Any]:
        """Load the non-empty YAML documents of a stream.

        Raises:
            CaseSchemaError: If the stream is not valid YAML.
        """
        try:
            documents = list(load_all(content, Loader=self.loader))

        except MarkedYAMLError as base:
            raise CaseSchemaError.from_yaml_error(base) from base

        return [document for document in documents if document is not None]

    def parse(self, content: 'TextIOBase | str', *,
              filename: str | None = None) -> Case:
        """Parse a YAML stream into a case.

        Args:
            content: YAML content as a string or file-like object.
            filename: Case file name for error reporting.

        Returns:
            The validated case.

        Raises:
            CaseSchemaError: If YAML parsing or validation fails.
            ProviderDeclarationConflict: If a provider name is declared
                in several forms.
        """
        documents = self.load(content)

        header: dict[str, Any] = {}
        if documents and self.is_header(documents[0]):
            header = documents.pop(0)
            self.validate(CaseHeader, header, filename=filename)

        if not documents:
            raise CaseSchemaError('Case must contain at least one step')

        steps = []
        for step_num, document in enumerate(documents):
            if self.is_header(document):
                raise CaseSchemaError('Case header must be at first position')
            steps.append(self.validate(Step, document, filename=filename, step_num=step_num))

        return self.validate(Case, {**header, 'steps': steps}, filename=filename)

    def parse_file(self, path: 'Path') -> Case:
        """Parse a case file.

        Args:
            path: Path of the YAML case file.

        Returns:
            The validated case.
        """
        with path.open('rt', encoding='utf-8') as content:
            return self.parse(content, filename=f'{path}')

    @staticmethod
    def is_header(document: Any) -> bool:  # noqa: ANN401
        """Whether a document is a case header."""
        return isinstance(document, dict) and document.get('spec') == HEADER_SPEC

    @staticmethod
    def validate[T: CaseHeader | Step](model: type[T], document: Any, *,  # noqa: ANN401
                                       filename: str | None = None,
                                       step_num: int | None = None) -> T:
        """Validate a document against a model.

        Raises:
            CaseSchemaError: If validation fails.
        """
        try:
            return model.model_validate(document)

        except ValidationError as base:
            data = {
                key: value
                for key, value in document.items()
                if key != 'steps'
            } if isinstance(document, dict) else document

            raise CaseSchemaError.from_pydantic_error(
                base,
                data=data,
                filename=filename,
                step_num=step_num,
            ) from base

        except AcceptanceError as error:
            if error.context is None:
                error.context = {'filename': filename, 'step_num': step_num}
            raise
