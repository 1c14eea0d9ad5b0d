"""Pytest collector for YAML case files.

Each collected file is parsed using the preconfigured `CaseParser` and
converted into a single `CaseItem`.
"""

from typing import TYPE_CHECKING

import pytest

from .case import CaseItem

if TYPE_CHECKING:
    from collections.abc import Iterable


class CaseFile(pytest.File):
    """Pytest file collector for acceptance case files."""

    __test__ = False

    def collect(self) -> 'Iterable[CaseItem]':
        """Collect the case of a case file.

        Returns:
            Iterable with the `CaseItem` of the file.

        Raises:
            CaseSchemaError: If the case file is malformed.
        """
        case = self.config.acc_parser.parse_file(self.path)  # type: ignore[attr-defined]

        yield CaseItem.from_parent(
            self,
            name=self.path.name.split('.', 1)[0],
            case=case,
        )
