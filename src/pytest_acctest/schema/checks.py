"""Check predicates evaluated against state and imported instances.

A check receives either the current `State` (state checks, run after a
step's primary action) or the list of imported `InstanceState`
(import checks). It fails by raising `AssertionError` or returning
`False`.

Checks may be written declaratively (`AttributeCheck`,
`InstanceAttributeCheck`) or as plain callables, which are wrapped into
`FunctionCheck`.
"""

from collections.abc import Callable, Mapping, Sequence
from re import Pattern
from typing import TYPE_CHECKING, Annotated, Any, Self

from pydantic import BeforeValidator, Field, ImportString, model_validator

from pytest_acctest.models import DescribedMixin, SchemaModel
from pytest_acctest.names import ResourceAddress  # noqa: TC001

if TYPE_CHECKING:
    from pytest_acctest.driver.results import InstanceState, State


class AttributeMatchMixin(SchemaModel):
    """Mixin declaring how a single attribute value is matched.

    Exactly one of `equal`, `match`, `absent` or `present` must be set.
    """

    attribute: str = Field(
        title='Attribute path',
        description='Flattened attribute path such as `length` or `tags.%`.',
    )

    equal: str | None = Field(
        default=None,
        title='Expected value',
        description='The attribute must exist and be equal to this string.',
    )

    match: Pattern[str] | None = Field(
        default=None,
        title='Expected pattern',
        description='The attribute must exist and match this regular expression.',
    )

    absent: bool = Field(
        default=False,
        title='Absence flag',
        description='The attribute must not exist.',
    )

    present: bool = Field(
        default=False,
        title='Presence flag',
        description='The attribute must exist with any value.',
    )

    @model_validator(mode='after')
    def check_single_matcher(self) -> Self:
        """Require exactly one matcher.

        Raises:
            ValueError: If none or several matchers are set.
        """
        matchers = (
            self.equal is not None,
            self.match is not None,
            self.absent,
            self.present,
        )
        if sum(matchers) != 1:
            raise ValueError('Exactly one of equal, match, absent or present must be set')

        return self

    def match_attributes(self, attributes: Mapping[str, str], owner: str) -> None:
        """Match the attribute within a flat attribute mapping.

        Args:
            attributes: Flat attributes of a resource instance.
            owner: Name of the instance for failure messages.

        Raises:
            AssertionError: If the attribute does not satisfy the matcher.
        """
        value = attributes.get(self.attribute)

        if self.absent:
            if value is not None:
                raise AssertionError(f'{owner}: attribute {self.attribute!r} expected to be absent, got {value!r}')
            return

        if value is None:
            raise AssertionError(f'{owner}: attribute {self.attribute!r} not found')

        if self.equal is not None and value != self.equal:
            raise AssertionError(f'{owner}: attribute {self.attribute!r} expected {self.equal!r}, got {value!r}')

        if self.match is not None and not self.match.search(value):
            raise AssertionError(
                f'{owner}: attribute {self.attribute!r} expected to match '
                f'{self.match.pattern!r}, got {value!r}',
            )


class AttributeCheck(AttributeMatchMixin, DescribedMixin, SchemaModel):
    """Check an attribute of a resource recorded in the state."""

    resource: ResourceAddress = Field(
        title='Resource address',
        description='Address of the resource in the state.',
    )

    def __call__(self, state: 'State') -> None:
        """Run the check.

        Raises:
            AssertionError: If the resource is missing or the attribute
                does not match.
        """
        resource = state.get(self.resource)
        if resource is None:
            raise AssertionError(f'Resource {self.resource!r} not found in state')

        self.match_attributes(resource.instance.attributes, self.resource)


class InstanceAttributeCheck(AttributeMatchMixin, DescribedMixin, SchemaModel):
    """Check an attribute of an imported instance selected by its id."""

    instance: str = Field(
        title='Instance id',
        description='Id of the imported instance to check.',
    )

    def __call__(self, instances: list['InstanceState']) -> None:
        """Run the check.

        Raises:
            AssertionError: If no instance has the id or the attribute
                does not match.
        """
        for item in instances:
            if item.id == self.instance:
                self.match_attributes(item.attributes, self.instance)
                return

        raise AssertionError(f'Instance {self.instance!r} not found in imported state')


class FunctionCheck(DescribedMixin, SchemaModel):
    """Check delegated to a callable."""

    function: ImportString = Field(
        title='Check function',
        description=(
            'Callable (or dotted import path of one) receiving the check '
            'target. It fails by raising AssertionError or returning False.'
        ),
    )

    def __call__(self, target: Any) -> None:  # noqa: ANN401
        """Run the check.

        Raises:
            AssertionError: If the function fails.
        """
        if self.function(target) is False:
            name = getattr(self.function, '__name__', repr(self.function))
            raise AssertionError(f'{name} returned False')


def _wrap_callable(value: Any) -> Any:  # noqa: ANN401
    """Wrap a bare callable into a `FunctionCheck`."""
    if callable(value) and not isinstance(value, SchemaModel):
        return FunctionCheck(function=value)

    return value


type StateCheck = Annotated[AttributeCheck | FunctionCheck, BeforeValidator(_wrap_callable)]

type ImportCheck = Annotated[InstanceAttributeCheck | FunctionCheck, BeforeValidator(_wrap_callable)]


def run_checks(checks: Sequence[Callable[[Any], Any]], target: Any) -> None:  # noqa: ANN401
    """Evaluate checks in declared order, stopping at the first failure.

    Args:
        checks: Check predicates.
        target: State or imported instances passed to every check.

    Raises:
        AssertionError: Describing the first failure and its 1-based
            position among all checks, as `check i/n error: <message>`.
    """
    total = len(checks)

    for position, check in enumerate(checks, start=1):
        try:
            result = check(target)
        except AssertionError as base:
            raise AssertionError(f'check {position}/{total} error: {base}') from base

        if result is False:
            raise AssertionError(f'check {position}/{total} error: returned False')
