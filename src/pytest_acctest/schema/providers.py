"""Provider declaration models.

A provider is declared in exactly one of three forms:
- `external`: resolved by the engine from a registry (source and version);
- `protocol5` / `protocol6`: served in-process by a factory returning the
  connection data the engine needs to reattach to the running provider.

Declarations are kept in a mapping keyed by provider name, so a single
name can never be bound to two forms at once. Inputs written with the
three parallel collections (`externalProviders`, `protocol5Factories`,
`protocol6Factories`) are folded into that mapping on validation.
"""

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import Discriminator, Field, ImportString, Tag, model_validator

from pytest_acctest.errors import ProviderDeclarationConflict
from pytest_acctest.models import SchemaModel
from pytest_acctest.names import ProviderName  # noqa: TC001

#: Parallel-collection keys (both spellings) mapped onto declaration kinds.
PARALLEL_FORMS: dict[str, str] = {
    'externalProviders': 'external',
    'external_providers': 'external',
    'protocol5Factories': 'protocol5',
    'protocol5_factories': 'protocol5',
    'protocol6Factories': 'protocol6',
    'protocol6_factories': 'protocol6',
}


class ExternalProvider(SchemaModel):
    """Provider resolved by the engine from a registry."""

    kind: Literal['external'] = 'external'

    source: str = Field(
        default='',
        title='Provider source',
        description='Registry source address, e.g. `registry.terraform.io/hashicorp/random`.',
    )

    version: str = Field(
        default='',
        title='Version constraint',
        description='Version constraint such as `1.2.3` or `~> 3.0`.',
    )

    @property
    def is_pinned(self) -> bool:
        """Whether the declaration contributes a required-providers entry."""
        return bool(self.source or self.version)


class _FactoryProvider(SchemaModel):
    """Provider served by an in-process factory."""

    factory: ImportString = Field(
        title='Provider factory',
        description=(
            'Callable (or dotted import path of one) starting the provider '
            'server and returning its reattach configuration.'
        ),
    )

    def start(self) -> Mapping[str, Any]:
        """Invoke the factory."""
        return self.factory()


class Protocol5Factory(_FactoryProvider):
    """In-process provider speaking plugin protocol version 5."""

    kind: Literal['protocol5'] = 'protocol5'


class Protocol6Factory(_FactoryProvider):
    """In-process provider speaking plugin protocol version 6."""

    kind: Literal['protocol6'] = 'protocol6'


def declaration_kind(declaration: Any) -> str:  # noqa: ANN401
    """Return the kind of a declaration, `external` unless tagged otherwise."""
    if isinstance(declaration, SchemaModel):
        return getattr(declaration, 'kind', 'external')

    if isinstance(declaration, Mapping):
        return declaration.get('kind', 'external')

    return 'external'


type ProviderDeclaration = Annotated[
    Annotated[ExternalProvider, Tag('external')]
    | Annotated[Protocol5Factory, Tag('protocol5')]
    | Annotated[Protocol6Factory, Tag('protocol6')],
    Discriminator(declaration_kind),
]


def fold_declarations(data: Mapping[str, Any]) -> dict[str, Any]:
    """Fold parallel provider collections into the `providers` mapping.

    Args:
        data: Raw model input.

    Returns:
        The input with parallel collections removed and their entries
        merged into `providers`, tagged with their kind.

    Raises:
        ProviderDeclarationConflict: If a provider name appears in more
            than one form.
    """
    if not any(key in data for key in PARALLEL_FORMS):
        return dict(data)

    folded = {
        key: value
        for key, value in data.items()
        if key not in PARALLEL_FORMS
    }

    providers: dict[str, Any] = {}
    forms: dict[str, list[str]] = {}

    explicit = folded.pop('providers', None) or {}
    for name, declaration in explicit.items():
        providers[name] = declaration
        forms.setdefault(name, []).append(declaration_kind(declaration))

    for key, kind in PARALLEL_FORMS.items():
        for name, declaration in (data.get(key) or {}).items():
            providers[name] = _tag(declaration, kind)
            forms.setdefault(name, []).append(kind)

    for name, kinds in forms.items():
        if len(kinds) > 1:
            raise ProviderDeclarationConflict(name, kinds)

    folded['providers'] = providers

    return folded


def _tag(declaration: Any, kind: str) -> Any:  # noqa: ANN401
    """Attach the declaration kind to a parallel-collection entry."""
    if isinstance(declaration, SchemaModel):
        return declaration

    if kind == 'external':
        return {'kind': kind, **(declaration or {})}

    if isinstance(declaration, Mapping):
        return {'kind': kind, **declaration}

    return {'kind': kind, 'factory': declaration}


class ProvidersMixin(SchemaModel):
    """Mixin adding provider declarations keyed by provider name."""

    providers: dict[ProviderName, ProviderDeclaration] = Field(
        default_factory=dict,
        title='Provider declarations',
        description=(
            'Provider declarations keyed by provider name. '
            'Step declarations override case declarations with the same name.'
        ),
    )

    @model_validator(mode='before')
    @classmethod
    def fold_parallel_forms(cls, data: Any) -> Any:  # noqa: ANN401
        """Accept the parallel-collection input form."""
        if isinstance(data, Mapping):
            return fold_declarations(data)

        return data


def merge_providers(case_providers: Mapping[str, ProviderDeclaration],
                    step_providers: Mapping[str, ProviderDeclaration]) -> dict[str, ProviderDeclaration]:
    """Build the effective provider set of a step.

    Args:
        case_providers: Case-wide declarations.
        step_providers: Step-wide declarations.

    Returns:
        Case-wide declarations overridden per name by step-wide ones,
        ordered by provider name.
    """
    merged = {**case_providers, **step_providers}

    return {name: merged[name] for name in sorted(merged)}
