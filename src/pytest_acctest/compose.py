"""Configuration composition.

Composes the configuration text handed to the engine for a step from the
user-authored configuration and the effective provider declarations:

1. a single `terraform { required_providers { ... } }` settings block
   listing every external provider with a source or version;
2. an empty `provider "<name>" {}` block for every external provider
   the configuration does not already configure;
3. the configuration text itself.

A configuration declaring its own top-level `terraform` block is used
as-is, nothing is synthesized for it.

Whether the configuration already configures a provider is answered by
scanning the text into its top-level blocks, so `provider` attributes
nested inside other blocks are never mistaken for provider blocks. The
scanner understands only what it needs for that: block headers, brace
nesting, strings with template interpolation, heredocs and comments.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pytest_acctest.schema.providers import ExternalProvider, merge_providers

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pytest_acctest.schema.cases import Case
    from pytest_acctest.schema.providers import ProviderDeclaration

SETTINGS_INDENT = '  '

HEREDOC_MARKER = '<<'


@dataclass(frozen=True, slots=True)
class Block:
    """A top-level block of a configuration, e.g. `resource "a" "b" {}`."""

    type: str
    labels: tuple[str, ...] = ()


def _skip_line(text: str, position: int) -> int:
    """Return the position of the newline ending the current line."""
    end = text.find('\n', position)
    return len(text) if end < 0 else end


def _skip_block_comment(text: str, position: int) -> int:
    """Return the position after the `*/` closing a comment."""
    end = text.find('*/', position + 2)
    return len(text) if end < 0 else end + 2


def _skip_template(text: str, position: int) -> int:
    """Return the position after the `}` closing a template interpolation.

    Args:
        text: Configuration text.
        position: Position right after the opening `${` or `%{`.
    """
    depth = 0
    length = len(text)

    while position < length:
        char = text[position]
        if char == '"':
            position = _skip_string(text, position)
            continue
        if char == '{':
            depth += 1
        elif char == '}':
            if depth == 0:
                return position + 1
            depth -= 1
        position += 1

    return position


def _skip_string(text: str, position: int) -> int:
    """Return the position after the quote closing a string.

    Args:
        text: Configuration text.
        position: Position of the opening quote.
    """
    position += 1
    length = len(text)

    while position < length:
        char = text[position]
        if char == '\\':
            position += 2
            continue
        if char == '"':
            return position + 1
        if char in '$%' and text.startswith('{', position + 1):
            if text.startswith(char, position - 1):
                position += 2
                continue
            position = _skip_template(text, position + 2)
            continue
        if char == '\n':
            return position
        position += 1

    return position


def _skip_heredoc(text: str, position: int) -> int | None:
    """Return the position after a heredoc, or `None` if there is none.

    Args:
        text: Configuration text.
        position: Position of the `<<` introducer.
    """
    line_end = _skip_line(text, position)
    marker = text[position + len(HEREDOC_MARKER):line_end].removeprefix('-').strip()
    if not marker.isidentifier():
        return None

    position = line_end + 1
    while position < len(text):
        line_end = _skip_line(text, position)
        if text[position:line_end].strip() == marker:
            return line_end
        position = line_end + 1

    return len(text)


def scan_blocks(config: str) -> list[Block]:
    """Scan configuration text into its top-level blocks.

    Args:
        config: Configuration text.

    Returns:
        Top-level blocks in declaration order. Nested blocks and
        attributes are not reported.
    """
    blocks: list[Block] = []
    header: list[str] = []
    assignment = False
    depth = 0

    position = 0
    length = len(config)

    while position < length:
        char = config[position]

        if char == '#' or config.startswith('//', position):
            position = _skip_line(config, position)
            continue

        if config.startswith('/*', position):
            position = _skip_block_comment(config, position)
            continue

        if char == '"':
            end = _skip_string(config, position)
            if depth == 0:
                header.append(config[position + 1:end - 1])
            position = end
            continue

        if config.startswith(HEREDOC_MARKER, position):
            end = _skip_heredoc(config, position)
            if end is not None:
                position = end
                continue

        if char == '{':
            if depth == 0 and header and not assignment and header[0].isidentifier():
                blocks.append(Block(type=header[0], labels=tuple(header[1:])))
            depth += 1
            position += 1
            continue

        if char == '}':
            depth = max(depth - 1, 0)
            if depth == 0:
                header, assignment = [], False
            position += 1
            continue

        if depth == 0:
            if char == '\n':
                header, assignment = [], False
            elif char == '=':
                assignment = True
            elif char.isalpha() or char == '_':
                end = position
                while end < length and (config[end].isalnum() or config[end] in '_-'):
                    end += 1
                header.append(config[position:end])
                position = end
                continue

        position += 1

    return blocks


def has_provider_block(config: str, name: str | None = None) -> bool:
    """Detect a top-level provider configuration block.

    Args:
        config: Configuration text.
        name: Provider name the block must be labelled with; any
            provider block matches when omitted.

    Returns:
        True if a top-level `provider` block exists for the name,
        with a quoted or bare label and with or without a body.
    """
    for block in scan_blocks(config):
        if block.type != 'provider' or not block.labels:
            continue
        if name is None or block.labels[0] == name:
            return True

    return False


def has_terraform_block(config: str) -> bool:
    """Detect a top-level `terraform` settings block."""
    return any(block.type == 'terraform' for block in scan_blocks(config))


def _required_provider_entry(name: str, provider: ExternalProvider) -> str:
    """Render one `required_providers` entry."""
    indent = SETTINGS_INDENT * 2

    entry = f'{indent}{name} = {{\n'
    if provider.source:
        entry += f'{indent}{SETTINGS_INDENT}source = "{provider.source}"\n'
    if provider.version:
        entry += f'{indent}{SETTINGS_INDENT}version = "{provider.version}"\n'
    entry += f'{indent}}}\n'

    return entry


def merge_config(case_providers: 'Mapping[str, ProviderDeclaration]',
                 step_providers: 'Mapping[str, ProviderDeclaration]',
                 config: str, *,
                 skip_provider_block: bool = False) -> str:
    """Compose the configuration text of a step.

    Args:
        case_providers: Case-wide provider declarations.
        step_providers: Step-wide provider declarations, overriding
            case-wide ones by name.
        config: User-authored configuration text.
        skip_provider_block: Do not synthesize provider blocks for
            external providers with a source or version.

    Returns:
        The settings block followed by a blank line, the provider blocks
        (in provider name order) and the configuration text.
    """
    if has_terraform_block(config):
        return config

    required_providers = ''
    provider_blocks = ''

    for name, provider in merge_providers(case_providers, step_providers).items():
        if not isinstance(provider, ExternalProvider):
            continue

        if provider.is_pinned:
            required_providers += _required_provider_entry(name, provider)
            if skip_provider_block:
                continue

        if not has_provider_block(config, name):
            provider_blocks += f'provider "{name}" {{}}\n'

    composed = ''
    if required_providers:
        composed += (
            'terraform {\n'
            f'{SETTINGS_INDENT}required_providers {{\n'
            f'{required_providers}'
            f'{SETTINGS_INDENT}}}\n'
            '}\n'
            '\n'
        )

    # Provider blocks are set apart by an extra line only after a settings block.
    composed += provider_blocks
    if provider_blocks and required_providers:
        composed += '\n'

    return composed + config


def compose_case(case: 'Case') -> list[str]:
    """Compose the configuration of every step of a case.

    Steps without configuration of their own (refresh and some import
    steps) run with the configuration of the step before them.

    Args:
        case: Case to compose.

    Returns:
        Composed configuration texts in step order.
    """
    composed: list[str] = []
    config = ''

    for step in case.steps:
        if step.config:
            config = merge_config(
                case.providers,
                step.providers,
                step.config,
                skip_provider_block=step.skip_provider_block,
            )
        composed.append(config)

    return composed
