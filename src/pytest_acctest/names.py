"""Name primitive types and validation rules.

This module defines the identifier patterns used for provider names and
resource addresses, and their strongly-typed Pydantic aliases.
"""

from re import ASCII
from re import compile as regexp
from typing import Annotated

from pydantic import Field

#: Base pattern for engine identifiers (provider local names, resource
#: types and resource names).
_NAME_PATTERN = r'[a-zA-Z_][\w-]*'

#: Optional instance key of a resource address: `[0]` or `["key"]`.
_INDEX_PATTERN = r'(\[(\d+|"[^"]*")\])?'

#: Compiled pattern for provider local names.
PROVIDER_PATTERN = regexp(
    r'^(?P<name>[a-z][a-z0-9-]*)$',
    flags=ASCII,
)

#: Compiled pattern for resource addresses such as `random_id.test`,
#: `data.http.probe` or `module.net.aws_vpc.main[0]`.
ADDRESS_PATTERN = regexp(
    rf'^((module\.{_NAME_PATTERN}{_INDEX_PATTERN}\.)*)'
    rf'(?P<mode>data\.)?(?P<type>{_NAME_PATTERN})\.(?P<name>{_NAME_PATTERN}){_INDEX_PATTERN}$',
    flags=ASCII,
)


ProviderName = Annotated[
    str, Field(
        pattern=PROVIDER_PATTERN.pattern,
        title='Provider local name',
        description=(
            'Local name of a provider as used in configuration, '
            'for example `random` or `null`.'
        ),
        examples=[
            'random',
            'null',
        ],
    ),
]

ResourceAddress = Annotated[
    str, Field(
        pattern=ADDRESS_PATTERN.pattern,
        title='Resource address',
        description=(
            'Address of a resource instance in the state, '
            'for example `random_id.test`.'
        ),
        examples=[
            'random_id.test',
            'data.http.probe',
        ],
    ),
]
