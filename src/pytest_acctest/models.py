"""Base models shared by case documents, engine results and settings.

Case documents are frozen once parsed, so a step can not be changed by
the hooks it runs. Typos in case files fail validation instead of being
dropped silently.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchemaModel(BaseModel):
    """Frozen model of a case file element.

    YAML documents spell fields in camel case (`expectError`,
    `planOnly`). Python callers may use either spelling. Unknown fields
    are rejected.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        frozen=True,
        extra='forbid',
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ResultModel(BaseModel):
    """Frozen model of engine output.

    Unknown fields are ignored since engine output formats keep growing.
    """

    model_config = ConfigDict(frozen=True, extra='ignore')


class DescribedMixin(SchemaModel):
    """Optional title and description, used in reports only."""

    title: str | None = Field(
        default=None,
        title='Title',
        description='Short human-readable title of the element.',
    )

    description: str | None = Field(
        default=None,
        title='Description',
        description='Detailed human-readable description of the element.',
    )


class SettingsModel(BaseSettings):
    """Frozen settings resolved from the environment.

    Variables the model does not know are ignored.
    """

    model_config = SettingsConfigDict(frozen=True, extra='ignore')
