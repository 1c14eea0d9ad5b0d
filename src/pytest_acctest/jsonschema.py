"""JSON Schema management."""

from functools import cache
from json import dumps

from pydantic.json_schema import GenerateJsonSchema, JsonSchemaValue, models_json_schema

from pytest_acctest.schema import CaseHeader, Step


class SchemaGenerator(GenerateJsonSchema):
    """JSON Schema generator for case file documents.

    A case file is a stream of documents, each of them either a case
    header or a step, so the schema accepts any of the two.
    """

    @classmethod
    @cache
    def make_schema(cls, indent: int | str | None = 4) -> str:
        """Generate the JSON Schema for case file documents.

        Args:
            indent: Indentation level used for JSON formatting.

        Returns:
            Serialized JSON Schema string.
        """
        refs, definitions = models_json_schema(
            [(CaseHeader, 'validation'), (Step, 'validation')],
            by_alias=True,
            schema_generator=cls,
        )

        schema: JsonSchemaValue = {
            **definitions,
            'anyOf': [
                refs[(CaseHeader, 'validation')],
                refs[(Step, 'validation')],
            ],
            'title': 'pytest-acctest',
            'description': 'JSON Schema for pytest-acctest case documents',
            '$schema': cls.schema_dialect,
        }

        return dumps(
            schema,
            ensure_ascii=False,
            sort_keys=True,
            indent=indent,
        )
