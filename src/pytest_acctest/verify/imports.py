"""Import round-trip verification.

An import step brings an existing object under management and checks
that what the provider reads back is what the previous steps created:

1. resolve the import id (literal, function of the state, or an
   attribute of the resource recorded in the state);
2. import it, into a scratch state unless the import persists;
3. run the import checks over the imported instances;
4. optionally compare every imported instance with its counterpart
   recorded before the import, attribute by attribute.
"""

from difflib import unified_diff
from typing import TYPE_CHECKING

from pytest_acctest.errors import ImportMismatch
from pytest_acctest.schema import run_checks

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

if TYPE_CHECKING:
    from pytest_acctest.driver import Driver, ImportResult, InstanceState, State
    from pytest_acctest.schema import ImportSpec

#: Attributes skipped by verification regardless of the ignore-list. Entries
#: ending with a dot ignore every attribute under that prefix.
IMPLICIT_IGNORE = ('%', 'timeouts', 'timeouts.')


def is_ignored(key: str, ignore: 'Iterable[str]') -> bool:
    """Whether an attribute key is covered by an ignore-list.

    Args:
        key: Flattened attribute key, e.g. `tags.env`.
        ignore: Exact keys, or prefixes ending with a dot.
    """
    for entry in ignore:
        if key == entry:
            return True
        if entry.endswith('.') and key.startswith(entry):
            return True

    return False


def filter_attributes(attributes: 'Mapping[str, str]',
                      ignore: 'Iterable[str]') -> dict[str, str]:
    """Drop ignored attributes from a flat attribute mapping."""
    ignore = (*IMPLICIT_IGNORE, *ignore)

    return {
        key: value
        for key, value in sorted(attributes.items())
        if not is_ignored(key, ignore)
    }


def diff_attributes(expected: 'Mapping[str, str]',
                    actual: 'Mapping[str, str]') -> str:
    """Render a unified diff of two flat attribute mappings."""
    lines = unified_diff(
        [f'{key} = {value}' for key, value in expected.items()],
        [f'{key} = {value}' for key, value in actual.items()],
        fromfile='state',
        tofile='import',
        lineterm='',
    )

    return '\n'.join(lines)


class ImportVerifier:
    """Run the import sub-phase of a step."""

    def __init__(self, driver: 'Driver') -> None:
        """Initialize a verifier.

        Args:
            driver: Driver of the case working directory.
        """
        self.driver = driver

    def resolve_id(self, spec: 'ImportSpec', state: 'State') -> str:
        """Resolve the import identifier.

        Args:
            spec: Import parameters of the step.
            state: State recorded before the import.

        Returns:
            The import identifier, prefixed with `idPrefix`.

        Raises:
            ImportMismatch: If the id is derived from a resource missing
                from the state or lacking the id attribute.
        """
        if spec.id is not None:
            import_id = spec.id

        elif spec.id_func is not None:
            import_id = str(spec.id_func(state))

        else:
            resource = state.get(spec.resource_name)
            if resource is None:
                raise ImportMismatch(f'Can not resolve import id: resource {spec.resource_name!r} not found in state')

            attributes = resource.instance.attributes
            if spec.id_attribute == 'id' and resource.instance.id:
                import_id = resource.instance.id
            elif spec.id_attribute in attributes:
                import_id = attributes[spec.id_attribute]
            else:
                raise ImportMismatch(
                    f'Can not resolve import id: attribute {spec.id_attribute!r} '
                    f'not found on resource {spec.resource_name!r}',
                )

        return f'{spec.id_prefix}{import_id}'

    def run(self, spec: 'ImportSpec', state: 'State') -> 'ImportResult':
        """Import, check and verify.

        Args:
            spec: Import parameters of the step.
            state: State recorded before the import.

        Returns:
            The import result.

        Raises:
            AssertionError: If an import check fails.
            ImportMismatch: If verification finds a difference.
            EngineError: If the import fails.
        """
        import_id = self.resolve_id(spec, state)

        result = self.driver.import_state(
            spec.resource_name,
            import_id,
            persist=spec.persist,
        )
        if result.errors:
            return result

        instances = list(result.instances)
        if spec.check:
            run_checks(spec.check, instances)

        if spec.verify:
            self.verify(instances, state, ignore=spec.verify_ignore)

        return result

    @staticmethod
    def find_counterpart(instance: 'InstanceState', state: 'State') -> 'InstanceState | None':
        """Find the instance recorded before the import for an imported one.

        Instances are paired by id, or by address when ids are missing.
        """
        candidates = state.instances

        for item in candidates:
            if instance.id and item.id == instance.id:
                return item

        for item in candidates:
            if instance.address and item.address == instance.address:
                return item

        return None

    def verify(self, instances: 'Iterable[InstanceState]', state: 'State', *,
               ignore: 'Iterable[str]' = ()) -> None:
        """Compare imported instances with the instances recorded before.

        Args:
            instances: Imported instances.
            state: State recorded before the import.
            ignore: Attributes expected to differ.

        Raises:
            ImportMismatch: If an instance has no counterpart or any
                attribute not ignored differs.
        """
        ignore = tuple(ignore)

        for instance in instances:
            original = self.find_counterpart(instance, state)
            if original is None:
                raise ImportMismatch(f'Imported instance {instance.id!r} not found in state')

            expected = filter_attributes(original.attributes, ignore)
            actual = filter_attributes(instance.attributes, ignore)

            if expected != actual:
                raise ImportMismatch(
                    f'Imported instance {instance.id!r} differs from state '
                    f'(add expected differences to verifyIgnore):\n'
                    f'{diff_attributes(expected, actual)}',
                )
