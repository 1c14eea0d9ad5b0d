"""Acceptance testing harness for infrastructure-provisioning plugins.

The `pytest_acctest` package drives a provisioning engine through an
ordered sequence of declarative test steps and verifies that:
- a configuration converges (re-planning after apply yields no changes);
- declared error and warning diagnostics are actually emitted;
- importing an existing object reproduces the attributes of the object
  that created it.

Cases may be written either in Python, using the immutable models from
`pytest_acctest.schema`, or as YAML case files collected by the bundled
pytest plugin.
"""
