"""Test suite for the pytest-acctest package.

This package contains unit and integration tests validating
configuration composition, case schema validation, step sequencing,
verification, engine output parsing and pytest integration.
"""
