"""Verifiers run by the step sequencer after a step's action."""

from .convergence import ConvergenceVerifier, diagnostic_matches, match_diagnostics
from .imports import ImportVerifier, filter_attributes, is_ignored

__all__ = (
    'ConvergenceVerifier',
    'ImportVerifier',
    'diagnostic_matches',
    'filter_attributes',
    'is_ignored',
    'match_diagnostics',
)
