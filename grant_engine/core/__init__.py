"""
Domain models, configuration, errors and confidence scoring.
"""

from .config import EngineConfig
from .confidence import ConfidenceScorer
from .errors import (
    GrantEngineError,
    InvalidInput,
    IncompleteProfile,
    IncompleteRuleSet,
    BackendUnavailable,
    CacheError,
)

__all__ = [
    'EngineConfig',
    'ConfidenceScorer',
    'GrantEngineError',
    'InvalidInput',
    'IncompleteProfile',
    'IncompleteRuleSet',
    'BackendUnavailable',
    'CacheError',
]
