"""
Relational store and result cache.
"""

from .db import Database, PostgresDatabase, open_database
from .analysis_store import AnalysisStore
from .result_cache import ResultCache, MemoryKeyValueCache, SqliteKeyValueCache

__all__ = [
    'Database',
    'PostgresDatabase',
    'open_database',
    'AnalysisStore',
    'ResultCache',
    'MemoryKeyValueCache',
    'SqliteKeyValueCache',
]
