"""
Text-understanding backend client and its concurrency limiter.
"""

from .backend import TextBackend
from .limiter import FifoLimiter

__all__ = ['TextBackend', 'FifoLimiter']
