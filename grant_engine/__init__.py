"""
Grant eligibility and compliance analysis engine.
"""

from .engine import GrantAnalysisEngine

__version__ = "0.1.0"

__all__ = ['GrantAnalysisEngine']
