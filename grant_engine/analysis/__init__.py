"""
Analysis components. None of them calls another; the engine composes them.
"""

from .requirement_extractor import RequirementExtractor
from .eligibility_evaluator import EligibilityEvaluator
from .compliance_validator import ComplianceValidator
from .rule_sets import RuleSetRegistry
from .pattern_miner import SuccessPatternMiner
from .guidance import GuidanceComposer

__all__ = [
    'RequirementExtractor',
    'EligibilityEvaluator',
    'ComplianceValidator',
    'RuleSetRegistry',
    'SuccessPatternMiner',
    'GuidanceComposer',
]
