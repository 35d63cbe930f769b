"""
Compliance Validator

Checks an application against a rule set. Every rule is evaluated
independently through the predicate interpreter:

    all predicates satisfied  -> compliant
    none satisfied            -> non-compliant
    some satisfied            -> partial

A partial critical check always counts as non-compliant for the overall
verdict. The validation level narrows or tightens that:

    basic     only critical and major rules are evaluated
    standard  every rule is evaluated
    strict    every rule; any partial check fails the application and
              deducts its full penalty

Rules tagged with regulatory frameworks apply only when the request names
one of them.
"""

import logging
from typing import Dict, List, Optional, Sequence

from grant_engine.core.confidence import ConfidenceScorer, scorer as default_scorer
from grant_engine.core.domain_models import (
    SCHEMA_VERSION,
    ApplicationContent,
    ComplianceCheck,
    ComplianceResult,
    ComplianceRule,
    ComplianceStatus,
    PredicateKind,
    Severity,
    ValidationLevel,
)
from grant_engine.core.errors import IncompleteRuleSet, InvalidInput
from .predicates import evaluate_predicate

logger = logging.getLogger(__name__)

OPERATION = "validate_compliance"


class ComplianceValidator:
    """
    Validates application content against compliance rules.

    Usage:
        validator = ComplianceValidator()
        result = validator.validate("app-1", rules, content, rule_set_id="default")
        strict = validator.validate("app-1", rules, content, level=ValidationLevel.STRICT,
                                    framework="EU")
    """

    BASIC_SEVERITIES = (Severity.CRITICAL, Severity.MAJOR)

    # Score deduction per failing check; partial checks deduct half unless strict
    SEVERITY_PENALTY = {
        Severity.CRITICAL: 20.0,
        Severity.MAJOR: 10.0,
        Severity.MINOR: 5.0,
        Severity.WARNING: 2.0,
    }

    # How certain a satisfied/unsatisfied predicate of each kind is
    PREDICATE_EXACTNESS = {
        PredicateKind.PATTERN: 0.9,
        PredicateKind.PRESENCE: 1.0,
        PredicateKind.ABSENCE: 0.95,
        PredicateKind.NUMERIC_BOUND: 1.0,
    }

    def __init__(self, scorer: Optional[ConfidenceScorer] = None):
        self.scorer = scorer or default_scorer

    def validate(
        self,
        application_id: str,
        rules: Sequence[ComplianceRule],
        content: ApplicationContent,
        rule_set_id: Optional[str] = None,
        level: ValidationLevel = ValidationLevel.STANDARD,
        framework: Optional[str] = None,
    ) -> ComplianceResult:
        """
        Validate an application.

        Args:
            application_id: Application being validated
            rules: Rule set to apply
            content: Application content
            rule_set_id: Id of the rule set, for reporting
            level: Validation level (basic / standard / strict)
            framework: Regulatory framework enabling framework-tagged rules

        Raises:
            InvalidInput: blank application id or content missing
            IncompleteRuleSet: no rules at all, or none left at this level
        """
        if not isinstance(application_id, str) or not application_id.strip():
            raise InvalidInput("application id is required", operation=OPERATION, field="applicationId")
        if not isinstance(content, ApplicationContent):
            raise InvalidInput("application content is required", operation=OPERATION,
                               field="applicationContent")
        if not rules:
            raise IncompleteRuleSet(f"rule set {rule_set_id or '(inline)'} has no rules",
                                    operation=OPERATION, field="ruleSetId")

        applied = self.applicable(rules, level, framework)
        kept = {id(rule) for rule in applied}
        skipped = [rule.id for rule in rules if id(rule) not in kept]
        if not applied:
            raise IncompleteRuleSet(
                f"no rule in {rule_set_id or '(inline)'} applies at level {level.value}"
                f"{' for ' + framework if framework else ''}",
                operation=OPERATION, field="validationLevel",
            )

        checks = [self.check(rule, content) for rule in applied]
        strict = level == ValidationLevel.STRICT

        critical_issues = tuple(
            c for c in checks
            if c.severity == Severity.CRITICAL and c.status != ComplianceStatus.COMPLIANT
        )
        partial = [c for c in checks if c.status == ComplianceStatus.PARTIAL]
        overall_compliant = not critical_issues and not (strict and partial)
        unverified = [rule.id for rule in applied if not rule.validation]
        score = self.score(checks, strict=strict)
        confidence = self.scorer.combine([c.confidence for c in checks])

        failing: Dict[str, int] = {}
        for c in checks:
            if c.status != ComplianceStatus.COMPLIANT:
                failing[c.severity.value] = failing.get(c.severity.value, 0) + 1

        logger.info(
            f"Compliance {application_id} ({rule_set_id or 'inline'}): compliant={overall_compliant}, "
            f"score={score}, {len(critical_issues)} critical of {len(checks)} checks"
        )
        if unverified:
            logger.warning(f"Rules without predicates could not be verified: {', '.join(unverified)}")

        return ComplianceResult(
            application_id=application_id,
            rule_set_id=rule_set_id,
            overall_compliant=overall_compliant,
            checks=tuple(checks),
            critical_issues=critical_issues,
            recommendations=tuple(
                self._recommendations(checks, len(critical_issues), len(partial) if strict else 0)
            ),
            compliance_score=score,
            confidence=confidence,
            metadata={
                "schemaVersion": SCHEMA_VERSION,
                "ruleCount": len(applied),
                "unverifiedRules": unverified,
                "failingBySeverity": failing,
                "validationLevel": level.value,
                "regulatoryFramework": framework,
                "skippedRules": skipped,
            },
        )

    def applicable(
        self,
        rules: Sequence[ComplianceRule],
        level: ValidationLevel = ValidationLevel.STANDARD,
        framework: Optional[str] = None,
    ) -> List[ComplianceRule]:
        """Rules evaluated at this level, in rule order."""
        wanted = framework.strip().upper() if framework else None
        selected = []
        for rule in rules:
            if rule.frameworks and wanted not in rule.frameworks:
                continue
            if level == ValidationLevel.BASIC and rule.severity not in self.BASIC_SEVERITIES:
                continue
            selected.append(rule)
        return selected

    def check(self, rule: ComplianceRule, content: ApplicationContent) -> ComplianceCheck:
        """Evaluate one rule."""
        if not rule.validation:
            return ComplianceCheck(
                id=f"check_{rule.id}",
                rule_id=rule.id,
                description=rule.rule,
                category=rule.category,
                status=ComplianceStatus.PARTIAL,
                severity=rule.severity,
                details="Rule has no validation predicates and could not be verified",
                confidence=0.0,
                satisfied=0,
                total=0,
                recommendations=(rule.fix_suggestion,) if rule.fix_suggestion else (),
            )

        outcomes = [evaluate_predicate(p, content) for p in rule.validation]
        satisfied = sum(1 for ok, _ in outcomes if ok)
        total = len(outcomes)

        if satisfied == total:
            status = ComplianceStatus.COMPLIANT
        elif satisfied == 0:
            status = ComplianceStatus.NON_COMPLIANT
        else:
            status = ComplianceStatus.PARTIAL

        confidence = self.scorer.product(
            self.scorer.from_exactness(self.PREDICATE_EXACTNESS[p.kind]) for p in rule.validation
        )

        recommendations = ()
        if status != ComplianceStatus.COMPLIANT:
            recommendations = (rule.fix_suggestion or f"Review: {rule.rule}",)

        logger.debug(f"  {rule.id}: {status.value} ({satisfied}/{total})")

        return ComplianceCheck(
            id=f"check_{rule.id}",
            rule_id=rule.id,
            description=rule.rule,
            category=rule.category,
            status=status,
            severity=rule.severity,
            details="; ".join(detail for _, detail in outcomes),
            confidence=confidence,
            satisfied=satisfied,
            total=total,
            recommendations=recommendations,
        )

    def score(self, checks: Sequence[ComplianceCheck], strict: bool = False) -> float:
        """100 minus severity penalties (half for partial unless strict), floored at 0."""
        score = 100.0
        for c in checks:
            penalty = self.SEVERITY_PENALTY[c.severity]
            if c.status == ComplianceStatus.NON_COMPLIANT:
                score -= penalty
            elif c.status == ComplianceStatus.PARTIAL:
                score -= penalty if strict else penalty / 2.0
        return max(0.0, score)

    def _recommendations(self, checks: Sequence[ComplianceCheck], critical_count: int,
                         strict_partial: int = 0) -> List[str]:
        recommendations: List[str] = []
        for c in checks:
            recommendations.extend(c.recommendations)

        if critical_count > 0:
            recommendations.append(
                f"You have {critical_count} critical compliance issue(s) that must be resolved before submission"
            )
        if strict_partial > 0:
            recommendations.append(
                f"{strict_partial} check(s) are only partially satisfied; "
                f"strict validation requires every check to pass"
            )

        return list(dict.fromkeys(recommendations))
