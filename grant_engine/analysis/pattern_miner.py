"""
Success Pattern Miner

Aggregates historical application outcomes into reusable success patterns.

Within each (grant type, organization type) group, every feature in the
catalogue for the requested scope is checked against funded and rejected
applications. A feature becomes a pattern when at least half of the funded
applications exhibit it and it is more common among funded than rejected
applications.
"""

import re
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from grant_engine.core.confidence import ConfidenceScorer, clamp, scorer as default_scorer
from grant_engine.core.domain_models import (
    SCHEMA_VERSION,
    AnalysisScope,
    ApplicationOutcome,
    Outcome,
    PatternDescriptor,
    PatternExample,
    ResultStatus,
    SuccessPattern,
    SuccessPatternResult,
)
from grant_engine.core.errors import InvalidInput
from grant_engine.core.money import find_amount_span
from grant_engine.core.time_utils import days_before_deadline
from grant_engine.core.utils import normalize_whitespace, split_sentences, stable_id, word_count

logger = logging.getLogger(__name__)

OPERATION = "analyze_success_patterns"

ALL_GRANT_TYPES = {"*", "all", "any"}

MIN_FREQUENCY = 0.5
# Score gap (points) that counts as the maximum differential
FULL_SCORE_GAP = 25.0
MAX_EXAMPLES = 3
EXCERPT_CHARS = 200

# (exhibits, excerpt). exhibits is None when the feature cannot be judged.
Detection = Tuple[Optional[bool], str]


@dataclass(frozen=True)
class Feature:
    key: str
    title: str
    description: str
    scope: AnalysisScope
    detect: Callable[[ApplicationOutcome], Detection]
    tips: Tuple[str, ...]


# =============================================================================
# DETECTORS
# =============================================================================

def _sentence_with(text: str, match: re.Match) -> str:
    for sentence in split_sentences(text):
        if match.group(0) in sentence:
            return sentence[:EXCERPT_CHARS]
    start = max(0, match.start() - 60)
    return normalize_whitespace(text[start:match.end() + 60])[:EXCERPT_CHARS]


def text_feature(pattern: str) -> Callable[[ApplicationOutcome], Detection]:
    compiled = re.compile(pattern, re.IGNORECASE)

    def detect(outcome: ApplicationOutcome) -> Detection:
        text = outcome.text
        if not text.strip():
            return None, ""
        match = compiled.search(text)
        if not match:
            return False, ""
        return True, _sentence_with(text, match)

    return detect


def section_feature(pattern: str, text_fallback: Optional[str] = None) -> Callable[[ApplicationOutcome], Detection]:
    name_pattern = re.compile(pattern, re.IGNORECASE)
    fallback = re.compile(text_fallback, re.IGNORECASE) if text_fallback else None

    def detect(outcome: ApplicationOutcome) -> Detection:
        if not outcome.sections:
            return None, ""
        for name, content in outcome.sections.items():
            if name_pattern.search(name.replace("_", " ")) and content.strip():
                return True, normalize_whitespace(content)[:EXCERPT_CHARS]
        if fallback:
            match = fallback.search(outcome.text)
            if match:
                return True, _sentence_with(outcome.text, match)
        return False, ""

    return detect


def detect_quantified_budget(outcome: ApplicationOutcome) -> Detection:
    if outcome.budget_total is not None:
        return True, f"Budget total {outcome.budget_total:,.0f}"
    span = find_amount_span(outcome.text)
    if span:
        return True, span[0]
    if not outcome.text.strip():
        return None, ""
    return False, ""


def detect_detailed_narrative(outcome: ApplicationOutcome) -> Detection:
    words = word_count(outcome.text)
    if words == 0:
        return None, ""
    return words >= 800, f"{words} words"


def detect_submitted_early(outcome: ApplicationOutcome) -> Detection:
    days = days_before_deadline(outcome.submitted_at, outcome.deadline)
    if days is None:
        return None, ""
    return days >= 7, f"Submitted {days:.1f} days before the deadline"


def detect_last_minute(outcome: ApplicationOutcome) -> Detection:
    days = days_before_deadline(outcome.submitted_at, outcome.deadline)
    if days is None:
        return None, ""
    return 0 <= days < 2, f"Submitted {days * 24:.0f} hours before the deadline"


FEATURES: List[Feature] = [
    # Content
    Feature("measurable_outcomes", "Measurable outcomes",
            "States quantified targets or indicators for the project's results",
            AnalysisScope.CONTENT,
            text_feature(r"\b\d+(?:\.\d+)?\s*%|\bKPIs?\b|\btargets?\b|\bmeasurable\b|\bbaseline\b|\bindicators?\b"),
            ("Give each objective a numeric target and a baseline",
             "Say how and when each indicator will be measured")),
    Feature("partnerships", "Named partnerships",
            "Describes partners, collaborators or a consortium",
            AnalysisScope.CONTENT,
            text_feature(r"\bpartner(?:s|ship|ships)?\b|\bconsortium\b|\bcollaborat\w*"),
            ("Name partners and the role each one plays",
             "Attach letters of support from key partners")),
    Feature("sustainability", "Sustainability plan",
            "Explains how activity continues after funding ends",
            AnalysisScope.CONTENT,
            text_feature(r"sustainab\w*|beyond the (?:grant|funding|project) period|long-term|legacy"),
            ("Describe funding sources after the grant ends",
             "Show which outputs remain in use after the project")),
    Feature("evidence_base", "Evidence base",
            "Grounds the proposal in data, prior studies or pilots",
            AnalysisScope.CONTENT,
            text_feature(r"\bevidence\b|\bpilot\w*\b|\bresearch shows\b|\bdata (?:shows?|from)\b|\bstud(?:y|ies)\b"),
            ("Cite the data or pilot results that justify the approach",)),
    Feature("community_engagement", "Community engagement",
            "Involves beneficiaries or stakeholders in design and delivery",
            AnalysisScope.CONTENT,
            text_feature(r"\bcommunit(?:y|ies)\b|\bstakeholders?\b|\bco-?design\w*|\bconsultation\b"),
            ("Explain how beneficiaries shaped the proposal",
             "Describe ongoing stakeholder involvement")),
    Feature("innovation", "Innovation",
            "Presents the approach as novel or innovative",
            AnalysisScope.CONTENT,
            text_feature(r"\binnovat\w*|\bnovel\b|\bfirst[- ]of[- ]its[- ]kind\b|\bpioneer\w*"),
            ("State clearly what is new compared with existing practice",)),
    Feature("risk_management", "Risk management",
            "Identifies risks and mitigations",
            AnalysisScope.CONTENT,
            text_feature(r"\brisks?\b|\bmitigat\w*|\bcontingenc\w*"),
            ("Include a risk register with likelihood, impact and mitigation",)),

    # Structure
    Feature("executive_summary", "Executive summary",
            "Opens with a dedicated summary section",
            AnalysisScope.STRUCTURE,
            section_feature(r"summary|overview|abstract"),
            ("Lead with a one-page summary of need, approach and outcomes",)),
    Feature("budget_justification", "Budget justification",
            "Justifies costs in a dedicated section",
            AnalysisScope.STRUCTURE,
            section_feature(r"budget|costs?|finance"),
            ("Justify every cost line against an activity",)),
    Feature("work_plan", "Work plan",
            "Sets out milestones or a timeline",
            AnalysisScope.STRUCTURE,
            section_feature(r"work ?plan|timeline|milestones?|schedule|gantt", r"\bmilestones?\b|\bgantt\b"),
            ("Break delivery into dated milestones with owners",)),
    Feature("quantified_budget", "Quantified budget",
            "States the amount requested",
            AnalysisScope.STRUCTURE,
            detect_quantified_budget,
            ("State the total request and how it splits across cost categories",)),
    Feature("detailed_narrative", "Detailed narrative",
            "Provides a narrative of at least 800 words",
            AnalysisScope.STRUCTURE,
            detect_detailed_narrative,
            ("Use the available word count to explain the approach in depth",)),

    # Timing
    Feature("submitted_early", "Early submission",
            "Submitted at least a week before the deadline",
            AnalysisScope.TIMING,
            detect_submitted_early,
            ("Plan to submit at least a week before the deadline",)),
    Feature("last_minute", "Final-48-hours submission",
            "Submitted within the final 48 hours before the deadline",
            AnalysisScope.TIMING,
            detect_last_minute,
            ("Leave time for internal review before submission",)),
]


def catalogue(scope: AnalysisScope) -> List[Feature]:
    if scope == AnalysisScope.COMPREHENSIVE:
        return list(FEATURES)
    return [f for f in FEATURES if f.scope == scope]


class SuccessPatternMiner:
    """
    Mines success patterns from a corpus of application outcomes.

    Usage:
        miner = SuccessPatternMiner()
        result = miner.mine(corpus, "community", AnalysisScope.CONTENT)
    """

    def __init__(self, scorer: Optional[ConfidenceScorer] = None, min_sample_size: int = 5):
        self.scorer = scorer or default_scorer
        self.min_sample_size = min_sample_size

    def mine(
        self,
        corpus: Sequence[ApplicationOutcome],
        grant_type: str,
        scope=AnalysisScope.COMPREHENSIVE,
        min_sample_size: Optional[int] = None,
    ) -> SuccessPatternResult:
        """
        Mine patterns for a grant type.

        Args:
            corpus: Historical outcomes
            grant_type: Grant type to analyze ("*" or "all" for every type)
            scope: AnalysisScope or its string value
            min_sample_size: Sample size below which confidence is capped

        Raises:
            InvalidInput: blank grant type, unknown scope, or min_sample_size < 1
        """
        if not isinstance(grant_type, str) or not grant_type.strip():
            raise InvalidInput("grant type is required", operation=OPERATION, field="grantType")
        try:
            scope = AnalysisScope(scope.value if isinstance(scope, AnalysisScope) else str(scope).lower())
        except ValueError:
            raise InvalidInput(f"unknown scope {scope!r}", operation=OPERATION, field="scope")
        minimum = self.min_sample_size if min_sample_size is None else min_sample_size
        if minimum < 1:
            raise InvalidInput("minimum sample size must be at least 1", operation=OPERATION,
                               field="minSampleSize")

        wanted = grant_type.strip().lower()
        matching = [
            o for o in corpus
            if wanted in ALL_GRANT_TYPES or o.grant_type.strip().lower() == wanted
        ]
        sample_size = len(matching)
        low_sample = sample_size < minimum

        metadata = {
            "schemaVersion": SCHEMA_VERSION,
            "lowSample": low_sample,
            "minSampleSize": minimum,
            "corpusSize": len(corpus),
        }

        if not matching:
            logger.info(f"No outcomes for grant type '{grant_type}' in corpus of {len(corpus)}")
            return SuccessPatternResult(
                grant_type=grant_type,
                patterns=(),
                analysis_scope=scope,
                sample_size=0,
                status=ResultStatus.NO_MATCHING_DATA,
                confidence=0.0,
                metadata=dict(metadata, groups=[]),
            )

        groups: Dict[Tuple[str, str], List[ApplicationOutcome]] = {}
        for outcome in matching:
            key = (outcome.grant_type.strip().lower(), outcome.organization_type.strip().lower())
            groups.setdefault(key, []).append(outcome)

        features = catalogue(scope)
        patterns: List[SuccessPattern] = []
        group_summaries = []

        for (group_type, org_type), members in sorted(groups.items()):
            funded = [o for o in members if o.outcome == Outcome.FUNDED]
            rejected = [o for o in members if o.outcome == Outcome.REJECTED]
            group_summaries.append({
                "grantType": group_type,
                "organizationType": org_type,
                "funded": len(funded),
                "rejected": len(rejected),
            })
            if not funded:
                continue

            for feature in features:
                pattern = self._mine_feature(feature, group_type, org_type, members, minimum)
                if pattern is not None:
                    patterns.append(pattern)

        patterns.sort(key=lambda p: (-p.pattern.impact, -p.pattern.frequency, p.id))
        confidence = self.scorer.from_sample_size(sample_size, minimum)

        logger.info(
            f"Mined {len(patterns)} patterns for '{grant_type}' ({scope.value}) from "
            f"{sample_size} outcomes in {len(groups)} groups, confidence {confidence}"
        )
        if low_sample:
            logger.warning(f"Low sample for '{grant_type}': {sample_size} < {minimum}")

        return SuccessPatternResult(
            grant_type=grant_type,
            patterns=tuple(patterns),
            analysis_scope=scope,
            sample_size=sample_size,
            status=ResultStatus.COMPLETE if patterns else ResultStatus.NO_PATTERNS_FOUND,
            confidence=confidence,
            metadata=dict(metadata, groups=group_summaries),
        )

    def _mine_feature(
        self,
        feature: Feature,
        grant_type: str,
        org_type: str,
        members: List[ApplicationOutcome],
        minimum: int,
    ) -> Optional[SuccessPattern]:
        detections = [(o, *feature.detect(o)) for o in members]
        known = [(o, exhibits, excerpt) for o, exhibits, excerpt in detections if exhibits is not None]

        funded = [(o, e, x) for o, e, x in known if o.outcome == Outcome.FUNDED]
        rejected = [(o, e, x) for o, e, x in known if o.outcome == Outcome.REJECTED]
        if not funded:
            return None

        frequency = float(np.mean([1.0 if e else 0.0 for _, e, _ in funded]))
        rejected_rate = float(np.mean([1.0 if e else 0.0 for _, e, _ in rejected])) if rejected else 0.0
        if frequency < MIN_FREQUENCY or frequency <= rejected_rate:
            return None

        differential = self._differential(known, frequency, rejected_rate)
        impact = int(clamp(round(1 + 9 * (0.5 * frequency + 0.5 * differential)), 1, 10))

        # Funded examples, plus one rejected application lacking the feature where there is one
        counter = next(((o, x) for o, e, x in rejected if not e), None)
        examples = [
            PatternExample(application_id=o.application_id, excerpt=x, outcome=o.outcome, score=o.score)
            for o, e, x in funded if e
        ][:MAX_EXAMPLES - 1 if counter else MAX_EXAMPLES]
        if counter:
            o, x = counter
            examples.append(PatternExample(
                application_id=o.application_id,
                excerpt=x or normalize_whitespace(o.text)[:EXCERPT_CHARS],
                outcome=o.outcome,
                score=o.score,
            ))

        group_size = len(members)
        confidence = self.scorer.combine([
            self.scorer.from_sample_size(group_size, minimum),
            self.scorer.from_frequency(frequency),
        ])
        if group_size < minimum:
            confidence = self.scorer.cap(confidence, self.scorer.LOW_SAMPLE_CEILING)

        conditions = [f"grant_type:{grant_type}", f"organization_type:{org_type}"]
        if feature.scope == AnalysisScope.TIMING:
            conditions.append("deadline known in advance")

        return SuccessPattern(
            id=stable_id(f"{grant_type}|{org_type}|{feature.key}", "pat_"),
            grant_type=grant_type,
            organization_type=org_type,
            pattern=PatternDescriptor(
                title=feature.title,
                description=(
                    f"{feature.description}. Seen in {frequency:.0%} of funded and "
                    f"{rejected_rate:.0%} of rejected applications."
                ),
                frequency=round(frequency, 3),
                impact=impact,
            ),
            examples=tuple(examples),
            applicability_conditions=tuple(conditions),
            implementation_tips=feature.tips,
            confidence=confidence,
        )

    def _differential(self, known, frequency: float, rejected_rate: float) -> float:
        """
        Normalized [0, 1] advantage of exhibiting the feature.

        Uses the mean score gap between exhibiting and non-exhibiting
        applications when scores exist, otherwise the funding lift.
        """
        with_scores = np.array([o.score for o, e, _ in known if e and o.score is not None], dtype=float)
        without_scores = np.array([o.score for o, e, _ in known if not e and o.score is not None], dtype=float)

        if with_scores.size and without_scores.size:
            gap = float(with_scores.mean() - without_scores.mean())
            return clamp(gap / FULL_SCORE_GAP, 0.0, 1.0)

        return clamp(frequency - rejected_rate, 0.0, 1.0)
