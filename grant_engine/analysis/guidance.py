"""
Guidance Composer

Combines a requirement analysis (and optionally an eligibility check and mined
success patterns) into advisory application guidance: sections to write, a
preparation timeline and strategic advice.

The application stage trims the timeline to the tasks still ahead and adds
stage-specific advice. The guidance type selects which parts are returned:

    strategic      advice and competitive factors
    tactical       timeline and advice
    technical      sections
    comprehensive  everything
"""

import re
import logging
from datetime import timedelta
from typing import List, Optional, Sequence

from grant_engine.core.confidence import ConfidenceScorer, scorer as default_scorer
from grant_engine.core.domain_models import (
    ApplicationGuidance,
    ApplicationStage,
    EligibilityCheck,
    GrantAnalysisResult,
    GrantRequirement,
    GuidanceSection,
    GuidanceType,
    RequirementCategory,
    RequirementKind,
    ResultStatus,
    SuccessPattern,
    TimelineTask,
)
from grant_engine.core.time_utils import parse_date_maybe

logger = logging.getLogger(__name__)


SECTION_NAMES = {
    RequirementCategory.PROJECT: "Project Description",
    RequirementCategory.TECHNICAL: "Methodology",
    RequirementCategory.ORGANIZATIONAL: "Organisation and Track Record",
    RequirementCategory.FINANCIAL: "Budget and Justification",
    RequirementCategory.LEGAL: "Compliance and Governance",
}

SECTION_KEYWORDS = {
    RequirementCategory.PROJECT: r"project|description|summary|impact|outcomes?",
    RequirementCategory.TECHNICAL: r"method\w*|technical|approach",
    RequirementCategory.ORGANIZATIONAL: r"organi[sz]ation\w*|track record|team|experience",
    RequirementCategory.FINANCIAL: r"budget|financ\w*|costs?",
    RequirementCategory.LEGAL: r"complian\w*|governance|legal",
}

COMMON_MISTAKES = {
    RequirementCategory.PROJECT: (
        "Describing activities without stating the outcomes they lead to",
        "Objectives that cannot be measured",
    ),
    RequirementCategory.TECHNICAL: (
        "Methods that do not map to the stated objectives",
        "No risk or contingency plan",
    ),
    RequirementCategory.ORGANIZATIONAL: (
        "Claiming experience without dates, amounts or references",
        "Omitting the roles of named staff and partners",
    ),
    RequirementCategory.FINANCIAL: (
        "Cost lines without justification",
        "Totals that do not match the itemised budget",
    ),
    RequirementCategory.LEGAL: (
        "Missing policies the funder asked for (safeguarding, data protection)",
        "Registration numbers not supplied",
    ),
}

ORGANIZATION_ADVICE = {
    "nonprofit": "Emphasise community benefit, governance and how beneficiaries shape the work",
    "sme": "Show the commercial route to market and how the grant de-risks growth",
    "startup": "Evidence team capability and show how delivery risk is managed",
    "university": "Set out the pathway to impact beyond academic outputs",
    "research": "Stress methodological rigour and how findings will be used",
    "public": "Demonstrate value for money and alignment with policy priorities",
}

_WORD_LIMIT = re.compile(
    r"(?:maximum(?:\s+of)?|max\.?|up\s+to|no\s+more\s+than|not\s+exceed(?:ing)?|limit(?:ed)?\s+(?:of|to))\s+"
    r"(\d[\d,]*)\s+words",
    re.IGNORECASE,
)
_WORD_LIMIT_BARE = re.compile(r"\b(\d[\d,]*)[- ]words?\b", re.IGNORECASE)

# (task, days before deadline, importance, dependencies)
BASE_TIMELINE = [
    ("Confirm eligibility and gather evidence", 42, 10, ()),
    ("Draft narrative sections", 28, 9, ("Confirm eligibility and gather evidence",)),
    ("Prepare budget and justification", 21, 9, ("Confirm eligibility and gather evidence",)),
    ("Internal review against requirements", 10, 8, ("Draft narrative sections", "Prepare budget and justification")),
    ("Final checks and submission", 3, 10, ("Internal review against requirements",)),
]

STAGE_ORDER = [
    ApplicationStage.PREPARATION,
    ApplicationStage.DRAFTING,
    ApplicationStage.REVIEW,
    ApplicationStage.SUBMISSION,
]

# Stage each timeline task belongs to
TASK_STAGES = {
    "Confirm eligibility and gather evidence": ApplicationStage.PREPARATION,
    "Collect registration documents and policies": ApplicationStage.PREPARATION,
    "Secure partner agreements and letters of support": ApplicationStage.PREPARATION,
    "Draft narrative sections": ApplicationStage.DRAFTING,
    "Prepare budget and justification": ApplicationStage.DRAFTING,
    "Internal review against requirements": ApplicationStage.REVIEW,
    "Final checks and submission": ApplicationStage.SUBMISSION,
}

STAGE_ADVICE = {
    ApplicationStage.PREPARATION: (
        "Check the funder's priorities and recent awards before committing to a project design",
        "Gather registration documents, accounts and policies early",
    ),
    ApplicationStage.DRAFTING: (
        "Answer each assessment criterion in the order the funder lists them",
        "Tie every budget line to an activity in the narrative",
    ),
    ApplicationStage.REVIEW: (
        "Have someone outside the project read the application against the criteria",
        "Check figures, dates and names are consistent across sections",
    ),
    ApplicationStage.SUBMISSION: (
        "Confirm attachments, word limits and signatures before uploading",
        "Submit at least a day before the deadline and keep the confirmation",
    ),
}

# How many mined success patterns are quoted as competitive factors
MAX_PATTERN_FACTORS = 3


class GuidanceComposer:
    """
    Composes application guidance.

    Usage:
        composer = GuidanceComposer()
        guidance = composer.compose(analysis, "nonprofit", eligibility=check,
                                    stage=ApplicationStage.DRAFTING, patterns=patterns)
    """

    def __init__(self, scorer: Optional[ConfidenceScorer] = None):
        self.scorer = scorer or default_scorer

    def compose(
        self,
        analysis: GrantAnalysisResult,
        organization_type: str,
        eligibility: Optional[EligibilityCheck] = None,
        stage: ApplicationStage = ApplicationStage.PREPARATION,
        guidance_type: GuidanceType = GuidanceType.COMPREHENSIVE,
        patterns: Sequence[SuccessPattern] = (),
    ) -> ApplicationGuidance:
        """
        Compose guidance for one grant and organization type.

        Args:
            analysis: Requirement analysis of the grant
            organization_type: Applicant organization type
            eligibility: Eligibility check of the applicant, if one was run
            stage: Where the applicant is in the application process
            guidance_type: Which parts of the guidance to return
            patterns: Mined success patterns for the grant type, highest impact first
        """
        ranked = self._rank(analysis.requirements)
        wants = self._parts(guidance_type)

        sections = []
        if "sections" in wants:
            sections = [
                self._section(category, [r for r in ranked if r.category == category])
                for category in self._category_order(ranked)
            ]

        guidance = ApplicationGuidance(
            grant_id=analysis.grant_id,
            organization_type=organization_type,
            sections=tuple(sections),
            timeline=tuple(self._timeline(analysis, ranked, stage)) if "timeline" in wants else (),
            strategic_advice=tuple(
                self._advice(analysis, ranked, organization_type, eligibility, stage)
            ) if "advice" in wants else (),
            competitive_factors=tuple(
                self._competitive_factors(analysis, ranked, eligibility, organization_type, patterns)
            ) if "factors" in wants else (),
            application_stage=stage,
            guidance_type=guidance_type,
        )

        logger.info(
            f"Guidance for {analysis.grant_id} ({organization_type}, {stage.value}, {guidance_type.value}): "
            f"{len(sections)} sections, {len(guidance.timeline)} tasks"
        )
        return guidance

    def _parts(self, guidance_type: GuidanceType) -> set:
        return {
            GuidanceType.STRATEGIC: {"advice", "factors"},
            GuidanceType.TACTICAL: {"timeline", "advice"},
            GuidanceType.TECHNICAL: {"sections"},
        }.get(guidance_type, {"sections", "timeline", "advice", "factors"})

    def _rank(self, requirements: Sequence[GrantRequirement]) -> List[GrantRequirement]:
        """Highest priority first; importance and confidence meet only through the scorer."""
        return sorted(
            requirements,
            key=lambda r: (-self.scorer.priority(r.importance, r.confidence), r.id),
        )

    def _category_order(self, ranked: Sequence[GrantRequirement]) -> List[RequirementCategory]:
        order: List[RequirementCategory] = []
        for requirement in ranked:
            if requirement.category not in order:
                order.append(requirement.category)
        return order

    def _section(self, category: RequirementCategory, requirements: List[GrantRequirement]) -> GuidanceSection:
        mandatory = [r for r in requirements if r.kind == RequirementKind.MANDATORY]
        other = len(requirements) - len(mandatory)

        guidance = f"Address {len(mandatory)} mandatory requirement(s)"
        if other:
            guidance += f" and {other} preferred or optional one(s)"
        guidance += f" in the {SECTION_NAMES[category].lower()}."

        return GuidanceSection(
            name=SECTION_NAMES[category],
            guidance=guidance,
            examples=tuple(dict.fromkeys(r.source_excerpt for r in requirements))[:2],
            common_mistakes=COMMON_MISTAKES[category],
            word_limit=self._word_limit(category, requirements),
            required_elements=tuple(r.description for r in mandatory),
        )

    def _word_limit(self, category: RequirementCategory, requirements: List[GrantRequirement]) -> Optional[int]:
        keywords = re.compile(SECTION_KEYWORDS[category], re.IGNORECASE)
        for requirement in requirements:
            for text in (requirement.description, requirement.source_excerpt):
                match = _WORD_LIMIT.search(text) or _WORD_LIMIT_BARE.search(text)
                if match and (keywords.search(text) or requirement.category == category):
                    return int(match.group(1).replace(",", ""))
        return None

    def _timeline(
        self,
        analysis: GrantAnalysisResult,
        ranked: Sequence[GrantRequirement],
        stage: ApplicationStage = ApplicationStage.PREPARATION,
    ) -> List[TimelineTask]:
        """Tasks from the current stage onwards, counted back from the deadline."""
        deadline = parse_date_maybe(str(analysis.metadata.get("deadline") or ""))

        steps = list(BASE_TIMELINE)
        if any(re.search(r"partner|consortium|collaborat", r.description, re.IGNORECASE) for r in ranked):
            steps.insert(1, ("Secure partner agreements and letters of support", 35, 8,
                             ("Confirm eligibility and gather evidence",)))
        if any(r.category == RequirementCategory.LEGAL and r.kind == RequirementKind.MANDATORY for r in ranked):
            steps.insert(1, ("Collect registration documents and policies", 35, 9, ()))

        current = STAGE_ORDER.index(stage)
        steps = [s for s in steps if STAGE_ORDER.index(TASK_STAGES[s[0]]) >= current]
        kept = {s[0] for s in steps}

        tasks = []
        for task, days_before, importance, dependencies in steps:
            dependencies = [d for d in dependencies if d in kept]
            if deadline:
                due = (deadline - timedelta(days=days_before)).date().isoformat()
            else:
                due = f"{days_before} days before deadline"
            tasks.append(TimelineTask(task=task, deadline=due, importance=importance,
                                      dependencies=tuple(dependencies)))
        return tasks

    def _advice(
        self,
        analysis: GrantAnalysisResult,
        ranked: Sequence[GrantRequirement],
        organization_type: str,
        eligibility: Optional[EligibilityCheck],
        stage: ApplicationStage = ApplicationStage.PREPARATION,
    ) -> List[str]:
        advice: List[str] = []

        if analysis.status == ResultStatus.NO_REQUIREMENTS_FOUND:
            advice.append("No explicit requirements were found; confirm the criteria with the funder")
        elif analysis.confidence < 50:
            advice.append("Requirement extraction confidence is low; check the full call text")

        if eligibility is not None:
            if not eligibility.overall_eligible:
                for missing in eligibility.missing_requirements:
                    advice.append(f"Resolve before applying: {missing}")
            incomplete = eligibility.metadata.get("incompleteFields") or []
            if incomplete:
                advice.append(f"Complete the organization profile: {', '.join(incomplete)}")

        for requirement in [r for r in ranked if r.kind == RequirementKind.MANDATORY][:3]:
            advice.append(f"Prioritise: {requirement.description}")

        advice.extend(STAGE_ADVICE[stage])

        org_advice = ORGANIZATION_ADVICE.get(organization_type.strip().lower())
        if org_advice:
            advice.append(org_advice)

        return list(dict.fromkeys(advice))

    def _competitive_factors(
        self,
        analysis: GrantAnalysisResult,
        ranked: Sequence[GrantRequirement],
        eligibility: Optional[EligibilityCheck],
        organization_type: str = "",
        patterns: Sequence[SuccessPattern] = (),
    ) -> List[str]:
        factors: List[str] = []

        for requirement in ranked:
            if requirement.kind == RequirementKind.PREFERRED:
                factors.append(f"Preferred: {requirement.description}")

        if eligibility is not None:
            for strength in eligibility.strengths:
                factors.append(f"Strength: {strength}")

        funding = analysis.metadata.get("fundingAmount")
        if funding:
            factors.append(f"Funding available: {funding}")

        org_type = organization_type.strip().lower()
        matching = [p for p in patterns if p.organization_type.strip().lower() == org_type] or list(patterns)
        for pattern in matching[:MAX_PATTERN_FACTORS]:
            factors.append(f"Success pattern: {pattern.pattern.title} "
                           f"(seen in {pattern.pattern.frequency:.0%} of funded applications)")

        return list(dict.fromkeys(factors))
