"""
Requirement Extractor
=====================

Turns grant announcement text into structured requirements and eligibility
criteria.

basic: explicit requirements only, matched against known requirement
       phrasings ("must", "required", "preferred", "may", ...)
deep:  basic + implicit requirements from implication rules and, when a
       text backend is configured, from the backend

Every requirement and criterion carries a verbatim excerpt of the input.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple

from grant_engine.api.backend import TextBackend
from grant_engine.core.confidence import ConfidenceScorer, scorer as default_scorer
from grant_engine.core.domain_models import (
    SCHEMA_VERSION,
    AnalysisDepth,
    CriterionKind,
    EligibilityCriterion,
    GrantAnalysisResult,
    GrantRequirement,
    RequirementCategory,
    RequirementKind,
    ResultStatus,
)
from grant_engine.core.errors import InvalidInput
from grant_engine.core.money import find_amount_span
from grant_engine.core.time_utils import parse_date_maybe
from grant_engine.core.utils import split_sentences, stable_id, word_count
from grant_engine.ingest.text_cleaner import AnnouncementTextCleaner, looks_like_html

logger = logging.getLogger(__name__)

OPERATION = "analyze_grant_requirements"


# =============================================================================
# LEXICONS
# =============================================================================

# (pattern, kind, exactness). Checked strongest-first.
REQUIREMENT_MARKERS: List[Tuple[str, RequirementKind, float]] = [
    (r"\bmust\b", RequirementKind.MANDATORY, 1.0),
    (r"\bshall\b", RequirementKind.MANDATORY, 1.0),
    (r"\bmandatory\b", RequirementKind.MANDATORY, 1.0),
    (r"\b(?:is|are)\s+required\s+to\b", RequirementKind.MANDATORY, 1.0),
    (r"\brequired\b", RequirementKind.MANDATORY, 0.95),
    (r"\bneeds?\s+to\b", RequirementKind.MANDATORY, 0.85),
    (r"\b(?:is|are)\s+expected\s+to\b", RequirementKind.MANDATORY, 0.85),
    (r"\bpreferred\b", RequirementKind.PREFERRED, 0.9),
    (r"\bpreference\s+will\s+be\s+given\b", RequirementKind.PREFERRED, 0.9),
    (r"\bdesirable\b", RequirementKind.PREFERRED, 0.9),
    (r"\bstrongly\s+encouraged\b", RequirementKind.PREFERRED, 0.85),
    (r"\bideally\b", RequirementKind.PREFERRED, 0.8),
    (r"\bshould\b", RequirementKind.PREFERRED, 0.8),
    (r"\boptional\b", RequirementKind.OPTIONAL, 0.85),
    (r"\bmay\b", RequirementKind.OPTIONAL, 0.7),
    (r"\bcan\s+(?:also\s+)?(?:include|submit|provide|attach)\b", RequirementKind.OPTIONAL, 0.7),
    (r"\bwelcome[sd]?\b", RequirementKind.OPTIONAL, 0.7),
]

BASE_IMPORTANCE = {
    RequirementKind.MANDATORY: 10,
    RequirementKind.PREFERRED: 7,
    RequirementKind.OPTIONAL: 4,
}

CATEGORY_TERMS: Dict[RequirementCategory, List[str]] = {
    RequirementCategory.FINANCIAL: [
        r"budget", r"fund(?:ing|s)?\b", r"costs?\b", r"financ", r"audit", r"revenue", r"\bincome\b",
        r"turnover", r"accounts\b", r"match[- ]fund", r"co-?fund", r"bank", r"expenditure",
        r"invoic", r"\bvat\b", r"salar",
    ],
    RequirementCategory.LEGAL: [
        r"legal", r"\blaws?\b", r"complian", r"regulat", r"gdpr", r"data protection",
        r"licen[cs]e", r"insurance", r"contract", r"intellectual property", r"ethic",
        r"safeguarding", r"permit", r"certif", r"policy", r"policies",
    ],
    RequirementCategory.TECHNICAL: [
        r"technical", r"technolog", r"system", r"software", r"infrastructure",
        r"methodolog", r"equipment", r"digital", r"platform", r"engineering", r"prototype",
    ],
    RequirementCategory.ORGANIZATIONAL: [
        r"organi[sz]ation", r"registered", r"non-?profit", r"not-for-profit", r"charit",
        r"\bteam\b", r"staff", r"personnel", r"\byears?\b", r"history", r"track record",
        r"governance", r"\bboard\b", r"experience", r"capacity", r"partner", r"consortium",
        r"established",
    ],
    RequirementCategory.PROJECT: [
        r"project", r"outcome", r"impact", r"deliverable", r"timeline", r"milestone",
        r"beneficiar", r"duration", r"objective", r"activit", r"evaluation", r"work ?plan",
    ],
}

# Tie-break order when two categories score equally
CATEGORY_PRIORITY = [
    RequirementCategory.FINANCIAL,
    RequirementCategory.LEGAL,
    RequirementCategory.TECHNICAL,
    RequirementCategory.ORGANIZATIONAL,
    RequirementCategory.PROJECT,
]

REQUIREMENT_VERBS = (
    r"be|have|hold|submit|provide|demonstrate|include|maintain|show|attach|comply|agree|"
    r"obtain|deliver|supply|use|ensure|complete|register|document|describe|outline|"
    r"present|secure|evidence|commit|contribute"
)

_CLAUSE_SPLIT = re.compile(
    rf"\s*;\s*|,?\s+and\s+(?=(?:{REQUIREMENT_VERBS})\b)|,\s+(?=(?:{REQUIREMENT_VERBS})\b)",
    re.IGNORECASE,
)

ELIGIBILITY_CUES = re.compile(
    r"\b(?:applicants?|eligib\w*|open\s+to|lead\s+(?:organi[sz]ation|applicant)|"
    r"only|must\s+be|who\s+can\s+apply|organi[sz]ations?)\b",
    re.IGNORECASE,
)

# Implicit requirements unlocked by deep analysis: trigger -> requirement
IMPLICATION_RULES = [
    {
        "trigger": r"community\s+(?:development|engagement|based|led)",
        "description": "Demonstrated experience delivering community development work",
        "category": RequirementCategory.ORGANIZATIONAL,
    },
    {
        "trigger": r"\bpartnership|\bconsortium|\bcollaborat",
        "description": "Formal partnership or collaboration agreements with named partners",
        "category": RequirementCategory.ORGANIZATIONAL,
    },
    {
        "trigger": r"match(?:ed)?[- ]fund|\bco-?fund",
        "description": "Evidence of confirmed match funding",
        "category": RequirementCategory.FINANCIAL,
    },
    {
        "trigger": r"personal data|participants'? data|data protection|\bgdpr\b",
        "description": "Data protection (GDPR) compliance arrangements",
        "category": RequirementCategory.LEGAL,
    },
    {
        "trigger": r"\bchildren\b|young people|vulnerable adults",
        "description": "Safeguarding policy and named safeguarding lead",
        "category": RequirementCategory.LEGAL,
    },
    {
        "trigger": r"\bresearch\b|\bclinical trial|\bstudy\b",
        "description": "Robust research methodology and ethics approval",
        "category": RequirementCategory.TECHNICAL,
    },
    {
        "trigger": r"\bdigital\b|\bsoftware\b|\bplatform\b",
        "description": "Technical delivery plan showing in-house or contracted technical capability",
        "category": RequirementCategory.TECHNICAL,
    },
    {
        "trigger": r"\boutcomes?\b|\bimpact\b",
        "description": "Monitoring and evaluation plan for the stated outcomes",
        "category": RequirementCategory.PROJECT,
    },
    {
        "trigger": r"\bbudget\b|\bcosts?\b",
        "description": "Itemised budget with justification of each cost line",
        "category": RequirementCategory.FINANCIAL,
    },
    {
        "trigger": r"sustainab|beyond the (?:grant|funding) period|long-term",
        "description": "Sustainability plan for continuing activity beyond the funding period",
        "category": RequirementCategory.PROJECT,
    },
]

INFERRED_EXACTNESS = 0.55
BACKEND_EXACTNESS = 0.5

_WORD_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_DEADLINE_PATTERN = re.compile(
    r"(?:deadline|closing date|closes?|close on|submitted by|submit by|due by|no later than)"
    r"\D{0,20}?"
    r"(\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]+\s+\d{4}|\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2}|"
    r"[A-Za-z]+\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})",
    re.IGNORECASE,
)


def _to_int(token: str) -> Optional[int]:
    token = token.lower().strip()
    if token.isdigit():
        return int(token)
    return _WORD_NUMBERS.get(token)


@dataclass
class _Evidence:
    """Mutable accumulator while a criterion is being collected."""
    kind: CriterionKind
    text: str
    conditions: Tuple[str, ...]
    mandatory: bool
    excerpt: str
    exactness: float
    sentences: int = 1


# =============================================================================
# ELIGIBILITY CONDITION DETECTORS
# =============================================================================

VERIFICATION_METHODS = {
    CriterionKind.LOCATION: "Registered address or certificate of incorporation",
    CriterionKind.SIZE: "Staff headcount records or latest annual report",
    CriterionKind.SECTOR: "Governing document objects or description of activities",
    CriterionKind.LEGAL: "Registration certificate (charity or company number)",
    CriterionKind.FINANCIAL: "Audited accounts or signed financial statements",
    CriterionKind.EXPERIENCE: "Date of registration and record of previous grants",
}

LEGAL_TYPES = [
    (r"\bnon-?profits?\b|\bnot-for-profit\b|\bcharit(?:y|ies|able)\b|\bngos?\b|\bvoluntary\s+organi[sz]ations?\b",
     "org_type:nonprofit", "Must be a nonprofit organization"),
    (r"\buniversit(?:y|ies)\b|\bhigher education institutions?\b",
     "org_type:university", "Must be a university or higher education institution"),
    (r"\bresearch\s+(?:organi[sz]ations?|institutes?|institutions?|centres?|centers?)\b",
     "org_type:research", "Must be a research organization"),
    (r"\bstart-?ups?\b",
     "org_type:startup", "Must be a startup"),
    (r"\bpublic\s+(?:bodies|body|sector\s+organi[sz]ations?)\b|\blocal\s+authorit(?:y|ies)\b",
     "org_type:public", "Must be a public-sector body"),
    (r"\blimited\s+compan(?:y|ies)\b",
     "legal_form:limited company", "Must be a limited company"),
    (r"\bcommunity\s+interest\s+compan(?:y|ies)\b|\bCICs?\b",
     "legal_form:community interest company", "Must be a community interest company"),
    (r"\bco-?operatives?\b",
     "legal_form:cooperative", "Must be a cooperative"),
]

SECTOR_TERMS = [
    "health", "healthcare", "education", "environment", "agriculture", "energy",
    "technology", "arts", "culture", "social care", "housing", "transport",
    "manufacturing", "tourism", "community development", "sport", "heritage",
    "climate", "food", "digital", "life sciences", "creative industries",
]

_LOCATION_PATTERN = re.compile(
    r"\b(?:based|located|registered|operating|headquartered|established|resident)\s+in\s+"
    r"(?:the\s+)?"
    r"((?:[A-Z][\w\-\.]*)(?:(?:\s+|\s*,\s*|\s+(?:or|and)\s+)(?:the\s+)?[A-Z][\w\-\.]*)*)"
)
_LOCATION_SPLIT = re.compile(r"\s*,\s*|\s+or\s+|\s+and\s+")

_EMPLOYEE_MAX = re.compile(
    r"\b(?:fewer\s+than|less\s+than|under|below)\s+(\d[\d,]*)\s+(?:employees|staff|people|FTE)", re.IGNORECASE)
_EMPLOYEE_MAX_INCLUSIVE = re.compile(
    r"\b(?:up\s+to|no\s+more\s+than|maximum\s+of|at\s+most)\s+(\d[\d,]*)\s+(?:employees|staff|people|FTE)",
    re.IGNORECASE)
_EMPLOYEE_MIN = re.compile(
    r"\b(?:at\s+least|minimum\s+of|more\s+than|over)\s+(\d[\d,]*)\s+(?:employees|staff|people|FTE)", re.IGNORECASE)
_SME = re.compile(r"\bSMEs?\b|small\s+and\s+medium[- ]sized\s+enterprises?", re.IGNORECASE)
_SIZE_BAND = re.compile(r"\b(micro|small|medium)[- ](?:sized\s+)?(?:enterprises?|organi[sz]ations?|businesses|charities)",
                        re.IGNORECASE)

_REVENUE_BOUND = re.compile(
    r"\b(?:annual\s+)?(?:turnover|revenue|income)\b[^.;]{0,40}?"
    r"\b(at\s+least|minimum\s+of|more\s+than|over|above|exceeding|greater\s+than|"
    r"below|under|less\s+than|not\s+exceed(?:ing)?|no\s+more\s+than|maximum\s+of|up\s+to)\s+"
    r"((?:[£€$]|GBP|EUR|USD)\s*[\d][\d,\.]*\s*(?:thousand|million|billion|bn|[kmb])?\b)",
    re.IGNORECASE,
)
_REVENUE_PREFIX = re.compile(
    r"\b(minimum|maximum)\s+(?:annual\s+)?(?:turnover|revenue|income)\s+(?:of\s+)?"
    r"((?:[£€$]|GBP|EUR|USD)\s*[\d][\d,\.]*\s*(?:thousand|million|billion|bn|[kmb])?\b)",
    re.IGNORECASE,
)
_MIN_WORDS = ("at least", "minimum of", "more than", "over", "above", "exceeding", "greater than", "minimum")

_YEARS_ACTIVE = re.compile(
    r"\b(?:(at\s+least|minimum\s+of|more\s+than|over)\s+)?(\d+|one|two|three|four|five|six|seven|eight|nine|ten)"
    r"\s*\+?\s*(?:or\s+more\s+)?years?(?:'|’)?\s+(?:of\s+)?"
    r"(?:operating|operational|trading|experience|history|track\s+record|existence|activity)",
    re.IGNORECASE,
)
_YEARS_ESTABLISHED = re.compile(
    r"\b(?:established|operating|trading|registered)\s+for\s+(?:at\s+least\s+|a\s+minimum\s+of\s+)?"
    r"(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\s*\+?\s*years?",
    re.IGNORECASE,
)
_PRIOR_GRANTS = re.compile(
    r"\b(?:at\s+least\s+|minimum\s+of\s+)?(\d+|one|two|three|four|five)\s+(?:previous|prior|successful|completed)\s+grants?",
    re.IGNORECASE,
)
_GRANT_TRACK_RECORD = re.compile(
    r"track\s+record\s+of\s+(?:managing|delivering|receiving)\s+(?:public\s+)?(?:grants?|funding)",
    re.IGNORECASE,
)


class RequirementExtractor:
    """
    Extracts requirements and eligibility criteria from grant text.

    Usage:
        extractor = RequirementExtractor()
        result = extractor.extract(text, "grant-123", AnalysisDepth.BASIC)
    """

    MIN_WORDS = 5
    MIN_ALPHA_RATIO = 0.5

    def __init__(
        self,
        backend: Optional[TextBackend] = None,
        scorer: Optional[ConfidenceScorer] = None,
        min_text_length: int = 40,
        cleaner: Optional[AnnouncementTextCleaner] = None,
    ):
        self.backend = backend
        self.scorer = scorer or default_scorer
        self.min_text_length = min_text_length
        self.cleaner = cleaner or AnnouncementTextCleaner()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def extract(self, grant_text: str, grant_id: str, depth=AnalysisDepth.BASIC) -> GrantAnalysisResult:
        """
        Extract requirements and eligibility criteria.

        Args:
            grant_text: Raw announcement text (plain text or HTML)
            grant_id: Grant identifier
            depth: AnalysisDepth or its string value

        Returns:
            GrantAnalysisResult

        Raises:
            InvalidInput: empty, too-short or garbage text; blank grant id; unknown depth
            BackendUnavailable: deep analysis could not reach the text backend
        """
        depth = self._validate(grant_text, grant_id, depth)
        text = self.cleaner.clean(grant_text)
        self._validate_text(text)

        sentences = split_sentences(text)
        logger.info(f"Extracting requirements for {grant_id} ({depth.value}, {len(sentences)} sentences)")

        requirements = self._explicit_requirements(sentences)
        criteria, criterion_confidences = self._eligibility_criteria(sentences)

        backend_used = False
        inferred: List[GrantRequirement] = []
        if depth == AnalysisDepth.DEEP:
            inferred = self._implied_requirements(sentences, requirements)
            if self.backend is not None:
                inferred.extend(self._backend_requirements(text, requirements + inferred))
                backend_used = True

        all_requirements = requirements + inferred
        item_confidences = [r.confidence for r in all_requirements] + criterion_confidences
        confidence = self.scorer.extraction_aggregate(item_confidences, inferred=depth == AnalysisDepth.DEEP)

        status = ResultStatus.COMPLETE if (all_requirements or criteria) else ResultStatus.NO_REQUIREMENTS_FOUND

        metadata = {
            "schemaVersion": SCHEMA_VERSION,
            "textLength": len(text),
            "language": "en",
            "sourceFormat": "html" if looks_like_html(grant_text) else "text",
            "sentenceCount": len(sentences),
            "explicitCount": len(requirements),
            "inferredCount": len(inferred),
            "backendUsed": backend_used,
        }
        metadata.update(self._grant_facts(text))

        logger.info(
            f"Extraction complete for {grant_id}: {len(all_requirements)} requirements, "
            f"{len(criteria)} criteria, confidence {confidence}"
        )

        return GrantAnalysisResult(
            grant_id=grant_id,
            requirements=tuple(all_requirements),
            eligibility_criteria=tuple(criteria),
            depth=depth,
            status=status,
            confidence=confidence,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate(self, grant_text, grant_id, depth) -> AnalysisDepth:
        if not isinstance(grant_text, str) or not grant_text.strip():
            raise InvalidInput("grant text is empty", operation=OPERATION, field="grantText")
        if not isinstance(grant_id, str) or not grant_id.strip():
            raise InvalidInput("grant id is required", operation=OPERATION, field="grantId")
        try:
            return AnalysisDepth(depth.value if isinstance(depth, AnalysisDepth) else str(depth).lower())
        except ValueError:
            raise InvalidInput(f"unknown depth {depth!r}; expected basic or deep",
                               operation=OPERATION, field="depth")

    def _validate_text(self, text: str) -> None:
        if len(text) < self.min_text_length:
            raise InvalidInput(
                f"grant text is {len(text)} characters; at least {self.min_text_length} required",
                operation=OPERATION, field="grantText",
            )
        if word_count(text) < self.MIN_WORDS:
            raise InvalidInput(f"grant text has fewer than {self.MIN_WORDS} words",
                               operation=OPERATION, field="grantText")
        non_space = [ch for ch in text if not ch.isspace()]
        alpha_ratio = sum(ch.isalpha() for ch in non_space) / max(1, len(non_space))
        if alpha_ratio < self.MIN_ALPHA_RATIO:
            raise InvalidInput("grant text does not look like prose", operation=OPERATION, field="grantText")

    # -------------------------------------------------------------------------
    # Explicit requirements
    # -------------------------------------------------------------------------

    def _find_marker(self, sentence: str) -> Optional[Tuple[re.Match, RequirementKind, float]]:
        for pattern, kind, exactness in REQUIREMENT_MARKERS:
            match = re.search(pattern, sentence, re.IGNORECASE)
            if match:
                return match, kind, exactness
        return None

    def categorize(self, text: str) -> Tuple[RequirementCategory, int, List[str]]:
        """
        Categorize requirement text by keyword lexicon.

        Returns:
            (category, number of matched terms, matched terms)
        """
        lowered = text.lower()
        best = RequirementCategory.PROJECT
        best_terms: List[str] = []
        for category in CATEGORY_PRIORITY:
            terms = [t for t in CATEGORY_TERMS[category] if re.search(t, lowered)]
            if len(terms) > len(best_terms):
                best, best_terms = category, terms
        return best, len(best_terms), best_terms

    def _split_clauses(self, body: str) -> List[str]:
        clauses = []
        for clause in _CLAUSE_SPLIT.split(body):
            clause = clause.strip().rstrip(".:;,").strip()
            if word_count(clause) >= 2:
                clauses.append(clause)
        return clauses

    def _corroboration(self, terms: List[str], sentences: List[str]) -> int:
        if not terms:
            return 1
        count = sum(1 for s in sentences if any(re.search(t, s.lower()) for t in terms))
        return max(1, min(count, 4))

    def _explicit_requirements(self, sentences: List[str]) -> List[GrantRequirement]:
        requirements: Dict[str, GrantRequirement] = {}

        for sentence in sentences:
            found = self._find_marker(sentence)
            if not found:
                continue
            match, kind, marker_exactness = found

            body = sentence[match.end():].strip()
            if word_count(body) < 3:
                body = sentence

            for clause in self._split_clauses(body):
                category, hits, terms = self.categorize(clause)
                category_certainty = 1.0 if hits >= 2 else (0.85 if hits == 1 else 0.6)
                confidence = self.scorer.extraction_item(
                    self._corroboration(terms, sentences),
                    marker_exactness * category_certainty,
                )
                description = clause[0].upper() + clause[1:]
                req_id = stable_id(f"{kind.value}|{category.value}|{description.lower()}|{sentence}", "req_")
                if req_id in requirements:
                    continue
                requirements[req_id] = GrantRequirement(
                    id=req_id,
                    description=description,
                    kind=kind,
                    category=category,
                    source_excerpt=sentence,
                    importance=BASE_IMPORTANCE[kind],
                    confidence=confidence,
                )
                logger.debug(f"  {kind.value}/{category.value}: {description[:60]}")

        return list(requirements.values())

    # -------------------------------------------------------------------------
    # Implicit requirements (deep)
    # -------------------------------------------------------------------------

    def _implied_requirements(self, sentences: List[str],
                              explicit: List[GrantRequirement]) -> List[GrantRequirement]:
        known = {r.description.lower() for r in explicit}
        inferred = []

        for rule in IMPLICATION_RULES:
            matching = [s for s in sentences if re.search(rule["trigger"], s, re.IGNORECASE)]
            if not matching or rule["description"].lower() in known:
                continue

            excerpt = matching[0]
            found = self._find_marker(excerpt)
            source_kind = found[1] if found else RequirementKind.OPTIONAL
            kind = RequirementKind.OPTIONAL if source_kind == RequirementKind.OPTIONAL else RequirementKind.PREFERRED
            category = rule["category"]

            confidence = self.scorer.extraction_item(min(len(matching), 4), INFERRED_EXACTNESS)
            inferred.append(GrantRequirement(
                id=stable_id(f"inferred|{category.value}|{rule['description'].lower()}|{excerpt}", "req_"),
                description=rule["description"],
                kind=kind,
                category=category,
                source_excerpt=excerpt,
                importance=BASE_IMPORTANCE[kind] - 2,
                confidence=confidence,
                inferred=True,
            ))

        return inferred

    def _backend_requirements(self, text: str, known: List[GrantRequirement]) -> List[GrantRequirement]:
        system_prompt = (
            "You are a grant analysis expert. Identify IMPLICIT requirements that a "
            "grant announcement implies but does not state outright. Respond ONLY with JSON."
        )
        already = "\n".join(f"- {r.description}" for r in known[:40])
        user_prompt = f"""**Grant Announcement:**
{text[:12000]}

**Requirements already identified:**
{already or "- none"}

**Output Format (JSON):**
{{
  "requirements": [
    {{
      "description": "The implied requirement",
      "category": "financial|technical|legal|organizational|project",
      "kind": "preferred|optional",
      "excerpt": "Exact sentence copied verbatim from the announcement that implies it"
    }}
  ]
}}

Only include requirements not already listed. The excerpt MUST be copied verbatim.
"""
        data = self.backend.complete_json(system_prompt, user_prompt, operation=OPERATION)

        known_descriptions = {r.description.lower() for r in known}
        results = []
        for item in data.get("requirements", []) or []:
            if not isinstance(item, dict):
                continue
            description = str(item.get("description", "")).strip()
            excerpt = str(item.get("excerpt", "")).strip()
            if not description or not excerpt or excerpt not in text:
                logger.debug(f"Discarding backend requirement without verbatim excerpt: {description[:60]}")
                continue
            if description.lower() in known_descriptions:
                continue
            try:
                category = RequirementCategory(str(item.get("category", "")).lower())
            except ValueError:
                category = self.categorize(description)[0]
            kind = (RequirementKind.OPTIONAL
                    if str(item.get("kind", "")).lower() == RequirementKind.OPTIONAL.value
                    else RequirementKind.PREFERRED)

            known_descriptions.add(description.lower())
            results.append(GrantRequirement(
                id=stable_id(f"backend|{category.value}|{description.lower()}|{excerpt}", "req_"),
                description=description,
                kind=kind,
                category=category,
                source_excerpt=excerpt,
                importance=BASE_IMPORTANCE[kind] - 2,
                confidence=self.scorer.extraction_item(1, BACKEND_EXACTNESS),
                inferred=True,
            ))

        logger.info(f"Backend suggested {len(results)} implicit requirements")
        return results

    # -------------------------------------------------------------------------
    # Eligibility criteria
    # -------------------------------------------------------------------------

    def _sentence_is_mandatory(self, sentence: str) -> bool:
        found = self._find_marker(sentence)
        if found:
            return found[1] == RequirementKind.MANDATORY
        return bool(ELIGIBILITY_CUES.search(sentence))

    def _detect_conditions(self, sentence: str) -> List[Tuple[CriterionKind, str, Tuple[str, ...], float]]:
        """Return (kind, criterion text, conditions, exactness) found in one sentence."""
        found = []
        is_eligibility = bool(ELIGIBILITY_CUES.search(sentence))

        # Location
        for match in _LOCATION_PATTERN.finditer(sentence):
            places = [p.strip() for p in _LOCATION_SPLIT.split(match.group(1)) if p.strip()]
            places = [re.sub(r"^the\s+", "", p, flags=re.IGNORECASE).rstrip(".") for p in places]
            if places:
                found.append((
                    CriterionKind.LOCATION,
                    f"Must be based in {' or '.join(places)}",
                    tuple(f"location:{p}" for p in places),
                    0.95,
                ))

        # Size
        size_conditions = []
        if _SME.search(sentence):
            size_conditions.append("size_in:micro|small|medium")
        band = _SIZE_BAND.search(sentence)
        if band and not size_conditions:
            size_conditions.append(f"size_in:{band.group(1).lower()}")
        for pattern, key, offset in ((_EMPLOYEE_MAX, "max_employees", -1),
                                     (_EMPLOYEE_MAX_INCLUSIVE, "max_employees", 0),
                                     (_EMPLOYEE_MIN, "min_employees", 0)):
            m = pattern.search(sentence)
            if m:
                value = int(m.group(1).replace(",", "")) + offset
                if key == "min_employees" and re.search(r"more\s+than|over", m.group(0), re.IGNORECASE):
                    value += 1
                size_conditions.append(f"{key}:{value}")
        if size_conditions:
            found.append((CriterionKind.SIZE, "Organization size limits", tuple(size_conditions), 0.9))

        # Legal form / organization type
        if is_eligibility:
            for pattern, condition, text in LEGAL_TYPES:
                if re.search(pattern, sentence, re.IGNORECASE):
                    found.append((CriterionKind.LEGAL, text, (condition,), 0.95))

        # Sector
        if re.search(r"\bsectors?\b|\bfields?\b|\bfocus(?:ed)?\s+on\b|\bworking\s+in\b", sentence, re.IGNORECASE):
            sectors = [t for t in SECTOR_TERMS if re.search(rf"\b{re.escape(t)}\b", sentence, re.IGNORECASE)]
            # "healthcare" already implies "health"
            sectors = [s for s in sectors if not any(o != s and s in o for o in sectors)]
            if sectors:
                found.append((
                    CriterionKind.SECTOR,
                    f"Must operate in the {' or '.join(sectors)} sector",
                    tuple(f"sector:{s}" for s in sectors),
                    0.8,
                ))

        # Financial thresholds
        financial_conditions = []
        for m in _REVENUE_BOUND.finditer(sentence):
            span = find_amount_span(m.group(2))
            if span:
                key = "min_annual_revenue" if m.group(1).lower() in _MIN_WORDS else "max_annual_revenue"
                financial_conditions.append(f"{key}:{span[1]}")
        for m in _REVENUE_PREFIX.finditer(sentence):
            span = find_amount_span(m.group(2))
            if span:
                key = "min_annual_revenue" if m.group(1).lower() == "minimum" else "max_annual_revenue"
                financial_conditions.append(f"{key}:{span[1]}")
        if financial_conditions:
            found.append((CriterionKind.FINANCIAL, "Annual revenue thresholds",
                          tuple(dict.fromkeys(financial_conditions)), 0.95))

        # Experience
        experience_conditions = []
        m = _YEARS_ACTIVE.search(sentence) or _YEARS_ESTABLISHED.search(sentence)
        if m:
            years = _to_int(m.groups()[-1] if m.re is _YEARS_ESTABLISHED else m.group(2))
            if years is not None:
                if m.re is _YEARS_ACTIVE and m.group(1) and re.match(r"more|over", m.group(1), re.IGNORECASE):
                    years += 1
                experience_conditions.append(f"min_years_active:{years}")
        m = _PRIOR_GRANTS.search(sentence)
        if m and _to_int(m.group(1)) is not None:
            experience_conditions.append(f"min_previous_grants:{_to_int(m.group(1))}")
        elif _GRANT_TRACK_RECORD.search(sentence):
            experience_conditions.append("min_previous_grants:1")
        if experience_conditions:
            found.append((CriterionKind.EXPERIENCE, "Minimum operating experience",
                          tuple(experience_conditions), 0.9))

        return found

    def _eligibility_criteria(self, sentences: List[str]) -> Tuple[List[EligibilityCriterion], List[float]]:
        """Collect criteria, merging repeats. Returns criteria and their confidences."""
        collected: Dict[Tuple, _Evidence] = {}

        for sentence in sentences:
            mandatory = self._sentence_is_mandatory(sentence)
            for kind, text, conditions, exactness in self._detect_conditions(sentence):
                key = (kind, conditions, mandatory)
                if key in collected:
                    collected[key].sentences += 1
                    continue
                collected[key] = _Evidence(
                    kind=kind,
                    text=self._describe_criterion(kind, text, conditions),
                    conditions=conditions,
                    mandatory=mandatory,
                    excerpt=sentence,
                    exactness=exactness,
                )

        criteria = []
        confidences = []
        for evidence in collected.values():
            criteria.append(EligibilityCriterion(
                id=stable_id(f"{evidence.kind.value}|{'|'.join(evidence.conditions)}|{evidence.mandatory}", "crit_"),
                criterion=evidence.text,
                kind=evidence.kind,
                mandatory=evidence.mandatory,
                conditions=evidence.conditions,
                verification=VERIFICATION_METHODS[evidence.kind],
                source_excerpt=evidence.excerpt,
            ))
            confidences.append(self.scorer.extraction_item(min(evidence.sentences, 4), evidence.exactness))
        return criteria, confidences

    def _describe_criterion(self, kind: CriterionKind, text: str, conditions: Tuple[str, ...]) -> str:
        if kind == CriterionKind.EXPERIENCE:
            parts = []
            for condition in conditions:
                key, _, value = condition.partition(":")
                if key == "min_years_active":
                    parts.append(f"at least {value} years of operation")
                elif key == "min_previous_grants":
                    parts.append(f"at least {value} previous grant(s)")
            return "Must have " + " and ".join(parts)
        if kind == CriterionKind.FINANCIAL:
            parts = []
            for condition in conditions:
                key, _, value = condition.partition(":")
                bound = "at least" if key.startswith("min") else "at most"
                parts.append(f"annual revenue {bound} {int(value):,}")
            return "Must have " + " and ".join(parts)
        if kind == CriterionKind.SIZE:
            return "Organization size: " + ", ".join(c.replace("_", " ") for c in conditions)
        return text

    # -------------------------------------------------------------------------
    # Grant facts
    # -------------------------------------------------------------------------

    def _grant_facts(self, text: str) -> Dict[str, object]:
        facts: Dict[str, object] = {}

        funding = re.search(
            r"(?:up\s+to|grants?\s+of|awards?\s+of|funding\s+of|total\s+(?:fund|budget)\s+of)\s+"
            r"((?:[£€$]|GBP|EUR|USD)\s*[\d][\d,\.]*\s*(?:thousand|million|billion|bn|[kmb])?\b)",
            text, re.IGNORECASE,
        )
        if funding:
            span = find_amount_span(funding.group(1))
            if span:
                facts["fundingAmount"] = span[0]
                facts["fundingAmountValue"] = span[1]

        deadline = _DEADLINE_PATTERN.search(text)
        if deadline:
            parsed = parse_date_maybe(deadline.group(1))
            if parsed:
                facts["deadline"] = parsed.isoformat()

        return facts
