"""
Canonical domain models for the grant analysis engine.

These models are the typed inputs and outputs of every analysis operation.
Results serialize to camelCase payloads via `to_dict()`; payloads produced by
the engine itself (cache and store records) decode back with `from_payload()`.
External inputs (profiles, criteria, rule sets, application content, corpus
entries) go through the validating `from_dict()` constructors instead.
"""

import re
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Union, get_type_hints, get_origin, get_args

from .errors import InvalidInput, IncompleteRuleSet
from .time_utils import utcnow, parse_date_maybe


SCHEMA_VERSION = 1


# =============================================================================
# ENUMERATIONS
# =============================================================================

class RequirementKind(str, Enum):
    MANDATORY = "mandatory"
    PREFERRED = "preferred"
    OPTIONAL = "optional"


class RequirementCategory(str, Enum):
    FINANCIAL = "financial"
    TECHNICAL = "technical"
    LEGAL = "legal"
    ORGANIZATIONAL = "organizational"
    PROJECT = "project"


class CriterionKind(str, Enum):
    LOCATION = "location"
    SIZE = "size"
    SECTOR = "sector"
    LEGAL = "legal"
    FINANCIAL = "financial"
    EXPERIENCE = "experience"


class OrganizationType(str, Enum):
    NONPROFIT = "nonprofit"
    SME = "sme"
    STARTUP = "startup"
    UNIVERSITY = "university"
    RESEARCH = "research"
    PUBLIC = "public"


class OrganizationSize(str, Enum):
    MICRO = "micro"     # < 10 employees
    SMALL = "small"     # < 50 employees
    MEDIUM = "medium"   # < 250 employees
    LARGE = "large"


class AnalysisDepth(str, Enum):
    BASIC = "basic"
    DEEP = "deep"


class RuleCategory(str, Enum):
    FORMAT = "format"
    CONTENT = "content"
    LEGAL = "legal"
    FINANCIAL = "financial"
    TECHNICAL = "technical"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    WARNING = "warning"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non-compliant"
    PARTIAL = "partial"


class PredicateKind(str, Enum):
    PATTERN = "pattern"
    PRESENCE = "presence"
    ABSENCE = "absence"
    NUMERIC_BOUND = "numeric_bound"


class Measure(str, Enum):
    VALUE = "value"
    WORD_COUNT = "word_count"
    CHAR_COUNT = "char_count"
    ITEM_COUNT = "item_count"


class Outcome(str, Enum):
    FUNDED = "funded"
    REJECTED = "rejected"


class AnalysisScope(str, Enum):
    CONTENT = "content"
    STRUCTURE = "structure"
    TIMING = "timing"
    COMPREHENSIVE = "comprehensive"


class ValidationLevel(str, Enum):
    BASIC = "basic"         # critical and major rules only
    STANDARD = "standard"
    STRICT = "strict"       # partial checks fail the application


class ApplicationStage(str, Enum):
    PREPARATION = "preparation"
    DRAFTING = "drafting"
    REVIEW = "review"
    SUBMISSION = "submission"


class GuidanceType(str, Enum):
    STRATEGIC = "strategic"
    TACTICAL = "tactical"
    TECHNICAL = "technical"
    COMPREHENSIVE = "comprehensive"


class ResultStatus(str, Enum):
    COMPLETE = "complete"
    NO_REQUIREMENTS_FOUND = "no_requirements_found"
    NO_PATTERNS_FOUND = "no_patterns_found"
    NO_MATCHING_DATA = "no_matching_data"


# =============================================================================
# PAYLOAD HELPERS
# =============================================================================

def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_payload(value: Any) -> Any:
    """Convert models to JSON-ready structures with camelCase field names."""
    if is_dataclass(value) and not isinstance(value, type):
        return {
            camel_case(f.name): to_payload(getattr(value, f.name))
            for f in fields(value)
            if f.repr
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, dict):
        return {k: to_payload(v) for k, v in value.items()}
    return value


def _decode(tp: Any, raw: Any) -> Any:
    if raw is None or tp is Any:
        return raw

    origin = get_origin(tp)
    args = get_args(tp)

    if origin is Union:
        inner = [a for a in args if a is not type(None)]
        return _decode(inner[0], raw)
    if origin is list:
        return [_decode(args[0], v) for v in raw]
    if origin is tuple:
        return tuple(_decode(args[0], v) for v in raw)
    if origin is dict:
        return {k: _decode(args[1], v) for k, v in raw.items()}
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(raw)
    if tp is datetime:
        return raw if isinstance(raw, datetime) else datetime.fromisoformat(raw)
    if is_dataclass(tp):
        return from_payload(tp, raw)
    if tp is float and isinstance(raw, (int, float)):
        return float(raw)
    return raw


def from_payload(cls, data: Dict[str, Any]):
    """Rebuild a model from a payload produced by `to_payload`."""
    hints = get_type_hints(cls)
    kwargs = {}
    for f in fields(cls):
        if not f.init:
            continue
        key = camel_case(f.name)
        if key in data:
            raw = data[key]
        elif f.name in data:
            raw = data[f.name]
        else:
            continue
        kwargs[f.name] = _decode(hints[f.name], raw)
    return cls(**kwargs)


def _get(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among aliases (camelCase, snake_case, legacy names)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _enum(enum_cls, raw: Any, field_name: str, operation: Optional[str] = None):
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidInput(
            f"unknown value {raw!r}; expected one of: {allowed}",
            operation=operation,
            field=field_name,
        )


def _required(data: Dict[str, Any], field_name: str, *aliases: str) -> Any:
    value = _get(data, field_name, *aliases)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidInput("required field is missing", field=field_name)
    return value


def _optional_number(raw: Any, field_name: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InvalidInput(f"expected a number, got {raw!r}", field=field_name)


def _string_tuple(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(v) for v in raw if v is not None and str(v).strip())


class PayloadMixin:
    """Adds camelCase serialization to result models."""

    def to_dict(self) -> Dict[str, Any]:
        return to_payload(self)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]):
        return from_payload(cls, data)


# =============================================================================
# REQUIREMENT EXTRACTION
# =============================================================================

@dataclass(frozen=True)
class GrantRequirement(PayloadMixin):
    """
    A single requirement stated in (or inferred from) a grant announcement.

    `importance` stays on its 1-10 scale; `confidence` is on the 0-100 scale
    produced by the confidence scorer.
    """
    id: str
    description: str
    kind: RequirementKind
    category: RequirementCategory
    source_excerpt: str
    importance: int
    confidence: float = 0.0
    inferred: bool = False


@dataclass(frozen=True)
class EligibilityCriterion(PayloadMixin):
    """
    Eligibility criterion with machine-readable conditions.

    Conditions use a `key:value` grammar (e.g. "country:UK",
    "min_years_active:2"); free-text conditions are accepted and parsed
    best-effort by the evaluator.
    """
    id: str
    criterion: str
    kind: CriterionKind
    mandatory: bool
    conditions: Tuple[str, ...] = ()
    verification: str = ""
    source_excerpt: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EligibilityCriterion":
        if not isinstance(data, dict):
            raise InvalidInput("criterion must be an object", field="eligibilityCriteria")
        criterion_id = str(_required(data, "id"))
        text = str(_required(data, "criterion", "description"))
        kind = _enum(CriterionKind, _required(data, "kind", "type"), "eligibilityCriteria.kind")
        return cls(
            id=criterion_id,
            criterion=text,
            kind=kind,
            mandatory=bool(_get(data, "mandatory", default=True)),
            conditions=_string_tuple(_get(data, "conditions")),
            verification=str(_get(data, "verification", default="")),
            source_excerpt=str(_get(data, "sourceExcerpt", "source_excerpt", "source", default="")),
        )


@dataclass(frozen=True)
class GrantAnalysisResult(PayloadMixin):
    grant_id: str
    requirements: Tuple[GrantRequirement, ...]
    eligibility_criteria: Tuple[EligibilityCriterion, ...]
    depth: AnalysisDepth
    status: ResultStatus
    confidence: float
    analysis_date: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# ORGANIZATION PROFILE & ELIGIBILITY
# =============================================================================

@dataclass(frozen=True)
class Location:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


@dataclass(frozen=True)
class Experience:
    years_active: Optional[float] = None
    previous_grants: Optional[int] = None
    total_funding_received: Optional[float] = None


@dataclass(frozen=True)
class FinancialFacts:
    annual_revenue: Optional[float] = None
    employees: Optional[int] = None
    legal_form: Optional[str] = None


@dataclass(frozen=True)
class OrganizationProfile(PayloadMixin):
    """Organization record supplied by the platform. Read-only."""
    id: str
    name: str
    org_type: Optional[OrganizationType] = None
    size: Optional[OrganizationSize] = None
    location: Location = field(default_factory=Location)
    sectors: Tuple[str, ...] = ()
    experience: Experience = field(default_factory=Experience)
    financial: FinancialFacts = field(default_factory=FinancialFacts)
    capabilities: Tuple[str, ...] = ()
    certifications: Tuple[str, ...] = ()
    partnerships: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrganizationProfile":
        """
        Parse an organization record (camelCase or snake_case keys).

        Raises:
            InvalidInput: id/name missing or an enumerated field has an unknown value
        """
        if not isinstance(data, dict):
            raise InvalidInput("organization profile must be an object", field="organizationProfile")

        org_type = _get(data, "orgType", "org_type", "type")
        size = _get(data, "size")
        location = _get(data, "location", default={}) or {}
        experience = _get(data, "experience", default={}) or {}
        financial = _get(data, "financial", default={}) or {}

        if isinstance(location, str):
            location = {"country": location}

        employees = _optional_number(_get(financial, "employees", "employeeCount"), "financial.employees")
        previous_grants = _optional_number(
            _get(experience, "previousGrants", "previous_grants"), "experience.previousGrants")

        return cls(
            id=str(_required(data, "id")),
            name=str(_required(data, "name")),
            org_type=_enum(OrganizationType, org_type, "orgType") if org_type else None,
            size=_enum(OrganizationSize, size, "size") if size else None,
            location=Location(
                country=_get(location, "country"),
                region=_get(location, "region"),
                city=_get(location, "city"),
            ),
            sectors=_string_tuple(_get(data, "sectors")),
            experience=Experience(
                years_active=_optional_number(
                    _get(experience, "yearsActive", "years_active"), "experience.yearsActive"),
                previous_grants=int(previous_grants) if previous_grants is not None else None,
                total_funding_received=_optional_number(
                    _get(experience, "totalFundingReceived", "total_funding_received"),
                    "experience.totalFundingReceived"),
            ),
            financial=FinancialFacts(
                annual_revenue=_optional_number(
                    _get(financial, "annualRevenue", "annual_revenue"), "financial.annualRevenue"),
                employees=int(employees) if employees is not None else None,
                legal_form=_get(financial, "legalForm", "legal_form"),
            ),
            capabilities=_string_tuple(_get(data, "capabilities")),
            certifications=_string_tuple(_get(data, "certifications")),
            partnerships=_string_tuple(_get(data, "partnerships")),
        )


@dataclass(frozen=True)
class ProjectDetails(PayloadMixin):
    """Project the organization is applying for. Checked by `project_*` conditions."""
    title: Optional[str] = None
    requested_amount: Optional[float] = None
    duration_months: Optional[float] = None
    location: Optional[str] = None
    sectors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectDetails":
        if not isinstance(data, dict):
            raise InvalidInput("project details must be an object", field="projectDetails")

        location = _get(data, "location")
        if isinstance(location, dict):
            location = _get(location, "region", "country", "city")

        return cls(
            title=_get(data, "title", "name"),
            requested_amount=_optional_number(
                _get(data, "requestedAmount", "requested_amount", "budget"), "projectDetails.requestedAmount"),
            duration_months=_optional_number(
                _get(data, "durationMonths", "duration_months"), "projectDetails.durationMonths"),
            location=str(location) if location else None,
            sectors=_string_tuple(_get(data, "sectors", "sector")),
        )


@dataclass(frozen=True)
class CriterionAssessment(PayloadMixin):
    criterion: EligibilityCriterion
    meets: bool
    confidence: float
    reasoning: str
    evidence_required: Tuple[str, ...] = ()
    missing_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EligibilityCheck(PayloadMixin):
    """
    Eligibility of one organization for one grant.

    Never mutated after creation; a new check supersedes an old one.
    """
    organization_id: str
    grant_id: Optional[str]
    overall_eligible: bool
    eligibility_score: float
    criteria: Tuple[CriterionAssessment, ...]
    recommendations: Tuple[str, ...]
    missing_requirements: Tuple[str, ...]
    strengths: Tuple[str, ...]
    weaknesses: Tuple[str, ...]
    confidence: float
    check_date: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# COMPLIANCE
# =============================================================================

@dataclass(frozen=True)
class Predicate(PayloadMixin):
    """
    Declarative validation predicate evaluated by the trusted interpreter.

    Kinds:
        pattern: regex `pattern` must match the text at `path`
        presence: `path` must exist and be non-empty
        absence: `path` must be missing or empty (or, with `pattern`, not match it)
        numeric_bound: `measure` of `path` must lie within [minimum, maximum]

    `path` is a dotted path into the application content ("sections.impact",
    "budget.total", "attachments", "text"). Rule files call it "field".
    """
    kind: PredicateKind
    path: str = "text"
    pattern: Optional[str] = None
    measure: Measure = Measure.VALUE
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    description: str = ""
    compiled: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.kind == PredicateKind.PATTERN and not self.pattern:
            raise IncompleteRuleSet("pattern predicate has no pattern", field="validation.pattern")
        if self.pattern:
            try:
                compiled = re.compile(self.pattern, re.IGNORECASE | re.MULTILINE)
            except re.error as e:
                raise IncompleteRuleSet(f"invalid pattern {self.pattern!r}: {e}", field="validation.pattern")
            object.__setattr__(self, "compiled", compiled)
        if self.kind == PredicateKind.NUMERIC_BOUND and self.minimum is None and self.maximum is None:
            raise IncompleteRuleSet("numeric_bound predicate needs minimum or maximum",
                                    field="validation.minimum")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Predicate":
        kind = _enum(PredicateKind, _get(data, "kind", "type", default=""), "validation.kind")
        measure = _get(data, "measure")
        return cls(
            kind=kind,
            path=str(_get(data, "field", "path", default="text")),
            pattern=_get(data, "pattern", "regex"),
            measure=_enum(Measure, measure, "validation.measure") if measure else Measure.VALUE,
            minimum=_optional_number(_get(data, "minimum", "min"), "validation.minimum"),
            maximum=_optional_number(_get(data, "maximum", "max"), "validation.maximum"),
            description=str(_get(data, "description", default="")),
        )


@dataclass(frozen=True)
class ComplianceRule(PayloadMixin):
    """A configured compliance rule. Shared read-only across validations."""
    id: str
    rule: str
    category: RuleCategory
    severity: Severity
    description: str
    validation: Tuple[Predicate, ...]
    fix_suggestion: str
    frameworks: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplianceRule":
        """
        Parse a rule definition from trusted configuration.

        `validation` may be a list of predicate objects, a single predicate
        object, or a bare regex string (treated as a pattern predicate over
        the whole application text).
        """
        validation = _get(data, "validation", default=[])
        if isinstance(validation, str):
            predicates = (Predicate(kind=PredicateKind.PATTERN, path="text", pattern=validation),)
        elif isinstance(validation, dict):
            predicates = (Predicate.from_dict(validation),)
        else:
            predicates = tuple(Predicate.from_dict(p) for p in validation)

        return cls(
            id=str(_required(data, "id")),
            rule=str(_required(data, "rule", "name")),
            category=_enum(RuleCategory, _required(data, "category"), "category"),
            severity=_enum(Severity, _required(data, "severity"), "severity"),
            description=str(_get(data, "description", default="")),
            validation=predicates,
            fix_suggestion=str(_get(data, "fixSuggestion", "fix_suggestion", default="")),
            frameworks=tuple(
                f.strip().upper() for f in _string_tuple(_get(data, "frameworks", "regulatoryFrameworks"))
            ),
        )


@dataclass(frozen=True)
class BudgetLine:
    name: str
    amount: float
    justification: Optional[str] = None


@dataclass(frozen=True)
class Budget:
    total: Optional[float] = None
    categories: Tuple[BudgetLine, ...] = ()


@dataclass(frozen=True)
class ApplicationContent(PayloadMixin):
    """Submitted application document, as seen by the compliance validator."""
    application_id: str
    sections: Dict[str, str] = field(default_factory=dict)
    budget: Optional[Budget] = None
    attachments: Tuple[str, ...] = ()
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """All section text joined, in section order."""
        return "\n\n".join(v for v in self.sections.values() if v)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], application_id: Optional[str] = None) -> "ApplicationContent":
        if not isinstance(data, dict):
            raise InvalidInput("application content must be an object", field="applicationContent")

        app_id = application_id or _get(data, "applicationId", "application_id", "id")
        if not app_id:
            raise InvalidInput("required field is missing", field="applicationId")

        raw_sections = _get(data, "sections", default={}) or {}
        if not isinstance(raw_sections, dict):
            raise InvalidInput("sections must be an object of name -> text", field="sections")
        sections = {}
        for name, value in raw_sections.items():
            if isinstance(value, dict):
                value = value.get("content", "")
            sections[str(name)] = "" if value is None else str(value)

        budget = None
        raw_budget = _get(data, "budget")
        if raw_budget is not None and not isinstance(raw_budget, dict):
            raise InvalidInput("budget must be an object", field="budget")
        if isinstance(raw_budget, dict):
            raw_lines = raw_budget.get("categories", []) or []
            if not isinstance(raw_lines, (list, tuple)):
                raise InvalidInput("budget categories must be a list", field="budget.categories")
            lines = []
            for line in raw_lines:
                if not isinstance(line, dict):
                    raise InvalidInput(f"budget line must be an object, got {line!r}",
                                       field="budget.categories")
                lines.append(BudgetLine(
                    name=str(line.get("name", "")),
                    amount=_optional_number(line.get("amount"), "budget.categories.amount") or 0.0,
                    justification=line.get("justification"),
                ))
            budget = Budget(
                total=_optional_number(raw_budget.get("total"), "budget.total"),
                categories=tuple(lines),
            )

        extra = _get(data, "fields", default={}) or {}
        if not isinstance(extra, dict):
            raise InvalidInput("fields must be an object", field="fields")

        return cls(
            application_id=str(app_id),
            sections=sections,
            budget=budget,
            attachments=_string_tuple(_get(data, "attachments")),
            fields=dict(extra),
        )


@dataclass(frozen=True)
class ComplianceCheck(PayloadMixin):
    id: str
    rule_id: str
    description: str
    category: RuleCategory
    status: ComplianceStatus
    severity: Severity
    details: str
    confidence: float
    satisfied: int = 0
    total: int = 0
    recommendations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplianceResult(PayloadMixin):
    application_id: str
    rule_set_id: Optional[str]
    overall_compliant: bool
    checks: Tuple[ComplianceCheck, ...]
    critical_issues: Tuple[ComplianceCheck, ...]
    recommendations: Tuple[str, ...]
    compliance_score: float
    confidence: float
    validation_date: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# SUCCESS PATTERNS
# =============================================================================

@dataclass(frozen=True)
class ApplicationOutcome:
    """Historical application with a known funding decision."""
    application_id: str
    grant_type: str
    organization_type: str
    outcome: Outcome
    sections: Dict[str, str] = field(default_factory=dict)
    score: Optional[float] = None
    submitted_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    budget_total: Optional[float] = None

    @property
    def text(self) -> str:
        return "\n\n".join(v for v in self.sections.values() if v)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApplicationOutcome":
        sections = _get(data, "sections", default=None)
        if not sections:
            body = _get(data, "text", "content", default="")
            sections = {"body": body} if body else {}
        if isinstance(sections, str):
            sections = {"body": sections}

        def _date(key_camel, key_snake):
            raw = _get(data, key_camel, key_snake)
            if isinstance(raw, datetime):
                return raw
            return parse_date_maybe(str(raw)) if raw else None

        score = _optional_number(_get(data, "score"), "score")
        return cls(
            application_id=str(_required(data, "applicationId", "application_id", "id")),
            grant_type=str(_required(data, "grantType", "grant_type")),
            organization_type=str(_get(data, "organizationType", "organization_type", default="unknown")),
            outcome=_enum(Outcome, _required(data, "outcome"), "outcome"),
            sections={str(k): "" if v is None else str(v) for k, v in sections.items()},
            score=score,
            submitted_at=_date("submittedAt", "submitted_at"),
            deadline=_date("deadline", "deadline"),
            budget_total=_optional_number(_get(data, "budgetTotal", "budget_total"), "budgetTotal"),
        )


@dataclass(frozen=True)
class PatternDescriptor:
    title: str
    description: str
    frequency: float   # 0-1 share of funded applications
    impact: int        # 1-10


@dataclass(frozen=True)
class PatternExample:
    application_id: str
    excerpt: str
    outcome: Outcome
    score: Optional[float] = None


@dataclass(frozen=True)
class SuccessPattern(PayloadMixin):
    id: str
    grant_type: str
    organization_type: str
    pattern: PatternDescriptor
    examples: Tuple[PatternExample, ...]
    applicability_conditions: Tuple[str, ...]
    implementation_tips: Tuple[str, ...]
    confidence: float


@dataclass(frozen=True)
class SuccessPatternResult(PayloadMixin):
    grant_type: str
    patterns: Tuple[SuccessPattern, ...]
    analysis_scope: AnalysisScope
    sample_size: int
    status: ResultStatus
    confidence: float
    analysis_date: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# GUIDANCE
# =============================================================================

@dataclass(frozen=True)
class GuidanceSection:
    name: str
    guidance: str
    examples: Tuple[str, ...] = ()
    common_mistakes: Tuple[str, ...] = ()
    word_limit: Optional[int] = None
    required_elements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TimelineTask:
    task: str
    deadline: str
    importance: int    # 1-10
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApplicationGuidance(PayloadMixin):
    grant_id: str
    organization_type: str
    sections: Tuple[GuidanceSection, ...]
    timeline: Tuple[TimelineTask, ...]
    strategic_advice: Tuple[str, ...]
    competitive_factors: Tuple[str, ...]
    application_stage: ApplicationStage = ApplicationStage.PREPARATION
    guidance_type: GuidanceType = GuidanceType.COMPREHENSIVE
    generated_date: datetime = field(default_factory=utcnow)
