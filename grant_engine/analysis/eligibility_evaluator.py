"""
Eligibility Evaluator

Scores an organization profile against eligibility criteria.

Each criterion's conditions are evaluated by kind-specific logic. Missing
profile data never raises by default: the criterion is reported as not met
with confidence 0 and the reasoning names the missing field.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple, Sequence

from grant_engine.core.confidence import ConfidenceScorer, scorer as default_scorer
from grant_engine.core.domain_models import (
    SCHEMA_VERSION,
    CriterionAssessment,
    CriterionKind,
    EligibilityCheck,
    EligibilityCriterion,
    OrganizationProfile,
    OrganizationSize,
    ProjectDetails,
)
from grant_engine.core.errors import IncompleteProfile, InvalidInput
from grant_engine.core.money import find_amount_span, parse_amount

logger = logging.getLogger(__name__)

OPERATION = "check_eligibility"


EU_MEMBERS = {
    "austria", "belgium", "bulgaria", "croatia", "cyprus", "czechia", "czech republic",
    "denmark", "estonia", "finland", "france", "germany", "greece", "hungary", "ireland",
    "italy", "latvia", "lithuania", "luxembourg", "malta", "netherlands", "poland",
    "portugal", "romania", "slovakia", "slovenia", "spain", "sweden",
}

UK_NATIONS = {"england", "scotland", "wales", "northern ireland"}

COUNTRY_ALIASES = {
    "uk": "uk", "u.k.": "uk", "united kingdom": "uk", "great britain": "uk", "gb": "uk", "britain": "uk",
    "us": "us", "u.s.": "us", "usa": "us", "united states": "us", "united states of america": "us",
}

# Groups a location condition may name instead of a single place
LOCATION_GROUPS = {
    "eu": EU_MEMBERS,
    "european union": EU_MEMBERS,
    "uk": {"uk"} | UK_NATIONS,
}

ORG_TYPE_ALIASES = {
    "charity": "nonprofit", "charities": "nonprofit", "non-profit": "nonprofit",
    "not-for-profit": "nonprofit", "ngo": "nonprofit",
    "higher education": "university", "he": "university",
    "public body": "public", "local authority": "public",
    "start-up": "startup", "small business": "sme",
}

SIZE_ORDER = [OrganizationSize.MICRO, OrganizationSize.SMALL, OrganizationSize.MEDIUM, OrganizationSize.LARGE]

# Profile field names, as the platform's records spell them
PROFILE_FIELDS = {
    "location": "location",
    "size": "size",
    "employees": "employees",
    "sectors": "sectors",
    "org_type": "orgType",
    "legal_form": "legalForm",
    "annual_revenue": "annualRevenue",
    "years_active": "yearsActive",
    "previous_grants": "previousGrants",
    "total_funding": "totalFundingReceived",
    "capabilities": "capabilities",
    "certifications": "certifications",
    "partnerships": "partnerships",
}

# Project detail field names, for conditions on the funded project itself
PROJECT_FIELDS = {
    "requested_amount": "projectDetails.requestedAmount",
    "duration_months": "projectDetails.durationMonths",
    "location": "projectDetails.location",
    "sectors": "projectDetails.sectors",
}

# Keys whose repeated values are alternatives ("Scotland or Wales")
ALTERNATIVE_KEYS = {
    "location", "country", "region", "city", "sector", "org_type", "legal_form", "size_in",
    "project_location", "project_sector",
}

# Bounds on the project itself: key -> (ProjectDetails attribute, label)
PROJECT_BOUNDS = {
    "max_project_budget": ("requested_amount", "requested amount"),
    "min_project_budget": ("requested_amount", "requested amount"),
    "max_duration_months": ("duration_months", "project duration in months"),
    "min_duration_months": ("duration_months", "project duration in months"),
}


@dataclass
class ConditionResult:
    """Outcome of one condition. `met` is None when profile data is missing."""
    met: Optional[bool]
    exactness: float
    reason: str
    missing_field: Optional[str] = None


def _norm(value: str) -> str:
    return re.sub(r"\s+", " ", str(value)).strip().lower()


def _country(value: str) -> str:
    value = _norm(value)
    return COUNTRY_ALIASES.get(value, value)


def _missing_source(fields: Sequence[str]) -> str:
    if fields and all(f.startswith("projectDetails.") for f in fields):
        return "project details"
    return "organization profile"


def size_band(employees: int) -> OrganizationSize:
    if employees < 10:
        return OrganizationSize.MICRO
    if employees < 50:
        return OrganizationSize.SMALL
    if employees < 250:
        return OrganizationSize.MEDIUM
    return OrganizationSize.LARGE


def parse_condition(raw: str, kind: CriterionKind) -> Optional[Tuple[str, str]]:
    """
    Parse a condition string into (key, value).

    `key:value` strings are taken as-is. Free text is read best-effort
    according to the criterion kind.

    Examples:
        >>> parse_condition("min_years_active:2", CriterionKind.EXPERIENCE)
        ('min_years_active', '2')
        >>> parse_condition("Minimum annual revenue £500k", CriterionKind.FINANCIAL)
        ('min_annual_revenue', '500000')
    """
    raw = str(raw).strip()
    if not raw:
        return None

    match = re.match(r"^([a-z_]+)\s*:\s*(.+)$", raw)
    if match:
        return match.group(1), match.group(2).strip()

    lowered = raw.lower()
    if kind == CriterionKind.LOCATION:
        return "location", raw
    if kind == CriterionKind.SECTOR:
        return "sector", raw
    if kind == CriterionKind.LEGAL:
        if _norm(raw) in ORG_TYPE_ALIASES or _norm(raw) in {"nonprofit", "sme", "startup", "university",
                                                              "research", "public"}:
            return "org_type", raw
        return "legal_form", raw
    if kind == CriterionKind.SIZE:
        employees = re.search(r"(\d[\d,]*)\s+(?:employees|staff)", lowered)
        if employees:
            key = "min_employees" if re.search(r"at least|minimum|more than|over", lowered) else "max_employees"
            return key, employees.group(1).replace(",", "")
        bands = [b.value for b in SIZE_ORDER if b.value in lowered]
        if re.search(r"\bsmes?\b", lowered):
            bands = ["micro", "small", "medium"]
        if bands:
            return "size_in", "|".join(bands)
        return None
    if kind == CriterionKind.FINANCIAL:
        span = find_amount_span(raw)
        amount = span[1] if span else parse_amount(raw)[1]
        if amount is None:
            return None
        key = "max_annual_revenue" if re.search(r"max|below|under|less than|not exceed|up to", lowered) \
            else "min_annual_revenue"
        return key, str(amount)
    if kind == CriterionKind.EXPERIENCE:
        years = re.search(r"(\d+)\s*\+?\s*years?", lowered)
        if years:
            return "min_years_active", years.group(1)
        grants = re.search(r"(\d+)\s+(?:previous|prior)?\s*grants?", lowered)
        if grants:
            return "min_previous_grants", grants.group(1)
        return None
    return None


class EligibilityEvaluator:
    """
    Evaluates organization profiles against eligibility criteria.

    Usage:
        evaluator = EligibilityEvaluator()
        check = evaluator.evaluate(profile, criteria, grant_id="grant-123")
    """

    MANDATORY_WEIGHT = 3.0
    OPTIONAL_WEIGHT = 1.0
    STRENGTH_THRESHOLD = 80.0
    WEAKNESS_THRESHOLD = 50.0
    ELIGIBLE_FLOOR = 51.0
    INELIGIBLE_CEILING = 50.0

    def __init__(self, scorer: Optional[ConfidenceScorer] = None):
        self.scorer = scorer or default_scorer

    def evaluate(
        self,
        org: OrganizationProfile,
        criteria: Sequence[EligibilityCriterion],
        grant_id: Optional[str] = None,
        strict: bool = False,
        project: Optional[ProjectDetails] = None,
    ) -> EligibilityCheck:
        """
        Evaluate eligibility.

        Args:
            org: Organization profile
            criteria: Criteria to check
            grant_id: Grant the criteria belong to
            strict: Raise instead of degrading when a mandatory criterion
                    cannot be evaluated for lack of profile data
            project: Details of the funded project, for `project_*` conditions

        Returns:
            EligibilityCheck

        Raises:
            InvalidInput: no criteria, or profile is not an OrganizationProfile
            IncompleteProfile: strict mode and a mandatory criterion is unevaluable
        """
        if not isinstance(org, OrganizationProfile):
            raise InvalidInput("organization profile is required", operation=OPERATION,
                               field="organizationProfile")
        if not criteria:
            raise InvalidInput("at least one eligibility criterion is required", operation=OPERATION,
                               field="eligibilityCriteria")

        if project is not None and not isinstance(project, ProjectDetails):
            raise InvalidInput("project details must be a ProjectDetails", operation=OPERATION,
                               field="projectDetails")

        assessments = [self.assess(org, criterion, project) for criterion in criteria]

        if strict:
            for assessment in assessments:
                if assessment.criterion.mandatory and assessment.missing_fields:
                    raise IncompleteProfile(
                        f"mandatory criterion '{assessment.criterion.criterion}' needs "
                        f"{', '.join(assessment.missing_fields)}",
                        operation=OPERATION,
                        field=assessment.missing_fields[0],
                    )

        overall_eligible = all(a.meets for a in assessments if a.criterion.mandatory)
        score = self.score(assessments, overall_eligible)

        weights = [self._weight(a.criterion) for a in assessments]
        evaluable = sum(1 for a in assessments if not a.missing_fields)
        confidence = self.scorer.combine([
            self.scorer.combine([a.confidence for a in assessments], weights),
            self.scorer.from_completeness(evaluable, len(assessments)),
        ])

        incomplete_fields = sorted({f for a in assessments for f in a.missing_fields})

        logger.info(
            f"Eligibility {org.id} -> {grant_id or '-'}: eligible={overall_eligible}, "
            f"score={score}, confidence={confidence}"
        )
        if incomplete_fields:
            logger.debug(f"  profile missing: {', '.join(incomplete_fields)}")

        return EligibilityCheck(
            organization_id=org.id,
            grant_id=grant_id,
            overall_eligible=overall_eligible,
            eligibility_score=score,
            criteria=tuple(assessments),
            recommendations=tuple(self._recommendations(assessments, overall_eligible)),
            missing_requirements=tuple(
                a.criterion.criterion for a in assessments if a.criterion.mandatory and not a.meets
            ),
            strengths=tuple(
                a.criterion.criterion for a in assessments
                if a.meets and a.confidence >= self.STRENGTH_THRESHOLD
            ),
            weaknesses=tuple(
                a.criterion.criterion for a in assessments
                if not a.meets or a.confidence < self.WEAKNESS_THRESHOLD
            ),
            confidence=confidence,
            metadata={
                "schemaVersion": SCHEMA_VERSION,
                "incompleteFields": incomplete_fields,
                "strict": strict,
                "criteriaCount": len(assessments),
                "mandatoryCount": sum(1 for a in assessments if a.criterion.mandatory),
                "projectDetails": project is not None,
            },
        )

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def _weight(self, criterion: EligibilityCriterion) -> float:
        return self.MANDATORY_WEIGHT if criterion.mandatory else self.OPTIONAL_WEIGHT

    def score(self, assessments: Sequence[CriterionAssessment], overall_eligible: bool) -> float:
        """
        Weighted eligibility score in [0, 100].

        Eligible results land in (50, 100]; any unmet mandatory criterion
        keeps the score at or below 50.
        """
        total_weight = sum(self._weight(a.criterion) for a in assessments)
        credit = sum(
            self._weight(a.criterion) * (a.confidence / 100.0 if a.meets else 0.0)
            for a in assessments
        )
        raw = credit / total_weight if total_weight else 0.0

        if overall_eligible:
            return round(max(self.ELIGIBLE_FLOOR, 50.0 + 50.0 * raw), 1)
        return round(min(self.INELIGIBLE_CEILING, 100.0 * raw * 0.5), 1)

    # -------------------------------------------------------------------------
    # Per-criterion assessment
    # -------------------------------------------------------------------------

    def assess(self, org: OrganizationProfile, criterion: EligibilityCriterion,
               project: Optional[ProjectDetails] = None) -> CriterionAssessment:
        raw_conditions = list(criterion.conditions) or [criterion.criterion]

        grouped: Dict[str, List[str]] = {}
        unparsed = []
        for raw in raw_conditions:
            parsed = parse_condition(raw, criterion.kind)
            if parsed is None:
                unparsed.append(raw)
                continue
            key, value = parsed
            grouped.setdefault(key, []).append(value)

        evidence = (criterion.verification,) if criterion.verification else ()

        if not grouped:
            return CriterionAssessment(
                criterion=criterion,
                meets=False,
                confidence=0.0,
                reasoning=f"Could not interpret condition(s): {'; '.join(unparsed)}",
                evidence_required=evidence,
            )

        results = [self._evaluate_key(org, key, values, project) for key, values in grouped.items()]

        failed = [r for r in results if r.met is False]
        missing = [r for r in results if r.met is None]

        if failed:
            return CriterionAssessment(
                criterion=criterion,
                meets=False,
                confidence=self.scorer.from_exactness(min(r.exactness for r in failed)),
                reasoning="; ".join(r.reason for r in failed),
                evidence_required=evidence,
                missing_fields=tuple(r.missing_field for r in missing if r.missing_field),
            )

        if missing:
            fields = tuple(dict.fromkeys(r.missing_field for r in missing if r.missing_field))
            return CriterionAssessment(
                criterion=criterion,
                meets=False,
                confidence=0.0,
                reasoning=f"Cannot evaluate: {', '.join(fields)} missing from the {_missing_source(fields)}",
                evidence_required=evidence,
                missing_fields=fields,
            )

        confidence = self.scorer.product(self.scorer.from_exactness(r.exactness) for r in results)
        return CriterionAssessment(
            criterion=criterion,
            meets=True,
            confidence=confidence,
            reasoning="; ".join(r.reason for r in results),
            evidence_required=evidence,
        )

    def _evaluate_key(self, org: OrganizationProfile, key: str, values: List[str],
                      project: Optional[ProjectDetails] = None) -> ConditionResult:
        if key in ALTERNATIVE_KEYS:
            results = [self._evaluate_condition(org, key, v, project) for v in values]
            met = [r for r in results if r.met]
            if met:
                return max(met, key=lambda r: r.exactness)
            if any(r.met is None for r in results):
                return next(r for r in results if r.met is None)
            return ConditionResult(False, min(r.exactness for r in results),
                                   "; ".join(dict.fromkeys(r.reason for r in results)))

        results = [self._evaluate_condition(org, key, v, project) for v in values]
        for result in results:
            if result.met is not True:
                return result
        return results[0]

    def _evaluate_condition(self, org: OrganizationProfile, key: str, value: str,
                            project: Optional[ProjectDetails] = None) -> ConditionResult:
        if key.startswith("project_") or key in PROJECT_BOUNDS:
            return self._check_project(project, key, value)
        if key in ("location", "country", "region", "city"):
            return self._check_location(org, value)
        if key == "size_in":
            return self._check_size(org, value)
        if key in ("max_employees", "min_employees"):
            return self._check_bound(org.financial.employees, value, key.startswith("min"),
                                     PROFILE_FIELDS["employees"], "employees")
        if key == "sector":
            return self._check_sector(org, value)
        if key == "org_type":
            return self._check_org_type(org, value)
        if key == "legal_form":
            return self._check_legal_form(org, value)
        if key in ("min_annual_revenue", "max_annual_revenue"):
            return self._check_bound(org.financial.annual_revenue, value, key.startswith("min"),
                                     PROFILE_FIELDS["annual_revenue"], "annual revenue")
        if key == "min_years_active":
            return self._check_bound(org.experience.years_active, value, True,
                                     PROFILE_FIELDS["years_active"], "years active")
        if key == "min_previous_grants":
            return self._check_bound(org.experience.previous_grants, value, True,
                                     PROFILE_FIELDS["previous_grants"], "previous grants")
        if key == "min_total_funding":
            return self._check_bound(org.experience.total_funding_received, value, True,
                                     PROFILE_FIELDS["total_funding"], "total funding received")
        if key in ("capability", "certification", "partnership"):
            return self._check_membership(org, key, value)

        return ConditionResult(False, 0.0, f"Unrecognized condition '{key}:{value}'")

    def _check_project(self, project: Optional[ProjectDetails], key: str, value: str) -> ConditionResult:
        if key in PROJECT_BOUNDS:
            attr, label = PROJECT_BOUNDS[key]
            actual = getattr(project, attr) if project is not None else None
            return self._check_bound(actual, value, key.startswith("min"), PROJECT_FIELDS[attr], label)

        if key == "project_location":
            if project is None or not project.location:
                return ConditionResult(None, 0.0, "project location unknown", PROJECT_FIELDS["location"])
            actual = _country(project.location)
            wanted = _country(value)
            if actual == wanted:
                return ConditionResult(True, 1.0, f"Project location {project.location} matches {value}")
            if actual in LOCATION_GROUPS.get(wanted, ()):
                return ConditionResult(True, 0.9, f"Project location {project.location} is within {value}")
            return ConditionResult(False, 1.0, f"Project location {project.location} is not {value}")

        if key == "project_sector":
            if project is None or not project.sectors:
                return ConditionResult(None, 0.0, "project sectors unknown", PROJECT_FIELDS["sectors"])
            wanted = _norm(value)
            for sector in project.sectors:
                if _norm(sector) == wanted:
                    return ConditionResult(True, 1.0, f"Project is in the {value} sector")
                if wanted in _norm(sector) or _norm(sector) in wanted:
                    return ConditionResult(True, 0.8, f"Project sector '{sector}' overlaps {value}")
            return ConditionResult(False, 0.9,
                                   f"Project sectors {', '.join(project.sectors)} do not include {value}")

        return ConditionResult(False, 0.0, f"Unrecognized condition '{key}:{value}'")

    def _check_location(self, org: OrganizationProfile, value: str) -> ConditionResult:
        loc = org.location
        if not (loc.country or loc.region or loc.city):
            return ConditionResult(None, 0.0, "location unknown", PROFILE_FIELDS["location"])

        wanted = _country(value)
        if loc.city and _norm(loc.city) == wanted:
            return ConditionResult(True, 1.0, f"City {loc.city} matches {value}")
        if loc.region and _norm(loc.region) == wanted:
            return ConditionResult(True, 1.0, f"Region {loc.region} matches {value}")
        if loc.country and _country(loc.country) == wanted:
            return ConditionResult(True, 1.0, f"Country {loc.country} matches {value}")

        group = LOCATION_GROUPS.get(wanted)
        if group:
            if loc.country and _country(loc.country) in group:
                return ConditionResult(True, 0.9, f"{loc.country} is within {value}")
            if loc.region and _norm(loc.region) in group:
                return ConditionResult(True, 0.9, f"{loc.region} is within {value}")

        # A UK nation required, profile only says "UK": region decides
        if wanted in UK_NATIONS and loc.country and _country(loc.country) == "uk" and not loc.region:
            return ConditionResult(None, 0.0, f"region needed to confirm {value}", "location.region")

        where = ", ".join(p for p in (loc.city, loc.region, loc.country) if p)
        return ConditionResult(False, 1.0, f"Located in {where}, not {value}")

    def _check_size(self, org: OrganizationProfile, value: str) -> ConditionResult:
        allowed = {_norm(v) for v in value.split("|") if v.strip()}
        if org.size is not None:
            size, exactness = org.size, 1.0
        elif org.financial.employees is not None:
            size, exactness = size_band(org.financial.employees), 0.85
        else:
            return ConditionResult(None, 0.0, "size unknown", PROFILE_FIELDS["size"])

        if size.value in allowed:
            return ConditionResult(True, exactness, f"Size {size.value} is within {'/'.join(sorted(allowed))}")
        return ConditionResult(False, exactness, f"Size {size.value} is outside {'/'.join(sorted(allowed))}")

    def _check_bound(self, actual, value: str, is_minimum: bool, field_name: str, label: str) -> ConditionResult:
        try:
            threshold = float(value)
        except ValueError:
            amount = parse_amount(value)[1]
            if amount is None:
                return ConditionResult(False, 0.0, f"Threshold '{value}' for {label} is not a number")
            threshold = float(amount)

        if actual is None:
            return ConditionResult(None, 0.0, f"{label} unknown", field_name)

        if is_minimum:
            ok = actual >= threshold
            relation = "meets minimum" if ok else "below minimum"
        else:
            ok = actual <= threshold
            relation = "within maximum" if ok else "exceeds maximum"
        return ConditionResult(ok, 1.0, f"{label.capitalize()} {actual:,.0f} {relation} {threshold:,.0f}")

    def _check_sector(self, org: OrganizationProfile, value: str) -> ConditionResult:
        if not org.sectors:
            return ConditionResult(None, 0.0, "sectors unknown", PROFILE_FIELDS["sectors"])
        wanted = _norm(value)
        sectors = [_norm(s) for s in org.sectors]
        if wanted in sectors:
            return ConditionResult(True, 1.0, f"Works in the {value} sector")
        for sector in sectors:
            if wanted in sector or sector in wanted:
                return ConditionResult(True, 0.8, f"Sector '{sector}' overlaps {value}")
        return ConditionResult(False, 0.9, f"Sectors {', '.join(org.sectors)} do not include {value}")

    def _check_org_type(self, org: OrganizationProfile, value: str) -> ConditionResult:
        if org.org_type is None:
            return ConditionResult(None, 0.0, "organization type unknown", PROFILE_FIELDS["org_type"])
        wanted = ORG_TYPE_ALIASES.get(_norm(value), _norm(value))
        if org.org_type.value == wanted:
            return ConditionResult(True, 1.0, f"Organization type is {wanted}")
        return ConditionResult(False, 1.0, f"Organization type {org.org_type.value} is not {wanted}")

    def _check_legal_form(self, org: OrganizationProfile, value: str) -> ConditionResult:
        legal_form = org.financial.legal_form
        if not legal_form:
            return ConditionResult(None, 0.0, "legal form unknown", PROFILE_FIELDS["legal_form"])
        wanted = _norm(value)
        actual = _norm(legal_form)
        if actual == wanted:
            return ConditionResult(True, 1.0, f"Legal form is {legal_form}")
        if wanted in actual or actual in wanted:
            return ConditionResult(True, 0.8, f"Legal form {legal_form} matches {value}")
        return ConditionResult(False, 0.9, f"Legal form {legal_form} is not {value}")

    def _check_membership(self, org: OrganizationProfile, key: str, value: str) -> ConditionResult:
        items, field_name = {
            "capability": (org.capabilities, PROFILE_FIELDS["capabilities"]),
            "certification": (org.certifications, PROFILE_FIELDS["certifications"]),
            "partnership": (org.partnerships, PROFILE_FIELDS["partnerships"]),
        }[key]
        if not items:
            return ConditionResult(None, 0.0, f"{key} list empty", field_name)
        wanted = _norm(value)
        for item in items:
            if wanted == _norm(item):
                return ConditionResult(True, 1.0, f"Has {key} {item}")
            if wanted in _norm(item):
                return ConditionResult(True, 0.8, f"{key.capitalize()} '{item}' covers {value}")
        return ConditionResult(False, 0.8, f"No {key} matching {value}")

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    def _recommendations(self, assessments: Sequence[CriterionAssessment], overall_eligible: bool) -> List[str]:
        recommendations: List[str] = []

        for a in assessments:
            if a.meets:
                continue
            if a.missing_fields:
                recommendations.append(
                    f"Add {', '.join(a.missing_fields)} to the {_missing_source(a.missing_fields)} "
                    f"so '{a.criterion.criterion}' can be assessed"
                )
            elif a.criterion.mandatory:
                recommendations.append(f"Mandatory criterion not met: {a.criterion.criterion}")
            else:
                recommendations.append(f"Consider strengthening: {a.criterion.criterion}")

        if overall_eligible:
            evidence = [a.criterion.verification for a in assessments if a.meets and a.criterion.verification]
            if evidence:
                recommendations.append(f"Prepare supporting evidence: {'; '.join(dict.fromkeys(evidence))}")
        else:
            recommendations.append("Resolve unmet mandatory criteria before applying")

        return list(dict.fromkeys(recommendations))
