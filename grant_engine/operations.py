"""
Typed operation requests.

The engine exposes exactly five operations. Each has a frozen request type;
tool-style calls (operation name plus a camelCase argument dict) are parsed
into one of them with parse_request(), so the engine never dispatches on an
untyped payload.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from grant_engine.core.domain_models import (
    AnalysisDepth,
    AnalysisScope,
    ApplicationContent,
    ApplicationStage,
    EligibilityCriterion,
    GuidanceType,
    OrganizationProfile,
    OrganizationType,
    ProjectDetails,
    ValidationLevel,
)
from grant_engine.core.errors import GrantEngineError, InvalidInput


ANALYZE_GRANT_REQUIREMENTS = "analyze_grant_requirements"
CHECK_ELIGIBILITY = "check_eligibility"
VALIDATE_COMPLIANCE = "validate_compliance"
ANALYZE_SUCCESS_PATTERNS = "analyze_success_patterns"
GENERATE_APPLICATION_GUIDANCE = "generate_application_guidance"

# Older callers name the strictest level "comprehensive"
LEVEL_ALIASES = {"comprehensive": "strict"}


def _arg(arguments: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in arguments and arguments[name] is not None:
            return arguments[name]
    return default


def _required_str(arguments: Dict[str, Any], operation: str, name: str, *aliases: str) -> str:
    value = _arg(arguments, name, *aliases)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("required field is missing", operation=operation, field=name)
    return value


def _choice(enum_cls, raw: Any, operation: str, field_name: str):
    try:
        return enum_cls(raw.value if isinstance(raw, enum_cls) else str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidInput(f"unknown value {raw!r}; expected one of: {allowed}",
                           operation=operation, field=field_name)


@dataclass(frozen=True)
class AnalyzeGrantRequirements:
    grant_text: str
    grant_id: str
    depth: AnalysisDepth = AnalysisDepth.BASIC

    operation = ANALYZE_GRANT_REQUIREMENTS

    @property
    def subject_id(self) -> str:
        return self.grant_id

    def fingerprint_input(self) -> Dict[str, Any]:
        return {"grantText": self.grant_text, "grantId": self.grant_id, "depth": self.depth}

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "AnalyzeGrantRequirements":
        op = cls.operation
        text = _arg(arguments, "grantText", "grant_text")
        if not isinstance(text, str):
            raise InvalidInput("grant text is required", operation=op, field="grantText")
        return cls(
            grant_text=text,
            grant_id=_required_str(arguments, op, "grantId", "grant_id"),
            depth=_choice(AnalysisDepth, _arg(arguments, "depth", default="basic"), op, "depth"),
        )


@dataclass(frozen=True)
class CheckEligibility:
    organization_profile: OrganizationProfile
    eligibility_criteria: Tuple[EligibilityCriterion, ...]
    grant_id: Optional[str] = None
    strict_mode: bool = False
    project_details: Optional[ProjectDetails] = None

    operation = CHECK_ELIGIBILITY

    @property
    def subject_id(self) -> str:
        return self.organization_profile.id

    def fingerprint_input(self) -> Dict[str, Any]:
        return {
            "organizationProfile": self.organization_profile,
            "eligibilityCriteria": list(self.eligibility_criteria),
            "grantId": self.grant_id,
            "strictMode": self.strict_mode,
            "projectDetails": self.project_details,
        }

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "CheckEligibility":
        op = cls.operation
        profile = _arg(arguments, "organizationProfile", "organization_profile")
        if profile is None:
            raise InvalidInput("organization profile is required", operation=op, field="organizationProfile")
        criteria = _arg(arguments, "eligibilityCriteria", "eligibility_criteria")
        if not isinstance(criteria, (list, tuple)) or not criteria:
            raise InvalidInput("at least one eligibility criterion is required", operation=op,
                               field="eligibilityCriteria")
        try:
            if not isinstance(profile, OrganizationProfile):
                profile = OrganizationProfile.from_dict(profile)
            parsed = tuple(
                c if isinstance(c, EligibilityCriterion) else EligibilityCriterion.from_dict(c)
                for c in criteria
            )
            project = _arg(arguments, "projectDetails", "project_details")
            if project is not None and not isinstance(project, ProjectDetails):
                project = ProjectDetails.from_dict(project)
        except GrantEngineError as e:
            raise e.with_operation(op)
        return cls(
            organization_profile=profile,
            eligibility_criteria=parsed,
            grant_id=_arg(arguments, "grantId", "grant_id"),
            strict_mode=bool(_arg(arguments, "strictMode", "strict_mode", default=False)),
            project_details=project,
        )


@dataclass(frozen=True)
class ValidateCompliance:
    application_id: str
    application_content: ApplicationContent
    rule_set_id: str
    validation_level: ValidationLevel = ValidationLevel.STANDARD
    regulatory_framework: Optional[str] = None

    operation = VALIDATE_COMPLIANCE

    @property
    def subject_id(self) -> str:
        return self.application_id

    def fingerprint_input(self) -> Dict[str, Any]:
        return {
            "applicationId": self.application_id,
            "applicationContent": self.application_content,
            "ruleSetId": self.rule_set_id,
            "validationLevel": self.validation_level,
            "regulatoryFramework": self.regulatory_framework,
        }

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "ValidateCompliance":
        op = cls.operation
        application_id = _required_str(arguments, op, "applicationId", "application_id")
        content = _arg(arguments, "applicationContent", "application_content")
        if content is None:
            raise InvalidInput("application content is required", operation=op, field="applicationContent")
        if not isinstance(content, ApplicationContent):
            try:
                content = ApplicationContent.from_dict(content, application_id=application_id)
            except GrantEngineError as e:
                raise e.with_operation(op)
        level = _arg(arguments, "validationLevel", "validation_level", default="standard")
        if isinstance(level, str) and level.strip().lower() in LEVEL_ALIASES:
            level = LEVEL_ALIASES[level.strip().lower()]
        framework = _arg(arguments, "regulatoryFramework", "regulatory_framework")
        if framework is not None and (not isinstance(framework, str) or not framework.strip()):
            raise InvalidInput("regulatory framework must be a non-empty string", operation=op,
                               field="regulatoryFramework")
        return cls(
            application_id=application_id,
            application_content=content,
            rule_set_id=_required_str(arguments, op, "ruleSetId", "rule_set_id"),
            validation_level=_choice(ValidationLevel, level, op, "validationLevel"),
            regulatory_framework=framework.strip().upper() if framework else None,
        )


@dataclass(frozen=True)
class AnalyzeSuccessPatterns:
    grant_type: str
    corpus_reference: str
    scope: AnalysisScope = AnalysisScope.COMPREHENSIVE
    min_sample_size: Optional[int] = None

    operation = ANALYZE_SUCCESS_PATTERNS

    @property
    def subject_id(self) -> str:
        return self.grant_type

    def fingerprint_input(self) -> Dict[str, Any]:
        # The corpus itself is fingerprinted by the engine once resolved
        return {
            "grantType": self.grant_type.strip().lower(),
            "scope": self.scope,
            "minSampleSize": self.min_sample_size,
        }

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "AnalyzeSuccessPatterns":
        op = cls.operation
        min_sample = _arg(arguments, "minSampleSize", "min_sample_size")
        if min_sample is not None:
            try:
                min_sample = int(min_sample)
            except (TypeError, ValueError):
                raise InvalidInput(f"expected an integer, got {min_sample!r}", operation=op,
                                   field="minSampleSize")
            if min_sample < 1:
                raise InvalidInput("minimum sample size must be at least 1", operation=op,
                                   field="minSampleSize")
        return cls(
            grant_type=_required_str(arguments, op, "grantType", "grant_type"),
            corpus_reference=_required_str(arguments, op, "corpusReference", "corpus_reference"),
            scope=_choice(
                AnalysisScope,
                _arg(arguments, "scope", "analysisScope", "analysis_scope", default="comprehensive"),
                op, "scope",
            ),
            min_sample_size=min_sample,
        )


@dataclass(frozen=True)
class GenerateApplicationGuidance:
    grant_id: str
    organization_type: OrganizationType
    organization_profile: Optional[OrganizationProfile] = None
    application_stage: ApplicationStage = ApplicationStage.PREPARATION
    guidance_type: GuidanceType = GuidanceType.COMPREHENSIVE
    grant_type: Optional[str] = None

    operation = GENERATE_APPLICATION_GUIDANCE

    @property
    def subject_id(self) -> str:
        return self.grant_id

    def fingerprint_input(self) -> Dict[str, Any]:
        # The engine adds the date of the analysis the guidance is built from
        return {
            "grantId": self.grant_id,
            "organizationType": self.organization_type,
            "organizationProfile": self.organization_profile,
            "applicationStage": self.application_stage,
            "guidanceType": self.guidance_type,
            "grantType": self.grant_type.strip().lower() if self.grant_type else None,
        }

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "GenerateApplicationGuidance":
        op = cls.operation
        profile = _arg(arguments, "organizationProfile", "organization_profile")
        if profile is not None and not isinstance(profile, OrganizationProfile):
            try:
                profile = OrganizationProfile.from_dict(profile)
            except GrantEngineError as e:
                raise e.with_operation(op)
        grant_type = _arg(arguments, "grantType", "grant_type")
        if grant_type is not None and (not isinstance(grant_type, str) or not grant_type.strip()):
            raise InvalidInput("grant type must be a non-empty string", operation=op, field="grantType")
        return cls(
            grant_id=_required_str(arguments, op, "grantId", "grant_id"),
            organization_type=_choice(
                OrganizationType, _required_str(arguments, op, "organizationType", "organization_type"),
                op, "organizationType",
            ),
            organization_profile=profile,
            application_stage=_choice(
                ApplicationStage, _arg(arguments, "applicationStage", "application_stage", default="preparation"),
                op, "applicationStage",
            ),
            guidance_type=_choice(
                GuidanceType, _arg(arguments, "guidanceType", "guidance_type", default="comprehensive"),
                op, "guidanceType",
            ),
            grant_type=grant_type,
        )


Request = Union[
    AnalyzeGrantRequirements,
    CheckEligibility,
    ValidateCompliance,
    AnalyzeSuccessPatterns,
    GenerateApplicationGuidance,
]

REQUEST_TYPES = {
    cls.operation: cls
    for cls in (
        AnalyzeGrantRequirements,
        CheckEligibility,
        ValidateCompliance,
        AnalyzeSuccessPatterns,
        GenerateApplicationGuidance,
    )
}


def parse_request(name: str, arguments: Optional[Dict[str, Any]]) -> Request:
    """
    Parse a tool-style call into a typed request.

    Raises:
        InvalidInput: unknown operation name or invalid arguments
    """
    request_cls = REQUEST_TYPES.get(name)
    if request_cls is None:
        raise InvalidInput(
            f"unknown operation {name!r}; expected one of: {', '.join(sorted(REQUEST_TYPES))}",
            field="operation",
        )
    if not isinstance(arguments, dict):
        raise InvalidInput("arguments must be an object", operation=name, field="arguments")
    return request_cls.from_arguments(arguments)
