import pytest

from grant_engine.core.domain_models import (
    AnalysisDepth,
    AnalysisScope,
    ApplicationStage,
    GuidanceType,
    OrganizationType,
    ValidationLevel,
)
from grant_engine.core.errors import InvalidInput
from grant_engine.core.utils import fingerprint
from grant_engine.operations import (
    AnalyzeGrantRequirements,
    AnalyzeSuccessPatterns,
    CheckEligibility,
    GenerateApplicationGuidance,
    ValidateCompliance,
    parse_request,
)


CRITERION = {"id": "c-1", "criterion": "Must be a nonprofit", "kind": "legal",
             "conditions": ["org_type:nonprofit"]}


def test_parse_analyze_defaults_to_basic():
    request = parse_request("analyze_grant_requirements", {"grantText": "Some text", "grantId": "g-1"})
    assert isinstance(request, AnalyzeGrantRequirements)
    assert request.depth == AnalysisDepth.BASIC
    assert request.subject_id == "g-1"


def test_parse_accepts_snake_case():
    request = parse_request("analyze_grant_requirements",
                            {"grant_text": "Some text", "grant_id": "g-1", "depth": "DEEP"})
    assert request.depth == AnalysisDepth.DEEP


def test_fingerprint_ignores_whitespace_differences():
    a = parse_request("analyze_grant_requirements", {"grantText": "Apply  by\nMarch", "grantId": "g"})
    b = parse_request("analyze_grant_requirements", {"grantText": "Apply by March ", "grantId": "g"})
    c = parse_request("analyze_grant_requirements", {"grantText": "Apply by April", "grantId": "g"})

    assert fingerprint(a.operation, a.fingerprint_input()) == fingerprint(b.operation, b.fingerprint_input())
    assert fingerprint(a.operation, a.fingerprint_input()) != fingerprint(c.operation, c.fingerprint_input())


def test_parse_check_eligibility(nonprofit_profile):
    request = parse_request("check_eligibility", {
        "organizationProfile": nonprofit_profile.to_dict(),
        "eligibilityCriteria": [CRITERION],
        "strictMode": True,
    })
    assert isinstance(request, CheckEligibility)
    assert request.organization_profile == nonprofit_profile
    assert request.eligibility_criteria[0].mandatory is True
    assert request.strict_mode is True
    assert request.subject_id == "org-1"


def test_check_eligibility_bad_criterion_kind(nonprofit_profile):
    with pytest.raises(InvalidInput) as exc:
        parse_request("check_eligibility", {
            "organizationProfile": nonprofit_profile.to_dict(),
            "eligibilityCriteria": [dict(CRITERION, kind="astrology")],
        })
    assert exc.value.operation == "check_eligibility"
    assert exc.value.field == "eligibilityCriteria.kind"


def test_parse_validate_compliance():
    request = parse_request("validate_compliance", {
        "applicationId": "app-9",
        "applicationContent": {"sections": {"impact": {"content": "We will help."}}},
        "ruleSetId": "default",
    })
    assert isinstance(request, ValidateCompliance)
    assert request.application_content.application_id == "app-9"
    assert request.application_content.sections == {"impact": "We will help."}


def test_parse_success_patterns():
    request = parse_request("analyze_success_patterns", {
        "grantType": "Community", "corpusReference": "history", "minSampleSize": "8",
    })
    assert isinstance(request, AnalyzeSuccessPatterns)
    assert request.scope == AnalysisScope.COMPREHENSIVE
    assert request.min_sample_size == 8
    assert request.fingerprint_input()["grantType"] == "community"


@pytest.mark.parametrize("value", [0, "-3", "many"])
def test_success_patterns_min_sample_validated(value):
    with pytest.raises(InvalidInput) as exc:
        parse_request("analyze_success_patterns", {
            "grantType": "community", "corpusReference": "history", "minSampleSize": value,
        })
    assert exc.value.field == "minSampleSize"


def test_parse_guidance():
    request = parse_request("generate_application_guidance", {"grantId": "g-1", "organizationType": "University"})
    assert isinstance(request, GenerateApplicationGuidance)
    assert request.organization_type == OrganizationType.UNIVERSITY
    assert request.organization_profile is None


@pytest.mark.parametrize("name,arguments,field", [
    ("analyze_grant_requirements", {"grantId": "g"}, "grantText"),
    ("analyze_grant_requirements", {"grantText": "x", "grantId": " "}, "grantId"),
    ("analyze_grant_requirements", {"grantText": "x", "grantId": "g", "depth": "max"}, "depth"),
    ("validate_compliance", {"applicationId": "a", "ruleSetId": "default"}, "applicationContent"),
    ("analyze_success_patterns", {"grantType": "c", "corpusReference": "h", "scope": "all"}, "scope"),
    ("generate_application_guidance", {"grantId": "g", "organizationType": "club"}, "organizationType"),
    ("check_eligibility", {"eligibilityCriteria": [CRITERION]}, "organizationProfile"),
])
def test_invalid_arguments(name, arguments, field):
    with pytest.raises(InvalidInput) as exc:
        parse_request(name, arguments)
    assert exc.value.field == field
    assert exc.value.operation == name


def test_unknown_operation_and_bad_arguments():
    with pytest.raises(InvalidInput) as exc:
        parse_request("delete_everything", {})
    assert exc.value.field == "operation"

    with pytest.raises(InvalidInput) as exc:
        parse_request("analyze_grant_requirements", ["not", "a", "dict"])
    assert exc.value.field == "arguments"


@pytest.mark.parametrize("content,field", [
    ({"sections": ["executive summary", "impact"]}, "sections"),
    ({"budget": {"total": 100, "categories": ["staff"]}}, "budget.categories"),
    ({"budget": {"categories": {"staff": 100}}}, "budget.categories"),
    ({"budget": "£100"}, "budget"),
    ({"fields": ["contacts"]}, "fields"),
])
def test_malformed_application_content(content, field):
    with pytest.raises(InvalidInput) as exc:
        parse_request("validate_compliance", {
            "applicationId": "app-9", "applicationContent": content, "ruleSetId": "default",
        })
    assert exc.value.field == field
    assert exc.value.operation == "validate_compliance"


def test_validate_compliance_level_and_framework():
    request = parse_request("validate_compliance", {
        "applicationId": "app-9",
        "applicationContent": {"sections": {}},
        "ruleSetId": "default",
        "validationLevel": "comprehensive",
        "regulatoryFramework": " eu ",
    })
    default = parse_request("validate_compliance", {
        "applicationId": "app-9", "applicationContent": {"sections": {}}, "ruleSetId": "default",
    })

    assert request.validation_level == ValidationLevel.STRICT
    assert request.regulatory_framework == "EU"
    assert default.validation_level == ValidationLevel.STANDARD
    assert default.regulatory_framework is None
    assert fingerprint(request.operation, request.fingerprint_input()) != \
        fingerprint(default.operation, default.fingerprint_input())


def test_check_eligibility_with_project_details(nonprofit_profile):
    request = parse_request("check_eligibility", {
        "organizationProfile": nonprofit_profile.to_dict(),
        "eligibilityCriteria": [CRITERION],
        "projectDetails": {"title": "Homework club", "budget": "45000", "sector": "education"},
    })
    assert request.project_details.requested_amount == 45000.0
    assert request.project_details.sectors == ("education",)

    with pytest.raises(InvalidInput) as exc:
        parse_request("check_eligibility", {
            "organizationProfile": nonprofit_profile.to_dict(),
            "eligibilityCriteria": [CRITERION],
            "projectDetails": "homework club",
        })
    assert exc.value.field == "projectDetails"
    assert exc.value.operation == "check_eligibility"


def test_success_patterns_analysis_scope_alias():
    request = parse_request("analyze_success_patterns", {
        "grantType": "community", "corpusReference": "history", "analysisScope": "timing",
    })
    assert request.scope == AnalysisScope.TIMING


def test_guidance_stage_and_type():
    default = parse_request("generate_application_guidance", {"grantId": "g-1", "organizationType": "sme"})
    drafting = parse_request("generate_application_guidance", {
        "grantId": "g-1", "organizationType": "sme",
        "applicationStage": "Drafting", "guidanceType": "tactical", "grantType": "Community",
    })

    assert default.application_stage == ApplicationStage.PREPARATION
    assert default.guidance_type == GuidanceType.COMPREHENSIVE
    assert drafting.application_stage == ApplicationStage.DRAFTING
    assert drafting.guidance_type == GuidanceType.TACTICAL
    assert drafting.fingerprint_input()["grantType"] == "community"
    assert fingerprint(default.operation, default.fingerprint_input()) != \
        fingerprint(drafting.operation, drafting.fingerprint_input())


@pytest.mark.parametrize("arguments,field", [
    ({"applicationStage": "celebration"}, "applicationStage"),
    ({"guidanceType": "vague"}, "guidanceType"),
    ({"grantType": 7}, "grantType"),
])
def test_invalid_guidance_options(arguments, field):
    with pytest.raises(InvalidInput) as exc:
        parse_request("generate_application_guidance",
                      dict({"grantId": "g-1", "organizationType": "sme"}, **arguments))
    assert exc.value.field == field
