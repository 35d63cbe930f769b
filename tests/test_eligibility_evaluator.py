import pytest

from grant_engine.analysis.eligibility_evaluator import EligibilityEvaluator, parse_condition, size_band
from grant_engine.core.domain_models import (
    CriterionKind,
    EligibilityCriterion,
    OrganizationProfile,
    OrganizationSize,
    ProjectDetails,
)
from grant_engine.core.errors import IncompleteProfile, InvalidInput


def criterion(cid, kind, conditions, mandatory=True, text=None):
    return EligibilityCriterion(
        id=cid,
        criterion=text or f"{kind.value} criterion {cid}",
        kind=kind,
        mandatory=mandatory,
        conditions=tuple(conditions),
        verification="Supporting document",
    )


@pytest.fixture
def evaluator():
    return EligibilityEvaluator()


def test_missing_revenue_degrades_without_raising(evaluator, profile_without_revenue):
    revenue = criterion("c-rev", CriterionKind.FINANCIAL, ["min_annual_revenue:500000"])

    check = evaluator.evaluate(profile_without_revenue, [revenue], grant_id="grant-1")
    assessment = check.criteria[0]

    assert assessment.meets is False
    assert assessment.confidence == 0.0
    assert "annualRevenue" in assessment.reasoning
    assert assessment.missing_fields == ("annualRevenue",)
    assert check.overall_eligible is False
    assert check.metadata["incompleteFields"] == ["annualRevenue"]


def test_strict_mode_raises_for_mandatory_gap(evaluator, profile_without_revenue):
    revenue = criterion("c-rev", CriterionKind.FINANCIAL, ["min_annual_revenue:500000"])

    with pytest.raises(IncompleteProfile) as exc:
        evaluator.evaluate(profile_without_revenue, [revenue], strict=True)
    assert exc.value.field == "annualRevenue"


def test_strict_mode_ignores_optional_gap(evaluator, profile_without_revenue):
    revenue = criterion("c-rev", CriterionKind.FINANCIAL, ["min_annual_revenue:500000"], mandatory=False)
    location = criterion("c-loc", CriterionKind.LOCATION, ["location:UK"])

    check = evaluator.evaluate(profile_without_revenue, [revenue, location], strict=True)
    assert check.overall_eligible is True


def test_mandatory_dominance(evaluator, nonprofit_profile):
    unmet = criterion("c-type", CriterionKind.LEGAL, ["org_type:university"])
    optional = [
        criterion(f"c-opt-{i}", CriterionKind.LOCATION, ["location:UK"], mandatory=False)
        for i in range(10)
    ]

    check = evaluator.evaluate(nonprofit_profile, [unmet] + optional)

    assert check.overall_eligible is False
    assert check.eligibility_score <= 50
    assert check.missing_requirements == (unmet.criterion,)


def test_eligible_score_above_fifty(evaluator, nonprofit_profile):
    criteria = [
        criterion("c-loc", CriterionKind.LOCATION, ["location:England", "location:Wales"]),
        criterion("c-rev", CriterionKind.FINANCIAL, ["max_annual_revenue:1000000"]),
        criterion("c-type", CriterionKind.LEGAL, ["org_type:nonprofit"]),
        criterion("c-cert", CriterionKind.LEGAL, ["certification:ISO 9001"], mandatory=False),
    ]

    check = evaluator.evaluate(nonprofit_profile, criteria, grant_id="grant-1")

    assert check.overall_eligible is True
    assert 50 < check.eligibility_score <= 100
    assert check.grant_id == "grant-1"
    assert len(check.strengths) == 3
    assert "legal criterion c-cert" in check.weaknesses
    assert 0 <= check.confidence <= 100


def test_location_groups(evaluator):
    profile = OrganizationProfile.from_dict({"id": "org-fr", "name": "Atelier", "location": {"country": "France"}})
    eu = criterion("c-eu", CriterionKind.LOCATION, ["location:EU"])
    uk = criterion("c-uk", CriterionKind.LOCATION, ["location:United Kingdom"])

    check = evaluator.evaluate(profile, [eu, uk])
    by_id = {a.criterion.id: a for a in check.criteria}

    assert by_id["c-eu"].meets is True
    assert by_id["c-eu"].confidence == 90.0
    assert by_id["c-uk"].meets is False


def test_uk_nation_needs_region(evaluator, profile_without_revenue):
    scotland = criterion("c-sco", CriterionKind.LOCATION, ["location:Scotland"])
    assessment = evaluator.evaluate(profile_without_revenue, [scotland]).criteria[0]

    assert assessment.meets is False
    assert assessment.confidence == 0.0
    assert assessment.missing_fields == ("location.region",)


def test_size_from_employee_count(evaluator, profile_without_revenue):
    sme = criterion("c-sme", CriterionKind.SIZE, ["size_in:micro|small|medium", "max_employees:249"])
    assessment = evaluator.evaluate(profile_without_revenue, [sme]).criteria[0]

    assert assessment.meets is True
    # size inferred from 12 employees, so less certain than a declared size
    assert assessment.confidence == 85.0


def test_free_text_condition(evaluator, nonprofit_profile):
    experience = criterion("c-exp", CriterionKind.EXPERIENCE, ["At least 3 years of operation"])
    assessment = evaluator.evaluate(nonprofit_profile, [experience]).criteria[0]
    assert assessment.meets is True


def test_sector_overlap(evaluator, nonprofit_profile):
    sector = criterion("c-sec", CriterionKind.SECTOR, ["sector:health", "sector:education"])
    assert evaluator.evaluate(nonprofit_profile, [sector]).criteria[0].meets is True


def test_empty_criteria_rejected(evaluator, nonprofit_profile):
    with pytest.raises(InvalidInput) as exc:
        evaluator.evaluate(nonprofit_profile, [])
    assert exc.value.field == "eligibilityCriteria"


def test_score_stays_in_range(evaluator, nonprofit_profile, profile_without_revenue):
    criteria = [
        criterion("a", CriterionKind.FINANCIAL, ["min_annual_revenue:500000"]),
        criterion("b", CriterionKind.EXPERIENCE, ["min_years_active:5"], mandatory=False),
        criterion("c", CriterionKind.LOCATION, ["location:UK"]),
    ]
    for profile in (nonprofit_profile, profile_without_revenue):
        check = evaluator.evaluate(profile, criteria)
        assert 0 <= check.eligibility_score <= 100
        assert 0 <= check.confidence <= 100


def test_parse_condition():
    assert parse_condition("min_years_active:2", CriterionKind.EXPERIENCE) == ("min_years_active", "2")
    assert parse_condition("Minimum annual revenue £500k", CriterionKind.FINANCIAL) == \
        ("min_annual_revenue", "500000")
    assert parse_condition("Fewer than 250 employees", CriterionKind.SIZE) == ("max_employees", "250")
    assert parse_condition("SMEs only", CriterionKind.SIZE) == ("size_in", "micro|small|medium")
    assert parse_condition("", CriterionKind.SECTOR) is None


def test_size_band():
    assert size_band(3) == OrganizationSize.MICRO
    assert size_band(49) == OrganizationSize.SMALL
    assert size_band(249) == OrganizationSize.MEDIUM
    assert size_band(250) == OrganizationSize.LARGE


@pytest.fixture
def homework_club():
    return ProjectDetails.from_dict({
        "title": "Homework club",
        "requestedAmount": 45000,
        "durationMonths": 18,
        "location": {"country": "UK", "region": "Scotland"},
        "sectors": ["education"],
    })


def test_project_conditions(evaluator, nonprofit_profile, homework_club):
    criteria = [
        criterion("c-budget", CriterionKind.FINANCIAL, ["max_project_budget:50000"]),
        criterion("c-length", CriterionKind.FINANCIAL, ["max_duration_months:24", "min_duration_months:6"]),
        criterion("c-where", CriterionKind.LOCATION, ["project_location:UK"]),
        criterion("c-sector", CriterionKind.SECTOR, ["project_sector:education"]),
    ]
    check = evaluator.evaluate(nonprofit_profile, criteria, project=homework_club)

    assert homework_club.location == "Scotland"
    assert check.overall_eligible is True
    assert all(a.meets for a in check.criteria)
    assert check.metadata["projectDetails"] is True
    assert "Project location Scotland is within UK" in check.criteria[2].reasoning


def test_project_over_budget(evaluator, nonprofit_profile, homework_club):
    budget = criterion("c-budget", CriterionKind.FINANCIAL, ["max_project_budget:40000"])
    check = evaluator.evaluate(nonprofit_profile, [budget], project=homework_club)

    assert check.overall_eligible is False
    assert check.criteria[0].reasoning == "Requested amount 45,000 exceeds maximum 40,000"


def test_project_conditions_without_project_details(evaluator, nonprofit_profile):
    budget = criterion("c-budget", CriterionKind.FINANCIAL, ["max_project_budget:50000"])
    check = evaluator.evaluate(nonprofit_profile, [budget])

    assessment = check.criteria[0]
    assert assessment.meets is False
    assert assessment.missing_fields == ("projectDetails.requestedAmount",)
    assert assessment.reasoning == \
        "Cannot evaluate: projectDetails.requestedAmount missing from the project details"

    with pytest.raises(IncompleteProfile) as exc:
        evaluator.evaluate(nonprofit_profile, [budget], strict=True)
    assert exc.value.field == "projectDetails.requestedAmount"


def test_project_details_must_be_an_object():
    with pytest.raises(InvalidInput) as exc:
        ProjectDetails.from_dict(["not", "an", "object"])
    assert exc.value.field == "projectDetails"

    with pytest.raises(InvalidInput) as exc:
        ProjectDetails.from_dict({"requestedAmount": "lots"})
    assert exc.value.field == "projectDetails.requestedAmount"
