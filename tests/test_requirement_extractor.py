import pytest

from grant_engine.analysis.requirement_extractor import RequirementExtractor
from grant_engine.core.domain_models import (
    AnalysisDepth,
    CriterionKind,
    RequirementCategory,
    RequirementKind,
    ResultStatus,
)
from grant_engine.core.errors import BackendUnavailable, InvalidInput


class FakeBackend:
    """Stands in for TextBackend; records prompts and returns canned JSON."""

    def __init__(self, response=None, error=None):
        self.response = response or {"requirements": []}
        self.error = error
        self.calls = 0

    def complete_json(self, system_prompt, user_prompt, operation="analyze_grant_requirements"):
        self.calls += 1
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def extractor():
    return RequirementExtractor()


def test_nonprofit_scenario(extractor, nonprofit_announcement):
    result = extractor.extract(nonprofit_announcement, "grant-np", AnalysisDepth.BASIC)

    assert result.status == ResultStatus.COMPLETE
    mandatory = [r for r in result.requirements if r.kind == RequirementKind.MANDATORY]
    assert len(mandatory) >= 2

    categories = {r.category for r in mandatory}
    assert RequirementCategory.ORGANIZATIONAL in categories
    assert RequirementCategory.FINANCIAL in categories

    conditions = {c for criterion in result.eligibility_criteria for c in criterion.conditions}
    assert "org_type:nonprofit" in conditions
    assert "min_years_active:2" in conditions
    assert all(c.mandatory for c in result.eligibility_criteria)


def test_excerpts_are_verbatim(extractor, community_announcement):
    result = extractor.extract(community_announcement, "grant-c", "basic")

    assert result.requirements
    for requirement in result.requirements:
        assert requirement.source_excerpt
        assert requirement.source_excerpt in community_announcement
        assert 1 <= requirement.importance <= 10
        assert 0 <= requirement.confidence <= 100
    for criterion in result.eligibility_criteria:
        assert criterion.source_excerpt in community_announcement


def test_extraction_is_idempotent(extractor, community_announcement):
    first = extractor.extract(community_announcement, "grant-c", "basic")
    second = extractor.extract(community_announcement, "grant-c", "basic")

    assert {r.id for r in first.requirements} == {r.id for r in second.requirements}
    assert {c.id for c in first.eligibility_criteria} == {c.id for c in second.eligibility_criteria}
    assert abs(first.confidence - second.confidence) <= 2


def test_requirement_kinds(extractor, community_announcement):
    result = extractor.extract(community_announcement, "grant-c", "basic")
    kinds = {r.kind for r in result.requirements}
    assert kinds == {RequirementKind.MANDATORY, RequirementKind.PREFERRED, RequirementKind.OPTIONAL}


def test_eligibility_conditions(extractor, community_announcement):
    result = extractor.extract(community_announcement, "grant-c", "basic")
    by_kind = {c.kind: c for c in result.eligibility_criteria}

    assert set(by_kind[CriterionKind.LOCATION].conditions) == {"location:England", "location:Wales"}
    assert "max_annual_revenue:1000000" in by_kind[CriterionKind.FINANCIAL].conditions
    assert "org_type:nonprofit" in by_kind[CriterionKind.LEGAL].conditions


def test_grant_facts_in_metadata(extractor, community_announcement):
    result = extractor.extract(community_announcement, "grant-c", "basic")

    assert result.metadata["schemaVersion"] == 1
    assert result.metadata["fundingAmountValue"] == 50000
    assert result.metadata["deadline"].startswith("2025-03-15")
    assert result.metadata["sourceFormat"] == "text"


def test_deep_adds_inferred_with_lower_confidence(extractor, community_announcement):
    basic = extractor.extract(community_announcement, "grant-c", AnalysisDepth.BASIC)
    deep = extractor.extract(community_announcement, "grant-c", AnalysisDepth.DEEP)

    inferred = [r for r in deep.requirements if r.inferred]
    assert inferred
    assert deep.metadata["inferredCount"] == len(inferred)
    assert all(r.kind != RequirementKind.MANDATORY for r in inferred)
    assert deep.confidence < basic.confidence


def test_backend_suggestions_need_verbatim_excerpt(community_announcement):
    backend = FakeBackend({"requirements": [
        {
            "description": "Evidence of links with local schools",
            "category": "organizational",
            "kind": "preferred",
            "excerpt": "Projects should involve partnership with local schools or health services.",
        },
        {
            "description": "Invented requirement",
            "category": "legal",
            "kind": "preferred",
            "excerpt": "This sentence is not in the announcement.",
        },
    ]})
    extractor = RequirementExtractor(backend=backend)

    result = extractor.extract(community_announcement, "grant-c", "deep")
    descriptions = {r.description for r in result.requirements}

    assert backend.calls == 1
    assert "Evidence of links with local schools" in descriptions
    assert "Invented requirement" not in descriptions
    assert result.metadata["backendUsed"] is True


def test_basic_never_calls_backend(community_announcement):
    backend = FakeBackend()
    RequirementExtractor(backend=backend).extract(community_announcement, "grant-c", "basic")
    assert backend.calls == 0


def test_backend_failure_propagates(community_announcement):
    backend = FakeBackend(error=BackendUnavailable("timed out"))
    with pytest.raises(BackendUnavailable):
        RequirementExtractor(backend=backend).extract(community_announcement, "grant-c", "deep")


def test_html_announcement(extractor, nonprofit_announcement):
    html = f"<html><body><nav>Home | Funding</nav><main><p>{nonprofit_announcement}</p></main></body></html>"
    result = extractor.extract(html, "grant-html", "basic")

    assert result.metadata["sourceFormat"] == "html"
    assert len([r for r in result.requirements if r.kind == RequirementKind.MANDATORY]) >= 2
    assert all("Home" not in r.source_excerpt for r in result.requirements)


def test_no_requirements_found(extractor):
    text = "This page describes the history of our foundation and the people who started it long ago."
    result = extractor.extract(text, "grant-none", "basic")

    assert result.status == ResultStatus.NO_REQUIREMENTS_FOUND
    assert result.requirements == ()


@pytest.mark.parametrize("text", [
    "",
    "   ",
    "Too short.",
    "1234 5678 9012 3456 7890 1234 5678 9012 3456 7890 1234",
])
def test_invalid_text_rejected(extractor, text):
    with pytest.raises(InvalidInput) as exc:
        extractor.extract(text, "grant-x", "basic")
    assert exc.value.field == "grantText"


def test_blank_grant_id_and_unknown_depth(extractor, nonprofit_announcement):
    with pytest.raises(InvalidInput) as exc:
        extractor.extract(nonprofit_announcement, "  ", "basic")
    assert exc.value.field == "grantId"

    with pytest.raises(InvalidInput) as exc:
        extractor.extract(nonprofit_announcement, "grant-x", "exhaustive")
    assert exc.value.field == "depth"


def test_categorize_falls_back_to_project(extractor):
    assert extractor.categorize("something entirely unrelated")[0] == RequirementCategory.PROJECT
    assert extractor.categorize("submit an itemised budget")[0] == RequirementCategory.FINANCIAL
