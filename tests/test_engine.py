import json
import threading

import pytest

from grant_engine.analysis.requirement_extractor import RequirementExtractor
from grant_engine.core.config import DatabaseConfig, EngineConfig
from grant_engine.core.domain_models import (
    ApplicationGuidance,
    ComplianceResult,
    EligibilityCheck,
    GrantAnalysisResult,
    ResultStatus,
    SuccessPatternResult,
)
from grant_engine.core.errors import InvalidInput, ResultTimeout
from grant_engine.engine import GrantAnalysisEngine
from grant_engine.storage.analysis_store import AnalysisStore
from grant_engine.storage.result_cache import MemoryKeyValueCache, ResultCache


class CountingExtractor(RequirementExtractor):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def extract(self, grant_text, grant_id, depth="basic"):
        self.calls += 1
        return super().extract(grant_text, grant_id, depth)


@pytest.fixture
def store(database):
    return AnalysisStore(database)


@pytest.fixture
def engine(store):
    engine = GrantAnalysisEngine(
        extractor=CountingExtractor(),
        cache=ResultCache(MemoryKeyValueCache()),
        store=store,
        wait_timeout=10,
    )
    yield engine
    engine.close()


def analyze(engine, text, grant_id="grant-c", depth="basic"):
    return engine.handle("analyze_grant_requirements", {"grantText": text, "grantId": grant_id, "depth": depth})


def test_analyze_then_cache_hit(engine, community_announcement):
    first = analyze(engine, community_announcement)
    second = analyze(engine, community_announcement)

    assert isinstance(first, GrantAnalysisResult)
    assert first.status == ResultStatus.COMPLETE
    assert engine.extractor.calls == 1
    assert second.to_dict() == first.to_dict()
    json.dumps(first.to_dict())


def test_depth_is_part_of_the_key(engine, community_announcement):
    analyze(engine, community_announcement, depth="basic")
    analyze(engine, community_announcement, depth="deep")
    assert engine.extractor.calls == 2


def test_stored_result_reused_without_cache(store, community_announcement):
    first_engine = GrantAnalysisEngine(extractor=CountingExtractor(), store=store)
    second_engine = GrantAnalysisEngine(extractor=CountingExtractor(), store=store)

    analyze(first_engine, community_announcement)
    reused = analyze(second_engine, community_announcement)

    assert second_engine.extractor.calls == 0
    assert reused.grant_id == "grant-c"
    assert store.count("analyze_grant_requirements") == 1


def test_check_eligibility_with_extracted_criteria(engine, community_announcement, nonprofit_profile):
    analysis = analyze(engine, community_announcement)

    check = engine.handle("check_eligibility", {
        "organizationProfile": nonprofit_profile.to_dict(),
        "eligibilityCriteria": [c.to_dict() for c in analysis.eligibility_criteria],
        "grantId": "grant-c",
    })

    assert isinstance(check, EligibilityCheck)
    assert check.overall_eligible is True
    assert check.eligibility_score > 50


def test_check_eligibility_rejects_empty_criteria(engine, nonprofit_profile):
    with pytest.raises(InvalidInput) as exc:
        engine.handle("check_eligibility", {"organizationProfile": nonprofit_profile.to_dict(),
                                            "eligibilityCriteria": []})
    assert exc.value.field == "eligibilityCriteria"
    assert exc.value.operation == "check_eligibility"


def test_validate_compliance(engine, compliant_application):
    content = {
        "sections": dict(compliant_application.sections),
        "budget": {
            "total": 120000,
            "categories": [
                {"name": "Staff", "amount": 90000, "justification": "Two project workers"},
                {"name": "Materials", "amount": 30000, "justification": "Workshop supplies"},
            ],
        },
    }
    result = engine.handle("validate_compliance", {
        "applicationId": "app-1", "applicationContent": content, "ruleSetId": "default",
    })

    assert isinstance(result, ComplianceResult)
    assert result.overall_compliant is True
    assert result.rule_set_id == "default"

    with pytest.raises(InvalidInput) as exc:
        engine.handle("validate_compliance", {
            "applicationId": "app-1", "applicationContent": content, "ruleSetId": "unknown",
        })
    assert exc.value.operation == "validate_compliance"


def test_analyze_success_patterns(engine, store, outcome_corpus):
    engine.corpora.register("history", outcome_corpus)

    result = engine.handle("analyze_success_patterns", {
        "grantType": "community", "corpusReference": "history", "scope": "comprehensive",
    })

    assert isinstance(result, SuccessPatternResult)
    assert len(result.patterns) == 3
    assert len(store.list_patterns("community")) == 3


def test_guidance_after_analysis(engine, community_announcement, nonprofit_profile):
    analyze(engine, community_announcement)

    guidance = engine.handle("generate_application_guidance", {
        "grantId": "grant-c",
        "organizationType": "nonprofit",
        "organizationProfile": nonprofit_profile.to_dict(),
    })

    assert isinstance(guidance, ApplicationGuidance)
    assert guidance.organization_type == "nonprofit"
    assert guidance.sections
    assert any(f.startswith("Strength: ") for f in guidance.competitive_factors)


def test_guidance_uses_stored_analysis(store, community_announcement):
    analyze(GrantAnalysisEngine(store=store), community_announcement)

    fresh = GrantAnalysisEngine(store=store)
    guidance = fresh.handle("generate_application_guidance", {"grantId": "grant-c", "organizationType": "sme"})
    assert guidance.grant_id == "grant-c"


def test_guidance_without_analysis(engine):
    with pytest.raises(InvalidInput) as exc:
        engine.handle("generate_application_guidance", {"grantId": "never-analyzed",
                                                        "organizationType": "nonprofit"})
    assert exc.value.field == "grantId"
    assert exc.value.operation == "generate_application_guidance"


def test_unknown_operation(engine):
    with pytest.raises(InvalidInput) as exc:
        engine.handle("summarize_grant", {})
    assert exc.value.field == "operation"


def test_invalid_text_is_tagged_with_operation(engine):
    with pytest.raises(InvalidInput) as exc:
        analyze(engine, "")
    assert exc.value.operation == "analyze_grant_requirements"
    assert exc.value.to_dict()["error"] == "invalid_input"


def test_from_config_without_caching(tmp_path):
    config = EngineConfig(
        database=DatabaseConfig(sqlite_path=str(tmp_path / "engine.db")),
        enable_caching=False,
    )
    engine = GrantAnalysisEngine.from_config(config)
    try:
        assert engine.cache is None
        assert engine.store is not None
        assert engine.extractor.backend is None
    finally:
        engine.close()


def test_malformed_content_is_invalid_input(engine):
    with pytest.raises(InvalidInput) as exc:
        engine.handle("validate_compliance", {
            "applicationId": "app-1",
            "applicationContent": {"sections": ["executive summary"]},
            "ruleSetId": "default",
        })
    assert exc.value.field == "sections"
    assert exc.value.operation == "validate_compliance"


def test_validate_compliance_level_reaches_validator(engine, compliant_application):
    result = engine.handle("validate_compliance", {
        "applicationId": "app-1",
        "applicationContent": {"sections": dict(compliant_application.sections)},
        "ruleSetId": "default",
        "validationLevel": "basic",
    })
    assert result.metadata["validationLevel"] == "basic"
    assert result.metadata["ruleCount"] < 13


def test_latest_analyses_are_bounded(community_announcement):
    engine = GrantAnalysisEngine(max_latest=2)
    analyze(engine, community_announcement, grant_id="grant-a")
    analyze(engine, community_announcement, grant_id="grant-b")

    # Reading grant-a makes grant-b the least recently used
    engine.handle("generate_application_guidance", {"grantId": "grant-a", "organizationType": "sme"})
    analyze(engine, community_announcement, grant_id="grant-c")

    with pytest.raises(InvalidInput):
        engine.handle("generate_application_guidance", {"grantId": "grant-b", "organizationType": "sme"})
    for grant_id in ("grant-a", "grant-c"):
        guidance = engine.handle("generate_application_guidance", {"grantId": grant_id, "organizationType": "sme"})
        assert guidance.grant_id == grant_id


def test_waiting_too_long_is_a_recoverable_error(community_announcement):
    release = threading.Event()

    class SlowExtractor(RequirementExtractor):
        def extract(self, grant_text, grant_id, depth="basic"):
            release.wait(timeout=5)
            return super().extract(grant_text, grant_id, depth)

    engine = GrantAnalysisEngine(extractor=SlowExtractor(), cache=ResultCache(MemoryKeyValueCache()),
                                 wait_timeout=0.05)
    try:
        with pytest.raises(ResultTimeout) as exc:
            analyze(engine, community_announcement)
        assert exc.value.operation == "analyze_grant_requirements"
        assert exc.value.recoverable is True
        assert exc.value.to_dict()["error"] == "result_timeout"
    finally:
        release.set()
        engine.close()


def test_guidance_draws_on_mined_patterns(engine, store, outcome_corpus, community_announcement):
    engine.corpora.register("history", outcome_corpus)
    engine.handle("analyze_success_patterns", {"grantType": "community", "corpusReference": "history"})
    analyze(engine, community_announcement)

    arguments = {"grantId": "grant-c", "organizationType": "nonprofit", "grantType": "Community",
                 "applicationStage": "review"}
    guidance = engine.handle("generate_application_guidance", arguments)
    assert any(f.startswith("Success pattern: ") for f in guidance.competitive_factors)
    assert [t.task for t in guidance.timeline] == [
        "Internal review against requirements",
        "Final checks and submission",
    ]

    # A fresh engine reads the patterns back from the store
    fresh = GrantAnalysisEngine(store=store)
    again = fresh.handle("generate_application_guidance", arguments)
    assert {f for f in again.competitive_factors if f.startswith("Success pattern: ")} == \
        {f for f in guidance.competitive_factors if f.startswith("Success pattern: ")}
