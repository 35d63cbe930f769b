import json

import pytest

from grant_engine.core.domain_models import Outcome
from grant_engine.core.errors import InvalidInput
from grant_engine.ingest.corpus_loader import CorpusRegistry, corpus_fingerprint, load_corpus_file


CSV_CORPUS = (
    "applicationId,grantType,organizationType,outcome,score,submittedAt,deadline,section_summary,section_budget\n"
    "a-1,community,nonprofit,funded,82,2024-06-20T09:00:00+00:00,2024-06-30T17:00:00+00:00,"
    "We work in partnership with schools.,Total request 40000\n"
    "a-2,community,nonprofit,rejected,,,,Weekly sessions for families.,\n"
)


def write_jsonl(path, records):
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n")


def test_load_csv_folds_section_columns(tmp_path):
    path = tmp_path / "outcomes.csv"
    path.write_text(CSV_CORPUS)

    funded, rejected = load_corpus_file(str(path))

    assert funded.outcome == Outcome.FUNDED
    assert funded.sections == {"summary": "We work in partnership with schools.",
                               "budget": "Total request 40000"}
    assert funded.score == 82.0
    assert funded.submitted_at.day == 20
    assert funded.deadline.month == 6

    assert rejected.sections == {"summary": "Weekly sessions for families."}
    assert rejected.score is None
    assert rejected.submitted_at is None


def test_load_jsonl(tmp_path):
    path = tmp_path / "outcomes.jsonl"
    write_jsonl(path, [
        {"applicationId": "j-1", "grantType": "research", "outcome": "funded", "score": 77,
         "sections": {"summary": "A pilot study.", "methods": "Mixed methods."}, "budgetTotal": 90000},
        {"applicationId": "j-2", "grantType": "research", "outcome": "rejected", "text": "Short bid."},
    ])

    first, second = load_corpus_file(str(path))

    assert first.sections == {"summary": "A pilot study.", "methods": "Mixed methods."}
    assert first.score == 77.0
    assert first.budget_total == 90000.0
    assert first.organization_type == "unknown"
    assert second.sections == {"body": "Short bid."}
    assert second.score is None


def test_load_json_array(tmp_path):
    path = tmp_path / "outcomes.json"
    path.write_text(json.dumps([
        {"id": "x-1", "grant_type": "arts", "outcome": "Funded", "text": "Exhibition programme."},
    ]))
    (outcome,) = load_corpus_file(str(path))
    assert outcome.application_id == "x-1"
    assert outcome.outcome == Outcome.FUNDED


def test_malformed_row_is_named(tmp_path):
    path = tmp_path / "outcomes.jsonl"
    write_jsonl(path, [
        {"applicationId": "j-1", "grantType": "research", "outcome": "funded", "text": "Fine."},
        {"applicationId": "j-2", "grantType": "research", "outcome": "pending", "text": "Unknown."},
    ])
    with pytest.raises(InvalidInput) as exc:
        load_corpus_file(str(path))
    assert "row 1" in exc.value.reason
    assert exc.value.field == "outcome"


def test_missing_or_unsupported_file(tmp_path):
    with pytest.raises(InvalidInput):
        load_corpus_file(str(tmp_path / "absent.csv"))

    path = tmp_path / "outcomes.txt"
    path.write_text("not a corpus")
    with pytest.raises(InvalidInput) as exc:
        load_corpus_file(str(path))
    assert exc.value.field == "corpusReference"


def test_registry_named_corpus(outcome_corpus):
    registry = CorpusRegistry()
    corpus_id = registry.register("history", outcome_corpus)

    outcomes, resolved_id = registry.resolve("history")

    assert resolved_id == corpus_id == corpus_fingerprint(outcome_corpus)
    assert len(outcomes) == 10
    assert registry.names() == ["history"]


def test_registry_fingerprint_tracks_content(outcome_corpus):
    registry = CorpusRegistry()
    full = registry.register("full", outcome_corpus)
    partial = registry.register("partial", outcome_corpus[:5])
    assert full != partial


def test_registry_resolves_files_relative_to_base(tmp_path):
    (tmp_path / "outcomes.csv").write_text(CSV_CORPUS)
    registry = CorpusRegistry(base_dir=str(tmp_path))

    first, first_id = registry.resolve("outcomes.csv")
    second, second_id = registry.resolve("outcomes.csv")

    assert len(first) == 2
    assert second is first
    assert first_id == second_id


def test_registry_unknown_reference(tmp_path):
    registry = CorpusRegistry(base_dir=str(tmp_path))
    for reference in ("nope", ""):
        with pytest.raises(InvalidInput) as exc:
            registry.resolve(reference)
        assert exc.value.field == "corpusReference"
