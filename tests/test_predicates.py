import pytest

from grant_engine.analysis.predicates import MISSING, evaluate_predicate, measure_values, resolve_path
from grant_engine.core.domain_models import (
    ApplicationContent,
    Budget,
    BudgetLine,
    Measure,
    Predicate,
    PredicateKind,
)
from grant_engine.core.errors import IncompleteRuleSet


def test_resolve_path_maps_over_lists(compliant_application):
    justifications = resolve_path(compliant_application, "budget.categories.justification")
    assert justifications == ["Two project workers for 18 months", "Workshop supplies"]


def test_resolve_path_normalises_names(compliant_application):
    assert resolve_path(compliant_application, "sections.Executive Summary").startswith("summary")
    assert resolve_path(compliant_application, "budget.total") == 120000.0
    assert resolve_path(compliant_application, "sections.appendix") is MISSING
    assert resolve_path(compliant_application, "nothing.here") is MISSING


def test_presence_reports_empty_items():
    content = ApplicationContent(
        application_id="app-2",
        budget=Budget(total=1000.0, categories=(
            BudgetLine(name="Staff", amount=800.0, justification="Coordinator"),
            BudgetLine(name="Travel", amount=200.0),
        )),
    )
    predicate = Predicate(kind=PredicateKind.PRESENCE, path="budget.categories.justification",
                          description="justifications")

    ok, detail = evaluate_predicate(predicate, content)
    assert ok is False
    assert detail == "justifications: 1 of 2 item(s) empty"


def test_absence_with_pattern():
    predicate = Predicate(kind=PredicateKind.ABSENCE, pattern=r"\bTBD\b", description="placeholders")
    draft = ApplicationContent(application_id="a", sections={"impact": "Outcomes are TBD."})
    final = ApplicationContent(application_id="a", sections={"impact": "Outcomes are agreed."})

    assert evaluate_predicate(predicate, draft)[0] is False
    assert evaluate_predicate(predicate, final) == (True, "placeholders: not found")


def test_pattern_on_missing_path_fails():
    predicate = Predicate(kind=PredicateKind.PATTERN, path="sections.ethics", pattern="approval")
    ok, detail = evaluate_predicate(predicate, ApplicationContent(application_id="a"))
    assert ok is False
    assert detail.endswith("missing")


def test_numeric_bound_word_count(compliant_application):
    short = Predicate(kind=PredicateKind.NUMERIC_BOUND, path="sections.executive_summary",
                      measure=Measure.WORD_COUNT, maximum=250, description="summary")
    ok, detail = evaluate_predicate(short, compliant_application)
    assert ok is False
    assert detail == "summary: 300 word count above maximum 250"


def test_numeric_bound_checks_every_list_item(compliant_application):
    per_line = Predicate(kind=PredicateKind.NUMERIC_BOUND, path="budget.categories.amount", maximum=50000)
    assert evaluate_predicate(per_line, compliant_application)[0] is False


def test_numeric_bound_parses_money_strings():
    content = ApplicationContent(application_id="a", fields={"requested": "£1,200"})
    predicate = Predicate(kind=PredicateKind.NUMERIC_BOUND, path="fields.requested", minimum=1000)
    assert evaluate_predicate(predicate, content)[0] is True


def test_measure_values():
    assert measure_values("one two three", Measure.WORD_COUNT) == [3.0]
    assert measure_values(["a", "b"], Measure.ITEM_COUNT) == [2.0]
    assert measure_values(MISSING, Measure.ITEM_COUNT) == [0.0]
    with pytest.raises(ValueError):
        measure_values("not a number", Measure.VALUE)


@pytest.mark.parametrize("kwargs", [
    {"kind": PredicateKind.PATTERN},
    {"kind": PredicateKind.PATTERN, "pattern": "(unclosed"},
    {"kind": PredicateKind.NUMERIC_BOUND, "path": "budget.total"},
])
def test_malformed_predicates_rejected(kwargs):
    with pytest.raises(IncompleteRuleSet):
        Predicate(**kwargs)


def test_items_lacking_the_key_count_as_empty():
    content = ApplicationContent(
        application_id="a",
        fields={"contacts": [{"email": "x@y"}, {"name": "no email"}]},
    )
    predicate = Predicate(kind=PredicateKind.PRESENCE, path="fields.contacts.email")

    assert resolve_path(content, "fields.contacts.email") == ["x@y", MISSING]
    assert evaluate_predicate(predicate, content) == (False, "fields.contacts.email: 1 of 2 item(s) empty")


def test_numeric_bound_reports_items_lacking_the_key():
    content = ApplicationContent(
        application_id="a",
        fields={"partners": [{"contribution": 5000}, {"name": "Council"}]},
    )
    bound = Predicate(kind=PredicateKind.NUMERIC_BOUND, path="fields.partners.contribution",
                      minimum=1000, description="contributions")
    count = Predicate(kind=PredicateKind.NUMERIC_BOUND, path="fields.partners.contribution",
                      measure=Measure.ITEM_COUNT, minimum=2, description="contributions")

    assert evaluate_predicate(bound, content) == (False, "contributions: 1 of 2 item(s) missing")
    assert evaluate_predicate(count, content)[0] is False
