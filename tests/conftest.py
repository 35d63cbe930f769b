"""
Shared fixtures: sample announcements, profiles, applications and corpora.
"""

from datetime import datetime, timedelta, timezone

import pytest

from grant_engine.core.domain_models import (
    ApplicationContent,
    ApplicationOutcome,
    Budget,
    BudgetLine,
    OrganizationProfile,
    Outcome,
)
from grant_engine.storage.db import Database


NONPROFIT_ANNOUNCEMENT = (
    "Applicants must be registered nonprofits with 2+ years operating history "
    "and submit audited financial statements."
)

COMMUNITY_ANNOUNCEMENT = """
Community Resilience Fund 2025

The fund supports community development projects across the UK. Grants of up to £50,000 are available.
Applicants must be registered charities based in England or Wales.
Organisations must have an annual income below £1 million.
Projects should involve partnership with local schools or health services.
Applicants may include letters of support from beneficiaries.
The closing date is 15 March 2025.
"""


@pytest.fixture
def nonprofit_announcement():
    return NONPROFIT_ANNOUNCEMENT


@pytest.fixture
def community_announcement():
    return COMMUNITY_ANNOUNCEMENT


@pytest.fixture
def nonprofit_profile():
    return OrganizationProfile.from_dict({
        "id": "org-1",
        "name": "Riverside Community Trust",
        "orgType": "nonprofit",
        "size": "small",
        "location": {"country": "UK", "region": "England", "city": "Leeds"},
        "sectors": ["community development", "education"],
        "experience": {"yearsActive": 6, "previousGrants": 4, "totalFundingReceived": 250000},
        "financial": {"annualRevenue": 400000, "employees": 18, "legalForm": "charitable incorporated organisation"},
        "capabilities": ["youth work", "volunteer management"],
        "certifications": [],
        "partnerships": ["Leeds City Council"],
    })


@pytest.fixture
def profile_without_revenue():
    return OrganizationProfile.from_dict({
        "id": "org-2",
        "name": "Harbour Makers",
        "orgType": "sme",
        "location": {"country": "UK"},
        "experience": {"yearsActive": 3},
        "financial": {"employees": 12},
    })


def _words(n: int, word: str = "delivery") -> str:
    return " ".join([word] * n)


@pytest.fixture
def compliant_application():
    """Passes every rule in the packaged default rule set."""
    return ApplicationContent(
        application_id="app-1",
        sections={
            "executive_summary": _words(300, "summary"),
            "methodology": _words(800, "method"),
            "budget_justification": _words(150, "costs"),
            "impact": _words(500, "impact"),
        },
        budget=Budget(
            total=120000.0,
            categories=(
                BudgetLine(name="Staff", amount=90000.0, justification="Two project workers for 18 months"),
                BudgetLine(name="Materials", amount=30000.0, justification="Workshop supplies"),
            ),
        ),
        attachments=("budget.xlsx",),
    )


@pytest.fixture
def database(tmp_path):
    return Database(str(tmp_path / "engine.db"))


def make_outcome(app_id, outcome, text, grant_type="community", org_type="nonprofit", score=None,
                 days_early=None, budget_total=None, sections=None):
    deadline = datetime(2024, 6, 30, 17, 0, tzinfo=timezone.utc)
    submitted = deadline - timedelta(days=days_early) if days_early is not None else None
    return ApplicationOutcome(
        application_id=app_id,
        grant_type=grant_type,
        organization_type=org_type,
        outcome=outcome,
        sections=sections if sections is not None else {"body": text},
        score=score,
        submitted_at=submitted,
        deadline=deadline if submitted else None,
        budget_total=budget_total,
    )


@pytest.fixture
def outcome_factory():
    return make_outcome


@pytest.fixture
def outcome_corpus():
    """Ten community/nonprofit outcomes: funded ones name partners and targets."""
    corpus = []
    for i in range(6):
        corpus.append(make_outcome(
            f"funded-{i}", Outcome.FUNDED,
            "We will work in partnership with three local schools. "
            "Our target is to reach 200 families, a 40% increase on the baseline.",
            score=80 + i, days_early=10,
        ))
    for i in range(4):
        corpus.append(make_outcome(
            f"rejected-{i}", Outcome.REJECTED,
            "We will run weekly sessions for families in the area.",
            score=50 + i, days_early=1,
        ))
    return corpus
