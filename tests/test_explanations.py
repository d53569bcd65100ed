import pytest

import llm
from conftest import make_subsidy
from explanations import NO_MATCHES_MESSAGE, make_explanation, make_recommendation, recommend
from models import CompanyProfile

PROFILE = CompanyProfile("technology", "startup", "early", "product development")


def test_template_lists_count_and_each_subsidy(catalog):
    matches = catalog[:2] + [make_subsidy("bare", ["water"])]
    text = make_recommendation(matches)

    assert text.startswith("# Subsidy Recommendations")
    assert "We've found 3 subsidies that match your criteria" in text
    for s in matches:
        assert s.name in text
    assert "**Funding amount:** EUR 1 million" in text
    assert "**Deadline:** Rolling" in text
    # the bare record has no funding, deadline or process text
    assert "**Funding amount:** Not specified" in text
    assert "**Deadline:** Not specified" in text
    assert "Contact the subsidy provider for more details." in text
    assert text.rstrip().endswith("well in advance of deadlines.")


def test_template_numbers_sections_in_order(catalog):
    text = make_recommendation(catalog)
    positions = [text.index(f"## {i}. {s.name}") for i, s in enumerate(catalog, start=1)]
    assert positions == sorted(positions)


def test_relevance_sentence_uses_subsidy_tags():
    s = make_subsidy("x", ["energy", "water"], ["small", "medium"])
    assert make_explanation(s) == "This subsidy is available for small, medium companies in the energy, water industry."


def test_no_matches_skips_generation():
    def generate(company, subsidies):
        raise AssertionError("should not be called")

    assert recommend(PROFILE, [], generate=generate) == NO_MATCHES_MESSAGE
    assert make_recommendation([]) == NO_MATCHES_MESSAGE


def test_generated_text_is_returned_verbatim(catalog):
    seen = {}

    def generate(company, subsidies):
        seen["args"] = (company, list(subsidies))
        return "1. Apply for the tech grant first."

    assert recommend(PROFILE, catalog, generate=generate) == "1. Apply for the tech grant first."
    assert seen["args"] == (PROFILE, catalog)


@pytest.mark.parametrize("error", [llm.LLMError("boom"), llm.LLMNotConfigured("no key"), ValueError("bad json")])
def test_generation_errors_fall_back_to_template(catalog, error):
    def generate(company, subsidies):
        raise error

    assert recommend(PROFILE, catalog, generate=generate) == make_recommendation(catalog)


def test_blank_generation_falls_back_to_template(catalog):
    assert recommend(PROFILE, catalog, generate=lambda c, s: "  ") == make_recommendation(catalog)


def test_missing_credential_uses_template(monkeypatch, catalog):
    monkeypatch.setattr(llm, "OPENAI_API_KEY", None)
    assert recommend(PROFILE, catalog) == make_recommendation(catalog)


def test_configured_llm_is_used_by_default(monkeypatch, catalog):
    monkeypatch.setattr(llm, "OPENAI_API_KEY", "sk-test")
    budgets = []

    def generate(company, subsidies, timeout=None):
        budgets.append(timeout)
        return "from the model"

    monkeypatch.setattr(llm, "generate_recommendation", generate)
    assert recommend(PROFILE, catalog) == "from the model"
    assert recommend(PROFILE, catalog, timeout=12.5) == "from the model"
    assert budgets == [None, 12.5]
