import dataclasses

import pytest

from conftest import profile_from_rendering
from models import CompanyProfile, DEFAULT_NEEDS, Subsidy, normalize_tags


def test_normalize_tags_accepts_string_list_and_none():
    assert normalize_tags("technology") == ("technology",)
    assert normalize_tags(["a", " b ", "", None]) == ("a", "b")
    assert normalize_tags(None) == ()
    assert normalize_tags("  ") == ()


def test_subsidy_from_dict_uses_wire_names():
    s = Subsidy.from_dict({
        "id": 7,
        "name": "Grant",
        "fundingAmount": "EUR 10,000",
        "applicationProcess": "Apply online",
        "industry": "technology",
        "companySize": ["startup", "small"],
    })
    assert s.id == "7"
    assert s.funding_amount == "EUR 10,000"
    assert s.application_process == "Apply online"
    assert s.industry == ("technology",)
    assert s.company_size == ("startup", "small")
    assert s.stage == ()
    assert s.deadline == ""


def test_subsidy_records_are_immutable_and_hashable():
    s = Subsidy.from_dict({"id": "x", "name": "X", "industry": ["energy"]})
    with pytest.raises(dataclasses.FrozenInstanceError):
        s.name = "Y"
    with pytest.raises(AttributeError):
        s.industry.append("water")
    assert {s, Subsidy.from_dict({"id": "x", "name": "X", "industry": "energy"})} == {s}


def test_to_dict_is_the_inverse_of_from_dict():
    raw = {
        "id": "x",
        "name": "X",
        "description": "d",
        "eligibility": "e",
        "fundingAmount": "f",
        "deadline": "dl",
        "applicationProcess": "ap",
        "website": "https://example.org",
        "industry": ["energy"],
        "companySize": ["medium"],
        "stage": ["growth"],
    }
    assert Subsidy.from_dict(raw).to_dict() == raw


def test_to_text_contains_all_fields():
    s = Subsidy(id="x", name="Grant X", description="desc", eligibility="elig",
                funding_amount="EUR 5", deadline="soon", application_process="mail us",
                industry=("energy", "water"), company_size=("small",), stage=("early",))
    text = s.to_text()
    for fragment in ["Grant X", "desc", "elig", "energy, water", "small", "early", "soon", "mail us", "EUR 5"]:
        assert fragment in text


def test_rendering_parses_back_to_first_tags():
    s = Subsidy(id="x", name="n", industry=("energy", "water"), company_size=("small",))
    profile = profile_from_rendering(s.to_text())
    assert profile == CompanyProfile(industry="energy", company_size="small", stage="any")
    assert profile.needs == DEFAULT_NEEDS


def test_rendering_ignores_classifier_lookalikes_in_free_text():
    s = Subsidy(id="x", name="n", description="Industry: retail",
                application_process="Industry: mining\nCompany Size: huge",
                industry=("energy",), company_size=("medium",), stage=("growth",))
    assert profile_from_rendering(s.to_text()) == CompanyProfile("energy", "medium", "growth")


def test_rendering_without_classifier_block():
    assert profile_from_rendering("Subsidy Name: nothing else") is None
