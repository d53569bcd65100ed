import re
from typing import List, Optional

import pytest

from models import CompanyProfile, Subsidy

VOCAB = ["technology", "software", "startup", "early", "energy", "manufacturing",
         "agri-food", "growth", "medium", "large", "established", "research"]

CLASSIFIER_KEYS = ("Industry", "Company Size", "Company Stage")


def fake_embed(texts: List[str]) -> List[List[float]]:
    """Bag-of-words over a tiny vocabulary; deterministic and offline."""
    vectors = []
    for text in texts:
        words = re.findall(r"[a-z\-]+", text.lower())
        vectors.append([float(words.count(term)) + 0.01 for term in VOCAB])
    return vectors


def make_subsidy(subsidy_id, industry=None, company_size=None, stage=None, **kwargs) -> Subsidy:
    return Subsidy(
        id=subsidy_id,
        name=kwargs.pop("name", f"Subsidy {subsidy_id}"),
        description=kwargs.pop("description", f"Description of {subsidy_id}"),
        eligibility=kwargs.pop("eligibility", f"Eligibility for {subsidy_id}"),
        industry=tuple(industry or ()),
        company_size=tuple(company_size or ()),
        stage=tuple(stage or ()),
        **kwargs,
    )


def profile_from_rendering(text: str) -> Optional[CompanyProfile]:
    """Rebuild a profile from the first tag of each classifier in Subsidy.to_text().

    Only the consecutive Industry / Company Size / Company Stage block counts,
    so free text that happens to contain "Industry:" is ignored.
    """
    lines = text.splitlines()
    for i in range(len(lines) - len(CLASSIFIER_KEYS) + 1):
        block = lines[i:i + len(CLASSIFIER_KEYS)]
        if all(line.startswith(f"{key}: ") or line == f"{key}:" for key, line in zip(CLASSIFIER_KEYS, block)):
            break
    else:
        return None

    def first(line: str) -> str:
        tags = [t.strip() for t in line.partition(":")[2].split(",") if t.strip()]
        return tags[0] if tags else "any"

    industry, size, stage = (first(line) for line in block)
    return CompanyProfile(industry=industry, company_size=size, stage=stage)


@pytest.fixture
def catalog() -> List[Subsidy]:
    return [
        make_subsidy("energy-grant", ["energy"], ["medium", "large"], ["established"],
                     funding_amount="EUR 1 million", deadline="1 March"),
        make_subsidy("agri-fund", ["agri-food"], ["medium"], ["growth"],
                     funding_amount="EUR 50,000", deadline="Rolling"),
        make_subsidy("factory-loan", ["manufacturing"], ["large"], ["established"]),
        make_subsidy("tech-startup", ["technology"], ["startup"], ["early"],
                     funding_amount="EUR 20,000", deadline="30 June",
                     application_process="Apply online."),
        make_subsidy("tech-scaleup", ["technology"], ["large"], ["established"]),
    ]
