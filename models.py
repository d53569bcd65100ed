from dataclasses import dataclass
from typing import List, Tuple, Union

DEFAULT_NEEDS = "funding and growth"

Tags = Union[str, List[str], Tuple[str, ...], None]


def normalize_tags(value: Tags) -> Tuple[str, ...]:
    """Classifier tags may be a single string or a list; always hand back a tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(v).strip() for v in value if v is not None and str(v).strip())


@dataclass(frozen=True)
class CompanyProfile:
    industry: str
    company_size: str
    stage: str
    needs: str = DEFAULT_NEEDS


@dataclass(frozen=True)
class Subsidy:
    id: str                     # unique across the catalog
    name: str
    description: str = ""
    eligibility: str = ""
    funding_amount: str = ""    # free text, e.g. "Up to EUR 350,000"
    deadline: str = ""
    application_process: str = ""
    website: str = ""

    # empty = no constraint
    industry: Tuple[str, ...] = ()
    company_size: Tuple[str, ...] = ()
    stage: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict) -> "Subsidy":
        return cls(
            id=str(raw["id"]),
            name=raw.get("name", ""),
            description=raw.get("description", ""),
            eligibility=raw.get("eligibility", ""),
            funding_amount=raw.get("fundingAmount", "") or "",
            deadline=raw.get("deadline", "") or "",
            application_process=raw.get("applicationProcess", "") or "",
            website=raw.get("website", "") or "",
            industry=normalize_tags(raw.get("industry")),
            company_size=normalize_tags(raw.get("companySize")),
            stage=normalize_tags(raw.get("stage")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "eligibility": self.eligibility,
            "fundingAmount": self.funding_amount,
            "deadline": self.deadline,
            "applicationProcess": self.application_process,
            "website": self.website,
            "industry": list(self.industry),
            "companySize": list(self.company_size),
            "stage": list(self.stage),
        }

    def to_text(self) -> str:
        """Text rendering used for embeddings."""
        return "\n".join([
            f"Subsidy Name: {self.name}",
            f"Description: {self.description}",
            f"Eligibility: {self.eligibility}",
            f"Industry: {', '.join(self.industry)}",
            f"Company Size: {', '.join(self.company_size)}",
            f"Company Stage: {', '.join(self.stage)}",
            f"Deadline: {self.deadline}",
            f"Application Process: {self.application_process}",
            f"Funding Amount: {self.funding_amount}",
        ])
