# explanations.py
import logging
from functools import partial
from typing import Callable, Optional, Sequence

import llm
from models import CompanyProfile, Subsidy

logger = logging.getLogger(__name__)

NO_MATCHES_MESSAGE = "No matching subsidies were found for your criteria. Try adjusting your search parameters."
NOT_SPECIFIED = "Not specified"
DEFAULT_NEXT_STEPS = "Contact the subsidy provider for more details."

Generator = Callable[[CompanyProfile, Sequence[Subsidy]], str]


def make_explanation(subsidy: Subsidy) -> str:
    sizes = ", ".join(subsidy.company_size) or "all"
    industries = ", ".join(subsidy.industry) or "all"
    return f"This subsidy is available for {sizes} companies in the {industries} industry."


def make_recommendation(subsidies: Sequence[Subsidy]) -> str:
    if not subsidies:
        return NO_MATCHES_MESSAGE

    sections = []
    for idx, s in enumerate(subsidies, start=1):
        sections.append(
            f"## {idx}. {s.name}\n\n"
            f"**Description:** {s.description}\n\n"
            f"**Why it's relevant:** {make_explanation(s)}\n\n"
            f"**Eligibility:** {s.eligibility}\n\n"
            f"**Funding amount:** {s.funding_amount or NOT_SPECIFIED}\n\n"
            f"**Deadline:** {s.deadline or NOT_SPECIFIED}\n\n"
            f"**Next steps:** {s.application_process or DEFAULT_NEXT_STEPS}\n"
        )

    return (
        "# Subsidy Recommendations\n\n"
        f"We've found {len(subsidies)} subsidies that match your criteria:\n\n"
        + "\n".join(sections)
        + "\nWe recommend reviewing each subsidy's details carefully and preparing your "
        "application materials well in advance of deadlines.\n"
    )


def recommend(company: CompanyProfile, subsidies: Sequence[Subsidy],
              generate: Optional[Generator] = None, timeout: Optional[float] = None) -> str:
    """
    LLM recommendation when available, templated text otherwise. Never raises.
    ``timeout`` caps the default LLM call, retries included.
    """
    if not subsidies:
        return NO_MATCHES_MESSAGE

    if generate is None:
        if not llm.is_configured():
            logger.info("LLM not configured, using template recommendation")
            return make_recommendation(subsidies)
        generate = partial(llm.generate_recommendation, timeout=timeout)

    try:
        text = generate(company, subsidies)
    except Exception as exc:
        logger.warning("Recommendation generation failed, using template: %s", exc)
        return make_recommendation(subsidies)
    if not text or not text.strip():
        return make_recommendation(subsidies)
    return text
