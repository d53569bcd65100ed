import argparse
import json
import logging
import os
from typing import Iterable, List, Optional, Sequence

import requests

import embeddings
from embeddings import SemanticIndex
from models import CompanyProfile, DEFAULT_NEEDS, Subsidy

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "subsidies.json")
GENERIC_SUGGESTION_COUNT = int(os.getenv("GENERIC_SUGGESTION_COUNT", "3"))
SEMANTIC_TOP_K = 5

WILDCARDS = ["all", "any"]
TECH_SYNONYMS = ["technology", "tech", "software", "it", "information technology"]
SMALL_SYNONYMS = ["small", "startup", "small business", "sme"]
EARLY_SYNONYMS = ["early stage", "startup", "beginning", "initial"]


class CatalogError(Exception):
    pass


def load_subsidies(path: str) -> List[Subsidy]:
    # Allow loading from a remote JSON URL or local file.
    try:
        if path.startswith("http://") or path.startswith("https://"):
            resp = requests.get(path, timeout=10)
            if resp.status_code >= 400:
                raise CatalogError(f"Failed to fetch subsidies from URL ({resp.status_code}): {resp.text}")
            raw = resp.json()
        else:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
    except (OSError, ValueError, requests.RequestException) as exc:
        raise CatalogError(f"Could not load subsidies from {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise CatalogError(f"Subsidy source {path} must contain a JSON array.")

    subsidies: List[Subsidy] = []
    seen = set()
    for item in raw:
        try:
            subsidy = Subsidy.from_dict(item)
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"Malformed subsidy record {item!r}: {exc}") from exc
        if subsidy.id in seen:
            raise CatalogError(f"Duplicate subsidy id '{subsidy.id}'")
        seen.add(subsidy.id)
        subsidies.append(subsidy)
    return subsidies


def validate_profile(industry: Optional[str], company_size: Optional[str], stage: Optional[str],
                     needs: Optional[str] = None) -> CompanyProfile:
    missing = [
        name for name, value in (("industry", industry), ("companySize", company_size), ("stage", stage))
        if not value or not str(value).strip()
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    return CompanyProfile(
        industry=industry.strip(),
        company_size=company_size.strip(),
        stage=stage.strip(),
        needs=(needs or "").strip() or DEFAULT_NEEDS,
    )


def build_query(profile: CompanyProfile) -> str:
    return (
        f"Find subsidies for a {profile.company_size} company in the {profile.industry} industry, "
        f"at {profile.stage} stage, with specific needs for {profile.needs}."
    )


# -------- keyword fallback --------

def industry_matchers(industry: str) -> List[str]:
    value = industry.lower().strip()
    matchers = [value] + WILDCARDS
    if "tech" in value:
        matchers += TECH_SYNONYMS
    return matchers


def size_matchers(company_size: str) -> List[str]:
    value = company_size.lower().strip()
    matchers = [value] + WILDCARDS
    if "small" in value or "startup" in value:
        matchers += SMALL_SYNONYMS
    return matchers


def stage_matchers(stage: str) -> List[str]:
    value = stage.lower().strip()
    matchers = [value] + WILDCARDS
    if "start" in value or "early" in value:
        matchers += EARLY_SYNONYMS
    return matchers


def tags_match(tags: Iterable[str], matchers: List[str]) -> bool:
    tags = [t.lower().strip() for t in tags]
    if not tags:
        # untagged classifier = no constraint
        return True
    return any(m in tag for tag in tags for m in matchers)


def keyword_match(profile: CompanyProfile, subsidies: Sequence[Subsidy]) -> List[Subsidy]:
    """
    Deterministic filter: industry is mandatory, then size OR stage.
    Keeps catalog order.
    """
    ind = industry_matchers(profile.industry)
    size = size_matchers(profile.company_size)
    stage = stage_matchers(profile.stage)

    result = [
        s for s in subsidies
        if tags_match(s.industry, ind) and (tags_match(s.company_size, size) or tags_match(s.stage, stage))
    ]
    logger.info("Keyword filter matched %d of %d subsidies", len(result), len(subsidies))
    return result


class SubsidyMatcher:
    """
    Matches a company profile against a fixed catalog.

    Tries the semantic index first and falls back to the keyword filter. When
    the filter finds nothing, the first ``generic_suggestions`` catalog records
    are returned instead (0 turns that off).
    """

    def __init__(
        self,
        subsidies: Sequence[Subsidy],
        index: Optional[SemanticIndex] = None,
        generic_suggestions: int = GENERIC_SUGGESTION_COUNT,
        top_k: int = SEMANTIC_TOP_K,
    ):
        self.subsidies = list(subsidies)
        self.index = index
        self.generic_suggestions = max(generic_suggestions, 0)
        self.top_k = top_k
        self._by_id = {s.id: s for s in self.subsidies}

    @classmethod
    def from_source(cls, path: str, **kwargs) -> "SubsidyMatcher":
        subsidies = load_subsidies(path)
        index = SemanticIndex(subsidies) if embeddings.is_configured() else None
        return cls(subsidies, index=index, **kwargs)

    def semantic_match(self, profile: CompanyProfile) -> List[Subsidy]:
        if self.index is None:
            return []
        ids = self.index.search(build_query(profile), k=self.top_k)
        matched: List[Subsidy] = []
        seen = set()
        for subsidy_id in ids:
            subsidy = self._by_id.get(subsidy_id)
            if subsidy is None or subsidy_id in seen:
                continue
            seen.add(subsidy_id)
            matched.append(subsidy)
        return matched

    def fallback_match(self, profile: CompanyProfile) -> List[Subsidy]:
        result = keyword_match(profile, self.subsidies)
        if not result and self.generic_suggestions:
            logger.info("No keyword matches, returning %d generic suggestions", self.generic_suggestions)
            return self.subsidies[: self.generic_suggestions]
        return result

    def match(self, profile: CompanyProfile) -> List[Subsidy]:
        try:
            matched = self.semantic_match(profile)
        except Exception as exc:
            logger.warning("Semantic search failed, using keyword filter: %s", exc)
            matched = []
        if matched:
            logger.info("Semantic search matched %d subsidies", len(matched))
            return matched
        try:
            return self.fallback_match(profile)
        except Exception:
            logger.exception("Keyword filter failed")
            return []


def main():
    parser = argparse.ArgumentParser(
        description="Find subsidies matching a company profile."
    )
    parser.add_argument("--industry", required=True, help="e.g. technology, manufacturing, healthcare")
    parser.add_argument("--size", required=True, help="startup|small|medium|large")
    parser.add_argument("--stage", required=True, help="early|growth|established")
    parser.add_argument("--needs", default=DEFAULT_NEEDS, help="What the funding is for")
    parser.add_argument(
        "--subsidies",
        default=os.getenv("SUBSIDIES_SOURCE", DEFAULT_SOURCE),
        help="Path or URL of the subsidies JSON",
    )
    parser.add_argument("--recommend", action="store_true", help="Also print a recommendation")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)

    try:
        profile = validate_profile(args.industry, args.size, args.stage, args.needs)
        matcher = SubsidyMatcher.from_source(args.subsidies)
    except (ValueError, CatalogError) as exc:
        raise SystemExit(str(exc))

    matches = matcher.match(profile)

    print(f"{len(matches)} subsidies for a {profile.company_size} {profile.industry} company "
          f"(stage: {profile.stage}):\n")
    for s in matches:
        print(f"{s.name} [{s.id}]")
        print(f"  Funding:  {s.funding_amount or 'Not specified'}")
        print(f"  Deadline: {s.deadline or 'Not specified'}")
        if s.website:
            print(f"  {s.website}")
        print()

    if args.recommend:
        from explanations import recommend
        print(recommend(profile, matches))


if __name__ == "__main__":
    main()
