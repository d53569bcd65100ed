import logging
import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from functools import partial
from typing import Callable, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import llm
from explanations import Generator, NO_MATCHES_MESSAGE, recommend
from matcher import DEFAULT_SOURCE, SubsidyMatcher, validate_profile
from models import CompanyProfile, Subsidy


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Subsidy Matcher API")

# ---------- CORS ----------
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# registered after CORSMiddleware so it runs first: browser preflights for the
# matching endpoint get the 204 below, not the middleware's 200
@app.middleware("http")
async def match_subsidy_preflight(request: Request, call_next):
    if request.method == "OPTIONS" and request.url.path == "/match-subsidy":
        return Response(status_code=204, headers=PREFLIGHT_HEADERS)
    return await call_next(request)


# ---------- Load subsidies once at startup ----------

SUBSIDY_SOURCE = os.getenv("SUBSIDIES_SOURCE", DEFAULT_SOURCE)
MATCHER = SubsidyMatcher.from_source(SUBSIDY_SOURCE)

MATCH_TIMEOUT = float(os.getenv("MATCH_TIMEOUT_SECONDS", "20"))
RECOMMENDATION_TIMEOUT = float(os.getenv("RECOMMENDATION_TIMEOUT_SECONDS", "15"))

# matching and recommendation run in separate pools so the handler can stop
# waiting on them, and abandoned recommendations cannot hold up matching
MATCH_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="subsidy-match")
RECOMMENDATION_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="subsidy-recommend")

SERVER_ERROR_BODY = {
    "error": "Failed to match subsidies. Please try again.",
    "matches": [],
    "matchCount": 0,
    "recommendation": "We encountered an error while processing your request. Please try again.",
}


# ---------- Pydantic models for API ----------

class SubsidyRequest(BaseModel):
    # required fields are checked by validate_profile so a missing one is a 400, not a 422
    industry: Optional[str] = None
    companySize: Optional[str] = None
    stage: Optional[str] = None
    needs: Optional[str] = None


class MatchResponse(BaseModel):
    matches: List[dict]
    matchCount: int
    recommendation: str


class ErrorResponse(BaseModel):
    error: str


# ---------- Dependencies (overridden in tests) ----------

def get_matcher() -> SubsidyMatcher:
    return MATCHER


def get_recommender() -> Generator:
    return partial(recommend, timeout=RECOMMENDATION_TIMEOUT)


# ---------- Orchestration ----------

def _run_with_timeout(executor: ThreadPoolExecutor, fn: Callable, timeout: float, *args):
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout:
        # best effort: a running call cannot be interrupted, its result is dropped
        future.cancel()
        raise


def default_recommendation(profile: CompanyProfile, matches: List[Subsidy]) -> str:
    return (
        f"We found {len(matches)} subsidies matching your criteria. "
        f"These options are worth exploring for your {profile.industry} business."
    )


def find_matches(matcher: SubsidyMatcher, profile: CompanyProfile) -> List[Subsidy]:
    try:
        return _run_with_timeout(MATCH_EXECUTOR, matcher.match, MATCH_TIMEOUT, profile)
    except FuturesTimeout:
        logger.warning("Matching timed out after %.1fs, using keyword filter", MATCH_TIMEOUT)
        return matcher.fallback_match(profile)


def build_recommendation(recommender: Generator, profile: CompanyProfile, matches: List[Subsidy]) -> str:
    try:
        return _run_with_timeout(RECOMMENDATION_EXECUTOR, recommender, RECOMMENDATION_TIMEOUT, profile, matches)
    except FuturesTimeout:
        logger.warning("Recommendation timed out after %.1fs", RECOMMENDATION_TIMEOUT)
    except Exception as exc:
        logger.warning("Recommendation failed: %s", exc)
    return default_recommendation(profile, matches)


def handle_match(profile: CompanyProfile, matcher: SubsidyMatcher, recommender: Generator) -> dict:
    logger.info("Matching subsidies for %s", profile)
    matches = find_matches(matcher, profile)

    if not matches:
        return {"matches": [], "matchCount": 0, "recommendation": NO_MATCHES_MESSAGE}

    recommendation = build_recommendation(recommender, profile, matches)
    return {
        "matches": [s.to_dict() for s in matches],
        "matchCount": len(matches),
        "recommendation": recommendation,
    }


# ---------- Error handlers ----------

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


# ---------- Simple root endpoints ----------

@app.get("/")
def root():
    return {"message": "Subsidy Matcher API. POST a company profile to /match-subsidy."}


@app.get("/health")
def health(matcher: SubsidyMatcher = Depends(get_matcher)):
    return {
        "status": "ok",
        "subsidy_source": SUBSIDY_SOURCE,
        "subsidy_count": len(matcher.subsidies),
        "semantic_search": matcher.index is not None,
        "llm_configured": llm.is_configured(),
    }


@app.get("/subsidies", response_model=List[dict])
def list_subsidies(matcher: SubsidyMatcher = Depends(get_matcher)):
    return [s.to_dict() for s in matcher.subsidies]


# ---------- Main matching endpoint ----------

@app.post(
    "/match-subsidy",
    response_model=MatchResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def match_subsidy(
    payload: SubsidyRequest,
    matcher: SubsidyMatcher = Depends(get_matcher),
    recommender: Generator = Depends(get_recommender),
):
    """
    Take a company profile as JSON, return matching subsidies + a recommendation.
    """
    try:
        profile = validate_profile(payload.industry, payload.companySize, payload.stage, payload.needs)
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    try:
        return handle_match(profile, matcher, recommender)
    except Exception:
        logger.exception("Error in subsidy matching")
        return JSONResponse(status_code=500, content=SERVER_ERROR_BODY)


def run():
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
