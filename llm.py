import logging
import os
import time
from typing import List, Optional, Sequence

import requests

from models import CompanyProfile, Subsidy

logger = logging.getLogger(__name__)


class LLMNotConfigured(Exception):
    pass


class LLMError(Exception):
    pass


OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
RETRY_BACKOFF = 1.0


def is_configured() -> bool:
    return bool(OPENAI_API_KEY)


def _call_llm(messages: List[dict], max_tokens: int = 1200, temperature: float = 0.2,
              deadline: Optional[float] = None) -> str:
    """
    POST a chat completion, retrying transport errors, 429 and 5xx.

    ``deadline`` is a time.monotonic() value; each attempt's timeout is capped
    by the time left and no attempt starts once it has passed.
    """
    if not OPENAI_API_KEY:
        raise LLMNotConfigured("OPENAI_API_KEY not set; cannot call LLM.")

    url = f"{OPENAI_BASE.rstrip('/')}/chat/completions"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {OPENAI_API_KEY}",
    }
    payload = {
        "model": LLM_MODEL,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    last_error = None
    for attempt in range(max(LLM_MAX_RETRIES, 0) + 1):
        if attempt:
            backoff = RETRY_BACKOFF * attempt
            if deadline is not None and time.monotonic() + backoff >= deadline:
                break
            time.sleep(backoff)

        timeout = LLM_TIMEOUT
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            timeout = min(LLM_TIMEOUT, remaining)

        try:
            resp = requests.post(url, headers=headers, json=payload, timeout=timeout)
        except requests.RequestException as exc:
            last_error = LLMError(f"LLM request failed: {exc}")
            logger.warning("LLM attempt %d failed: %s", attempt + 1, exc)
            continue

        if resp.status_code == 429 or resp.status_code >= 500:
            last_error = LLMError(f"LLM API error {resp.status_code}: {resp.text}")
            logger.warning("LLM attempt %d got HTTP %d", attempt + 1, resp.status_code)
            continue
        if resp.status_code >= 400:
            raise LLMError(f"LLM API error {resp.status_code}: {resp.text}")

        data = resp.json()
        choice = (data.get("choices") or [{}])[0].get("message", {}).get("content")
        if not choice:
            raise LLMError("LLM returned no content.")
        return choice.strip()

    raise last_error or LLMError("LLM deadline passed before a request could be made.")


def build_prompt(company: CompanyProfile, subsidies: Sequence[Subsidy]) -> str:
    listing = "\n".join(
        f"- {s.name}: {s.description}\n"
        f"  Eligibility: {s.eligibility}\n"
        f"  Funding: {s.funding_amount}\n"
        f"  Deadline: {s.deadline}"
        for s in subsidies
    )
    return (
        f"I'm helping a {company.company_size} company in the {company.industry} industry, "
        f"currently at {company.stage} stage of development. They need assistance with {company.needs}.\n\n"
        f"Based on their profile, I found these potential subsidies:\n{listing}\n\n"
        "Please provide a concise but comprehensive recommendation for this company. For each subsidy:\n"
        "1. Explain why it's relevant to their specific situation\n"
        "2. Highlight key eligibility factors they should be aware of\n"
        "3. Provide a priority order (most promising first)\n"
        "4. Add brief next steps they should take to apply\n\n"
        "Keep the tone professional and practical, focusing on actionable information."
    )


def generate_recommendation(company: CompanyProfile, subsidies: Sequence[Subsidy],
                            timeout: Optional[float] = None) -> str:
    """
    Ask the LLM for a prioritised recommendation covering all matched subsidies.
    ``timeout`` bounds the whole call, retries included.
    Raises LLMNotConfigured or LLMError; callers decide on a fallback.
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    return _call_llm(
        [
            {"role": "system", "content": "You are a government subsidy advisor. Be precise, practical and factual."},
            {"role": "user", "content": build_prompt(company, subsidies)},
        ],
        deadline=deadline,
    )
