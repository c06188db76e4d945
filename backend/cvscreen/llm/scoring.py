"""
CV Scoring — compare extracted CV text against job requirements
═══════════════════════════════════════════════════════════════

One chat completion per CV. The model is asked for a fixed line-oriented
answer, which parse_analysis() turns into a MatchAnalysis:

  Match percentage: <0-100>
  Skills found: <comma-separated>
  Skills missing: <comma-separated>
  Relevant experience: <summary>
  Recommendation: <final recommendation>

Missing lines fall back to defaults instead of failing the request.

Retry policy (via core.retry):
  Retryable:     RateLimitError, APIConnectionError (incl. timeouts),
                 InternalServerError
  Non-retryable: other APIStatusError (bad request, auth failure)
"""

from __future__ import annotations

import logging
import re
import time

import openai
from openai import AsyncOpenAI

from cvscreen.core.errors import InvalidInput, ScoringFailure
from cvscreen.core.retry import RetryPolicy, retry_with_policy
from cvscreen.schemas.analysis import MatchAnalysis, Requirements

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

SYSTEM_PROMPT = (
    "You are an expert CV analyst and recruiter. "
    "Answer EXACTLY in the requested format."
)

_PROMPT_TEMPLATE = """Analyse the following CV and compare it with the job requirements.
Requirements:
- Job title: {title}
- Required skills: {skills}
- Required experience: {experience}
- Location: {location}
- Required education: {education}

CV:
{cv_text}

Answer EXACTLY in this format:

Match percentage: [number from 0 to 100]
Skills found: [comma-separated list of skills]
Skills missing: [comma-separated list of skills]
Relevant experience: [detailed summary]
Recommendation: [final recommendation]"""

_RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

_PERCENT_RE     = re.compile(r"Match percentage:\s*(\d+)", re.IGNORECASE)
_FOUND_RE       = re.compile(r"Skills found:[ \t]*(.*)", re.IGNORECASE)
_MISSING_RE     = re.compile(r"Skills missing:[ \t]*(.*)", re.IGNORECASE)
_EXPERIENCE_RE  = re.compile(r"Relevant experience:[ \t]*(.*)", re.IGNORECASE)
_RECOMMEND_RE   = re.compile(r"Recommendation:[ \t]*(.*)", re.IGNORECASE)


def build_prompt(cv_text: str, requirements: Requirements) -> str:
    return _PROMPT_TEMPLATE.format(
        title=requirements.title,
        skills=", ".join(requirements.skills),
        experience=requirements.experience,
        location=requirements.location,
        education=requirements.education,
        cv_text=cv_text,
    )


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_analysis(content: str) -> MatchAnalysis:
    """Parse the line-oriented model answer; absent lines keep their defaults."""
    content = content or ""
    analysis = MatchAnalysis()

    def _line(pattern: re.Pattern) -> str | None:
        match = pattern.search(content)
        return match.group(1).strip() if match else None

    percent = _line(_PERCENT_RE)
    if percent:
        analysis.match_percentage = max(0, min(100, int(percent)))

    found = _line(_FOUND_RE)
    if found is not None:
        analysis.skills_found = _split_list(found)

    missing = _line(_MISSING_RE)
    if missing is not None:
        analysis.skills_missing = _split_list(missing)

    analysis.experience_summary = _line(_EXPERIENCE_RE) or analysis.experience_summary
    analysis.recommendation     = _line(_RECOMMEND_RE) or analysis.recommendation
    return analysis


class CvScorer:
    """
    Constructor args:
        api_key      : OpenAI key (ignored when ``client`` is injected)
        model        : chat model id
        retry_policy : applied to the completion call
        client       : optional AsyncOpenAI (tests inject a mock)
    """

    def __init__(
        self,
        api_key:      str = "",
        model:        str = DEFAULT_MODEL,
        temperature:  float = 0.0,
        retry_policy: RetryPolicy | None = None,
        client:       AsyncOpenAI | None = None,
    ) -> None:
        self._api_key     = api_key
        self._model       = model
        self._temperature = temperature
        self._policy      = retry_policy or RetryPolicy()
        self._client      = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ScoringFailure("CV scoring is not configured (missing OpenAI API key)")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def score(self, cv_text: str, requirements: Requirements) -> MatchAnalysis:
        if not cv_text or not cv_text.strip():
            raise InvalidInput("No CV text was provided", field="cvText")
        if not requirements.title.strip() or not requirements.skills:
            raise InvalidInput("Requirements are incomplete (title and skills are required)", field="requirements")

        client = self._get_client()
        prompt = build_prompt(cv_text, requirements)

        async def _complete():
            return await client.chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user",   "content": prompt},
                ],
            )

        t0 = time.monotonic()
        try:
            response = await retry_with_policy(
                _complete,
                self._policy,
                retry_if=lambda exc: isinstance(exc, _RETRYABLE_ERRORS),
                label="cv_scoring",
            )
        except openai.OpenAIError as exc:
            logger.error("CV scoring failed | model=%s error=%s", self._model, exc)
            raise ScoringFailure(f"CV scoring failed: {exc}") from exc

        content = response.choices[0].message.content or ""
        analysis = parse_analysis(content)

        logger.info(
            "CV scored | model=%s match=%d found=%d missing=%d elapsed_ms=%.0f",
            self._model, analysis.match_percentage, len(analysis.skills_found),
            len(analysis.skills_missing), (time.monotonic() - t0) * 1000,
        )
        return analysis
