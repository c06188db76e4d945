"""
Unit Tests — CV scoring
═══════════════════════

The OpenAI client is a MagicMock; no network calls.

Coverage targets:
  ✅ parse_analysis: full answer, missing lines → defaults, percentage clamped
  ✅ build_prompt includes every requirement and the CV text
  ✅ score(): blank CV / incomplete requirements → InvalidInput before any call
  ✅ score(): rate limit retried, then parsed
  ✅ score(): non-retryable API error → ScoringFailure
  ✅ No API key and no client → ScoringFailure
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from cvscreen.core.errors import InvalidInput, ScoringFailure
from cvscreen.core.retry import RetryPolicy
from cvscreen.llm.scoring import CvScorer, build_prompt, parse_analysis
from cvscreen.schemas.analysis import Requirements

FAST_RETRY = RetryPolicy(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=0.0)

MODEL_ANSWER = """Match percentage: 78
Skills found: Python, FastAPI, PostgreSQL
Skills missing: Go, Terraform
Relevant experience: 8 years building backend services
Recommendation: Strong candidate, invite to interview"""


def _requirements() -> Requirements:
    return Requirements(
        title="Senior Backend Engineer",
        skills=["Python", "FastAPI", "Go"],
        experience="5+ years",
        location="Berlin",
        education="BSc Computer Science",
    )


def _completion(content: str):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
    )


def _client(side_effect) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=side_effect)
    return client


def _api_error(cls, status: int):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("upstream error", response=response, body=None)


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestParseAnalysis:

    def test_full_answer(self):
        analysis = parse_analysis(MODEL_ANSWER)

        assert analysis.match_percentage == 78
        assert analysis.skills_found == ["Python", "FastAPI", "PostgreSQL"]
        assert analysis.skills_missing == ["Go", "Terraform"]
        assert analysis.experience_summary == "8 years building backend services"
        assert analysis.recommendation == "Strong candidate, invite to interview"

    def test_missing_lines_use_defaults(self):
        analysis = parse_analysis("I cannot evaluate this CV.")

        assert analysis.match_percentage == 0
        assert analysis.skills_found == []
        assert analysis.skills_missing == []
        assert analysis.experience_summary == "No experience summary provided"
        assert analysis.recommendation == "No recommendation provided"

    def test_percentage_clamped(self):
        assert parse_analysis("Match percentage: 250").match_percentage == 100

    def test_empty_skill_line(self):
        analysis = parse_analysis("Skills found:\nSkills missing: Go")
        assert analysis.skills_found == []
        assert analysis.skills_missing == ["Go"]

    def test_camel_case_serialisation(self):
        body = parse_analysis(MODEL_ANSWER).model_dump(by_alias=True)
        assert body["matchPercentage"] == 78
        assert "skillsFound" in body


@pytest.mark.unit
class TestBuildPrompt:

    def test_prompt_contains_requirements_and_cv(self):
        prompt = build_prompt("Jane Doe, Python developer", _requirements())

        assert "Senior Backend Engineer" in prompt
        assert "Python, FastAPI, Go" in prompt
        assert "Berlin" in prompt
        assert "Jane Doe, Python developer" in prompt
        assert "Match percentage:" in prompt


# ─────────────────────────────────────────────────────────────────────────────
# Scorer
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestCvScorer:

    async def test_score_parses_model_answer(self):
        client = _client([_completion(MODEL_ANSWER)])
        scorer = CvScorer(model="gpt-test", retry_policy=FAST_RETRY, client=client)

        analysis = await scorer.score("Jane Doe CV", _requirements())

        assert analysis.match_percentage == 78
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"][0]["role"] == "system"
        assert "Jane Doe CV" in kwargs["messages"][1]["content"]

    @pytest.mark.parametrize("cv_text", ["", "   \n"])
    async def test_blank_cv_rejected(self, cv_text):
        client = _client([_completion(MODEL_ANSWER)])
        scorer = CvScorer(client=client)

        with pytest.raises(InvalidInput) as exc_info:
            await scorer.score(cv_text, _requirements())

        assert exc_info.value.field == "cvText"
        client.chat.completions.create.assert_not_awaited()

    async def test_incomplete_requirements_rejected(self):
        scorer = CvScorer(client=_client([_completion(MODEL_ANSWER)]))

        with pytest.raises(InvalidInput) as exc_info:
            await scorer.score("Jane Doe CV", Requirements(title="Engineer"))

        assert exc_info.value.field == "requirements"

    async def test_rate_limit_retried(self):
        client = _client([
            _api_error(openai.RateLimitError, 429),
            _completion(MODEL_ANSWER),
        ])
        scorer = CvScorer(retry_policy=FAST_RETRY, client=client)

        analysis = await scorer.score("Jane Doe CV", _requirements())

        assert analysis.match_percentage == 78
        assert client.chat.completions.create.await_count == 2

    async def test_bad_request_not_retried(self):
        client = _client([_api_error(openai.BadRequestError, 400)])
        scorer = CvScorer(retry_policy=FAST_RETRY, client=client)

        with pytest.raises(ScoringFailure):
            await scorer.score("Jane Doe CV", _requirements())

        assert client.chat.completions.create.await_count == 1

    async def test_missing_api_key(self):
        scorer = CvScorer(api_key="")

        with pytest.raises(ScoringFailure, match="not configured"):
            await scorer.score("Jane Doe CV", _requirements())
