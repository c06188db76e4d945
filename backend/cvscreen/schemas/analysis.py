"""
CV Analysis — Pydantic Request/Response Schemas

POST /api/v1/analysis
  request  : {"cvText": "...", "requirements": {"title", "skills", ...}}
  response : MatchAnalysis (camelCase)
"""

from __future__ import annotations

from pydantic import Field

from cvscreen.schemas.documents import CamelModel


class Requirements(CamelModel):
    """Job requirements a CV is scored against."""
    title:      str       = ""
    skills:     list[str] = Field(default_factory=list)
    experience: str       = ""
    location:   str       = ""
    education:  str       = ""


class AnalysisRequest(CamelModel):
    cv_text:      str          = ""
    requirements: Requirements = Field(default_factory=Requirements)


class MatchAnalysis(CamelModel):
    match_percentage:   int       = Field(0, ge=0, le=100)
    skills_found:       list[str] = Field(default_factory=list)
    skills_missing:     list[str] = Field(default_factory=list)
    experience_summary: str       = "No experience summary provided"
    recommendation:     str       = "No recommendation provided"
