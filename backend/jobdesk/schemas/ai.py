import hashlib
import json
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Opportunity(BaseModel):
    id: str | None = None
    company: str | None = None
    title: str | None = None
    location: str | None = None
    salary_range: str | None = None
    experience_required: str | None = None
    education_required: str | None = None
    industry: str | None = None
    company_size: str | None = None
    tags: list[str] = Field(default_factory=list)
    description: str | None = None
    benefits: str | None = None
    reason: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    def identity(self) -> str:
        """
        Stable identity for cache keys: the id, else a digest of every other field.
        Postings that differ in any field (company, description, tags...) get different identities.
        """
        if self.id:
            return self.id
        fields = {
            k: v.strip() if isinstance(v, str) else v
            for k, v in self.model_dump(exclude={"id"}).items()
        }
        blob = json.dumps(fields, sort_keys=True, ensure_ascii=False)
        return "anon-" + hashlib.md5(blob.encode("utf-8")).hexdigest()


class ScoreItem(BaseModel):
    score: int = 0
    reason: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> int:
        try:
            v2 = int(round(float(v)))
        except Exception:
            return 0
        if v2 < 0:
            return 0
        if v2 > 5:
            return 5
        return v2


class ResumeScore(BaseModel):
    scores: dict[str, ScoreItem] = Field(default_factory=dict)
    total_score: float = 0.0
    recommendation_level: str = ""
    overall_comment: str = ""
    breakdown: list[dict[str, Any]] = Field(default_factory=list)


class ScoreRequest(BaseModel):
    resume_text: str = Field(..., min_length=1, description="Plain résumé text")
    opportunity: Opportunity = Field(default_factory=Opportunity)


class GapAnalysisRequest(BaseModel):
    resume_text: str = Field(..., min_length=1)
    opportunity: Opportunity


class EmailRequest(BaseModel):
    user_name: str = Field(..., min_length=1)
    resume_text: str | None = None
    opportunity: Opportunity


class AddKeyRequest(BaseModel):
    key: str = Field(..., min_length=1)
    name: str = ""
    priority: int = 999
    max_errors: int | None = Field(default=None, ge=1)


class ResumeOptimizationRequest(BaseModel):
    resume_text: str | None = None
    opportunity: Opportunity
