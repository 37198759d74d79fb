"""
Resume Optimization Report

Heuristic highlight extraction (skills, experience sentences, education) feeds a
model prompt that returns a structured optimization report. When the provider is
down the caller still gets a template report built from the highlights.
"""

import json
import logging
import re
from typing import Any, Iterable

from ..schemas.ai import Opportunity
from ..utils.error_handlers import handle_ai_service_error
from .ai_client import AIClientError, RetryingCompletionClient
from .ai_common import extract_first_json_object
from .ai_prompts import resume_optimization_prompt


logger = logging.getLogger(__name__)

OPTIMIZATION_MAX_TOKENS = 8000
OPTIMIZATION_TEMPERATURE = 0.7

SKILL_KEYWORDS = (
    "javascript", "typescript", "react", "vue", "angular", "node.js", "python", "java", "go",
    "rust", "mysql", "postgresql", "mongodb", "redis", "docker", "kubernetes", "aws", "azure",
    "machine learning", "deep learning", "nlp", "cv", "recommender systems", "big data",
    "spark", "hadoop", "product design", "user experience", "data analysis",
    "project management", "agile",
    "机器学习", "深度学习", "推荐系统", "大数据", "产品设计", "用户体验", "数据分析", "项目管理", "敏捷开发",
)
PROJECT_KEYWORDS = (
    "project", "developed", "designed", "implemented", "built", "led", "responsible", "launched",
    "项目", "开发", "设计", "实现", "负责", "参与", "完成",
)
EDUCATION_KEYWORDS = (
    "university", "college", "bachelor", "master", "phd", "degree", "major",
    "大学", "学院", "专业", "本科", "硕士", "博士", "学士",
)
REQUIRED_SECTIONS = (
    "quantitative_assessment",
    "dimensional_optimization",
    "core_description_rewrite",
    "opportunity_mining",
)

_SENTENCE_SPLIT = re.compile(r"[。！？!?\n]|\.\s")
PENDING = "Pending"


def _mentions(text_lower: str, keyword: str) -> bool:
    kw = keyword.lower()
    if kw.isascii():
        # "go" must not match "good".
        return re.search(rf"(?<![a-z0-9]){re.escape(kw)}(?![a-z0-9])", text_lower) is not None
    return kw in text_lower


def extract_resume_highlights(resume_text: str | None, job_tags: Iterable[str] = ()) -> dict[str, Any]:
    """Skills (job tags first, max 5), up to 3 experience sentences, up to 2 projects, education line."""
    if not (resume_text or "").strip():
        return {"skills": [], "experiences": [], "projects": [], "education": ""}

    text_lower = resume_text.lower()
    skills: list[str] = []
    for skill in [*(t.strip().lower() for t in job_tags if t and t.strip()), *SKILL_KEYWORDS]:
        if skill not in skills and _mentions(text_lower, skill):
            skills.append(skill)

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(resume_text) if len(s.strip()) > 10]
    experiences = [s for s in sentences if any(_mentions(s.lower(), kw) for kw in PROJECT_KEYWORDS)][:3]
    projects = [s for s in experiences if _mentions(s.lower(), "project") or "项目" in s][:2]
    education = next((s for s in sentences if any(_mentions(s.lower(), kw) for kw in EDUCATION_KEYWORDS)), "")

    return {
        "skills": skills[:5],
        "experiences": experiences,
        "projects": projects,
        "education": education[:100],
    }


def format_highlights(highlights: dict[str, Any]) -> str:
    experiences = "\n".join(f"- {e}" for e in highlights.get("experiences") or []) or "- No relevant experience found"
    return (
        f"**Matched skills:** {', '.join(highlights.get('skills') or []) or 'None'}\n\n"
        f"**Project experience:**\n{experiences}\n\n"
        f"**Education:** {highlights.get('education') or 'Not provided'}"
    )


def parse_optimization_report(text: str) -> dict[str, Any]:
    """Structured report from model text; ValueError if a section is missing."""
    report = extract_first_json_object(text)
    missing = [k for k in REQUIRED_SECTIONS if not report.get(k)]
    if missing:
        raise ValueError(f"AI report is missing sections: {', '.join(missing)}")
    return report


def unparsed_report(text: str) -> dict[str, Any]:
    """The model answered but not in the expected shape; surface an excerpt instead."""
    return {
        "dimensional_optimization": {
            "skill_match": {
                "score": PENDING,
                "analysis": (text or "")[:500],
                "suggestions": ["See the full report text"],
            }
        },
        "summary": {
            "overall_score": PENDING,
            "key_strengths": ["See the full report text"],
            "improvement_areas": ["See the full report text"],
            "action_plan": ["See the full report text"],
        },
    }


def template_report(*, highlights: dict[str, Any], opportunity: Opportunity) -> tuple[dict[str, Any], str]:
    """(report, markdown body) used when the provider cannot be reached."""
    retry = ["Try again later for detailed suggestions"]
    has_experience = bool(highlights.get("experiences"))
    has_education = bool(highlights.get("education"))
    report = {
        "dimensional_optimization": {
            "skill_match": {
                "score": PENDING,
                "analysis": "AI service is temporarily unavailable; detailed analysis was skipped",
                "suggestions": retry,
            },
            "project_experience": {
                "score": PENDING,
                "analysis": "Project experience detected" if has_experience else "No clear project experience detected",
                "suggestions": retry,
            },
            "education": {
                "score": PENDING,
                "analysis": "Education background detected" if has_education else "No education background detected",
                "suggestions": retry,
            },
        },
        "core_description_rewrite": {
            "original": "Current resume content",
            "optimized": "Rewrites will be available once the AI service recovers",
            "improvements": ["Try again later"],
        },
        "opportunity_mining": {
            "hidden_strengths": ["Try again later for analysis"],
            "market_alignment": "Available once the AI service recovers",
            "competitive_advantage": "Available once the AI service recovers",
        },
        "summary": {
            "overall_score": PENDING,
            "key_strengths": highlights.get("skills") or ["Try again later for analysis"],
            "improvement_areas": ["Try again later for analysis"],
            "action_plan": ["Try again later for the full optimization report"],
        },
    }
    body = (
        "# Resume Optimization Report\n\n"
        "## Target position\n"
        f"- Company: {opportunity.company or 'Unknown company'}\n"
        f"- Position: {opportunity.title or 'Unspecified'}\n"
        f"- Location: {opportunity.location or 'Unspecified'}\n"
        f"- Tags: {', '.join(opportunity.tags) if opportunity.tags else 'None'}\n\n"
        "## Resume analysis\n"
        f"{format_highlights(highlights)}\n\n"
        "## Suggestions\n"
        "The AI service is temporarily unavailable. Please try again later for detailed suggestions."
    )
    return report, body


async def optimize_resume(
    *,
    client: RetryingCompletionClient,
    resume_text: str | None,
    opportunity: Opportunity,
) -> tuple[dict[str, Any], str, dict[str, Any]]:
    """Returns (report, raw_text, meta). meta["fallback"] is True when the template report was used."""
    highlights = extract_resume_highlights(resume_text, opportunity.tags)
    meta: dict[str, Any] = {"fallback": False, "parsed": True}
    request = client.build_request(
        resume_optimization_prompt(highlights=format_highlights(highlights), opportunity=opportunity),
        max_tokens=OPTIMIZATION_MAX_TOKENS,
        temperature=OPTIMIZATION_TEMPERATURE,
    )
    try:
        content = (await client.complete(request)).content
    except AIClientError as e:
        meta.update(handle_ai_service_error(e, operation="resume optimization"))
        meta["fallback"] = True
        report, body = template_report(highlights=highlights, opportunity=opportunity)
        return report, body, meta

    try:
        report = parse_optimization_report(content)
    except (ValueError, json.JSONDecodeError) as e:
        logger.warning("Resume optimization parse failed: %s; raw=%s", e, content[:500])
        meta["parsed"] = False
        return unparsed_report(content), content, meta
    return report, content, meta
