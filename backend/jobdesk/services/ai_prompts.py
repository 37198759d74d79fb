from ..schemas.ai import Opportunity
from .score_rubric import RUBRIC


def _opportunity_block(opp: Opportunity) -> str:
    return (
        f"- Company: {opp.company or 'Unknown company'}\n"
        f"- Position: {opp.title or 'AI Product Manager'}\n"
        f"- Location: {opp.location or 'Any'}\n"
        f"- Salary range: {opp.salary_range or 'Negotiable'}\n"
        f"- Experience required: {opp.experience_required or 'Any'}\n"
        f"- Education required: {opp.education_required or 'Any'}\n"
        f"- Industry: {opp.industry or 'Unknown'}\n"
        f"- Company size: {opp.company_size or 'Unknown'}\n"
        f"- Tags: {', '.join(opp.tags) if opp.tags else 'None'}\n"
        f"- Description: {opp.description or opp.reason or 'No detailed description'}\n"
    )


def _rubric_table() -> str:
    lines = []
    for dimension, items in RUBRIC:
        for key, label, weight in items:
            lines.append(f"- {key} ({dimension} / {label}): weight {weight}%")
    return "\n".join(lines)


def resume_score_prompt(*, resume_text: str, opportunity: Opportunity) -> str:
    item_keys = ", ".join(f'"{key}"' for _, items in RUBRIC for key, _, _ in items)
    return (
        "You are a recruiter who follows the scoring rubric strictly. Use only evidence from the resume.\n\n"
        "Steps:\n"
        "1. For each rubric item, find supporting facts in the resume; no evidence means 0.\n"
        "2. Score each item as an integer 0-5 with a one-sentence reason quoting the resume.\n"
        "3. total_score = sum(score x weight) x 20, a number from 0 to 100 (NOT 0-5).\n"
        "4. recommendation_level: 90-100 Strongly recommended, 75-89 Recommended, "
        "60-74 Recommended with caution, below 60 Not recommended.\n\n"
        "Rubric:\n"
        f"{_rubric_table()}\n\n"
        "Return JSON only, in this exact shape:\n"
        "{\n"
        f'  "scores": {{ <one of {item_keys}>: {{"score": 0-5, "reason": string}} }},\n'
        '  "total_score": number,\n'
        '  "recommendation_level": string,\n'
        '  "overall_comment": string\n'
        "}\n\n"
        "Target opportunity:\n"
        f"{_opportunity_block(opportunity)}\n"
        "Resume text:\n"
        "-----\n"
        f"{resume_text or ''}\n"
        "-----\n"
    )


def gap_analysis_prompt(*, resume_text: str, opportunity: Opportunity) -> str:
    return (
        "You are a career coach for AI product manager candidates. Evaluate the resume against "
        "five weighted dimensions and produce an improvement report.\n\n"
        "Dimensions (max score): background_experience (20), professional_skills (30), "
        "product_works (20), core_competency (15), development_potential (15).\n\n"
        "Return JSON only, in this exact shape:\n"
        "{\n"
        '  "overall_score": 0-100,\n'
        '  "dimension_scores": { <dimension>: {"score": number, "max_score": number, "reason": string} },\n'
        '  "optimization_suggestions": { <dimension>: string[] },\n'
        '  "rewrite_examples": [ {"original": string, "optimized": string} ],\n'
        '  "missing_opportunities": string[],\n'
        '  "summary": string\n'
        "}\n\n"
        "Rules:\n"
        "- Rewrite 2-3 of the weakest bullet points using STAR with quantified results.\n"
        "- Suggestions must be concrete and actionable.\n\n"
        "Target opportunity:\n"
        f"{_opportunity_block(opportunity)}\n"
        "Resume text:\n"
        "-----\n"
        f"{resume_text or ''}\n"
        "-----\n"
    )


def outreach_email_prompt(*, user_name: str, resume_text: str | None, opportunity: Opportunity) -> str:
    return (
        "You are a career advisor. Write a short, professional cold outreach email from the "
        "candidate to the hiring team.\n\n"
        "Candidate:\n"
        f"- Name: {user_name}\n"
        f"- Resume: {resume_text or 'No resume provided'}\n\n"
        "Target opportunity:\n"
        f"{_opportunity_block(opportunity)}\n"
        "Requirements:\n"
        "- 3-4 paragraphs: greeting, fit with the role, interest in the company, call to action.\n"
        "- Professional but warm; avoid boilerplate; 150-250 words.\n\n"
        "Reply in exactly this format:\n"
        "Subject: <subject line>\n"
        "Body: <email body>\n"
    )


def resume_optimization_prompt(*, highlights: str, opportunity: Opportunity) -> str:
    return (
        "You are a career mentor and recruiter for AI product manager roles. Help the candidate "
        "rework their resume to maximise their chances for the target role.\n\n"
        "Assess the resume on five weighted dimensions:\n"
        "- background_experience (20%): education, major fit, relevance of internships/projects.\n"
        "- professional_skills (30%): AI technical understanding (RAG, agents) and product methodology.\n"
        "- product_works (20%): interactive demos, product documents, analysis reports.\n"
        "- core_competency (15%): logic and result orientation; quantified, STAR-structured bullets.\n"
        "- development_potential (15%): self-drive signals such as blogs, GitHub, open source.\n\n"
        "Target opportunity:\n"
        f"{_opportunity_block(opportunity)}\n"
        "Resume highlights:\n"
        f"{highlights}\n\n"
        "Return JSON only, no markdown, in this exact shape:\n"
        "{\n"
        '  "quantitative_assessment": {"total_score": 0-100, '
        '"dimension_scores": { <dimension>: {"score": "16/20", "reason": string} }},\n'
        '  "dimensional_optimization": { <dimension>: string[] },\n'
        '  "core_description_rewrite": [ {"type": string, "original": string, "optimized": string, '
        '"improvements": string[]} ],\n'
        '  "opportunity_mining": {"missing_elements": string[], "actionable_steps": string[], '
        '"game_changers": string[]}\n'
        "}\n\n"
        "Rules:\n"
        "- Rewrite the 2-3 weakest experience bullets using STAR with quantified business impact.\n"
        "- Every suggestion must be concrete and actionable.\n"
    )
