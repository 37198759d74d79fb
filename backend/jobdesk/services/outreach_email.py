import logging
from typing import Any

from ..schemas.ai import Opportunity
from ..utils.error_handlers import handle_ai_service_error
from .ai_client import AIClientError, RetryingCompletionClient
from .ai_common import extract_labeled_section
from .ai_prompts import outreach_email_prompt


logger = logging.getLogger(__name__)

EMAIL_MAX_TOKENS = 800
EMAIL_TEMPERATURE = 0.7

_SUBJECT_LABELS = ("Subject", "主题")
_BODY_LABELS = ("Body", "正文")


def default_subject(*, user_name: str, opportunity: Opportunity) -> str:
    return f"Application for {opportunity.title or 'the open position'} - {user_name}"


def template_email(*, user_name: str, opportunity: Opportunity) -> dict[str, str]:
    company = opportunity.company or "your team"
    title = opportunity.title or "the open position"
    body = (
        f"Hello {company} hiring team,\n\n"
        f"My name is {user_name} and I am writing to express my interest in the {title} role. "
        "I believe my background is a strong match for what you are looking for, and I would "
        "welcome the chance to contribute.\n\n"
        "I have attached my resume for your review and would be glad to talk about how I can help.\n\n"
        f"Best regards,\n{user_name}"
    )
    return {"subject": default_subject(user_name=user_name, opportunity=opportunity), "body": body}


def parse_email(content: str, *, user_name: str, opportunity: Opportunity) -> dict[str, str]:
    subject = None
    for label in _SUBJECT_LABELS:
        subject = extract_labeled_section(content, label, next_labels=_BODY_LABELS)
        if subject:
            # Subject is one line even if the model forgot the Body label.
            subject = subject.splitlines()[0].strip()
            break
    body = None
    for label in _BODY_LABELS:
        body = extract_labeled_section(content, label)
        if body:
            break
    return {
        "subject": subject or default_subject(user_name=user_name, opportunity=opportunity),
        "body": body or (content or "").strip(),
    }


async def generate_outreach_email(
    *,
    client: RetryingCompletionClient,
    user_name: str,
    resume_text: str | None,
    opportunity: Opportunity,
) -> tuple[dict[str, str], dict[str, Any]]:
    """Returns ({subject, body}, meta). Falls back to a template email when the provider is down."""
    meta: dict[str, Any] = {"fallback": False}
    request = client.build_request(
        outreach_email_prompt(user_name=user_name, resume_text=resume_text, opportunity=opportunity),
        max_tokens=EMAIL_MAX_TOKENS,
        temperature=EMAIL_TEMPERATURE,
    )
    try:
        content = (await client.complete(request)).content
    except AIClientError as e:
        meta.update(handle_ai_service_error(e, operation="outreach email"))
        meta["fallback"] = True
        return template_email(user_name=user_name, opportunity=opportunity), meta

    return parse_email(content, user_name=user_name, opportunity=opportunity), meta
