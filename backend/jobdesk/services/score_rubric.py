from typing import Any


# (item key, label, weight %) grouped by dimension. Weights sum to 100.
RUBRIC: list[tuple[str, list[tuple[str, str, int]]]] = [
    (
        "Background & experience",
        [
            ("education_background", "Education and major", 7),
            ("ai_experience", "AI internships / projects", 12),
        ],
    ),
    (
        "Knowledge & skills",
        [
            ("ai_technical_knowledge", "AI technical understanding", 12),
            ("product_methodology", "Product methodology", 8),
        ],
    ),
    (
        "Portfolio & results",
        [
            ("interactive_works", "Interactive work", 18),
            ("product_documents", "Product documents and analysis", 8),
        ],
    ),
    (
        "Core competencies",
        [
            ("logic_structure", "Logic and structure", 5),
            ("result_oriented", "Results orientation", 10),
        ],
    ),
    (
        "Growth potential",
        [
            ("self_motivation", "Self-motivation", 11),
            ("innovation_initiative", "Innovation and initiative", 5),
        ],
    ),
    (
        "Company fit",
        [
            ("business_matching", "Domain match", 2),
            ("salary_matching", "Compensation match", 2),
        ],
    ),
]

ITEM_WEIGHTS: dict[str, int] = {key: w for _, items in RUBRIC for key, _, w in items}

MAX_ITEM_SCORE = 5


def _item_score(scores: dict[str, Any], key: str) -> float:
    item = scores.get(key)
    value = item.get("score") if isinstance(item, dict) else item
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(float(MAX_ITEM_SCORE), v))


def weighted_total(scores: dict[str, Any]) -> float:
    """Σ(item score × weight) × 20, i.e. 0-5 item scores mapped onto 0-100."""
    s = sum(_item_score(scores, key) * w / 100 for key, w in ITEM_WEIGHTS.items())
    return round(s * 20, 1)


def breakdown_from_scores(scores: dict[str, Any]) -> list[dict[str, Any]]:
    out = []
    for dimension, items in RUBRIC:
        weight = sum(w for _, _, w in items)
        weighted_sum = sum(_item_score(scores, key) * w for key, _, w in items)
        out.append(
            {
                "dimension": dimension,
                "score": round(weighted_sum / weight * 20) if weight else 0,
                "weight": weight,
            }
        )
    return out


def recommendation_for(total: float) -> str:
    if total >= 90:
        return "Strongly recommended"
    if total >= 75:
        return "Recommended"
    if total >= 60:
        return "Recommended with caution"
    return "Not recommended"


def normalize_total_score(value: Any, scores: dict[str, Any]) -> float:
    """
    Models sometimes return the raw 0-5 weighted score instead of the 0-100 total.
    A value in (0, 5] is scaled by 20; a missing/invalid value is recomputed from items.
    """
    try:
        total = float(value)
    except (TypeError, ValueError):
        return weighted_total(scores)
    if 0 < total <= MAX_ITEM_SCORE:
        total *= 20
    return round(max(0.0, min(100.0, total)), 1)


def empty_scores(reason: str) -> dict[str, dict[str, Any]]:
    return {key: {"score": 0, "reason": reason} for key in ITEM_WEIGHTS}
