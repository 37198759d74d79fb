import json
import re


_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_first_json_object(text: str) -> dict:
    """
    Best-effort extraction of a JSON object from a model response.
    Handles markdown fences and JSON wrapped in prose.
    """
    raw = _FENCE_RE.sub("", (text or "").strip())
    if not raw:
        raise ValueError("Empty AI response")

    # Fast path: pure JSON
    try:
        obj = json.loads(raw)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    # Greedy {...} span first (handles nested objects), then each '{' in turn.
    m = _JSON_OBJECT_RE.search(raw)
    if not m:
        raise ValueError("No JSON object found in AI response")
    try:
        obj = json.loads(m.group(0))
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for i, ch in enumerate(raw):
        if ch != "{":
            continue
        try:
            obj, _ = decoder.raw_decode(raw, i)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("AI response JSON is not a valid object")


def extract_labeled_section(text: str, label: str, *, next_labels: tuple[str, ...] = ()) -> str | None:
    """
    Return the text after `label:` up to the next label (or end of text).
    Matching is case-insensitive and accepts ASCII or full-width colons.
    """
    stop = "|".join(re.escape(x) for x in next_labels)
    tail = rf"(?=^\s*(?:{stop})\s*[:：]|\Z)" if stop else r"\Z"
    m = re.search(
        rf"^\s*{re.escape(label)}\s*[:：]\s*(.+?){tail}",
        text or "",
        flags=re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )
    if not m:
        return None
    value = m.group(1).strip()
    return value or None
