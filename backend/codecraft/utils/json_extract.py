import json


def clean_json(content: str) -> str:
    """Strip markdown fences."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def parse_json_object(content: str) -> dict | None:
    """Best-effort parse of a JSON object out of model text.

    Tries the fenced-stripped text first, then the span between the first `{`
    and the last `}`. Returns None when neither parses to an object.
    """
    text = clean_json(content or "")
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
