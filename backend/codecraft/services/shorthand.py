"""Deterministic parsing of low-entropy chat shorthand ("3 easy", "in py").

Runs before any model call. Whatever it finds counts as stated by the user.
"""

import re
from dataclasses import dataclass, field

from codecraft.models.language import normalize_language
from codecraft.models.spec import (
    DIFFICULTY_ORDER,
    MAX_PROBLEMS,
    MIN_PROBLEMS,
    DifficultyCount,
    rescale_difficulty_plan,
)
from codecraft.services.contract_validator import STYLE_ALIASES

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}
_NUM = r"(\d+|" + "|".join(NUMBER_WORDS) + r")"

_LANGUAGE_RE = re.compile(r"(?<![\w+])(python3?|py|java|cpp|c\+\+|sqlite3?|sql)(?![\w+])", re.IGNORECASE)
_COUNT_RE = re.compile(
    r"\b" + _NUM + r"\s+(?:[a-z+#-]+\s+){0,3}?(?:problems?|questions?|exercises?|challenges?|tasks?)\b",
    re.IGNORECASE,
)
_PAIR_RE = re.compile(r"\b" + _NUM + r"\s+(easy|medium|hard)\b", re.IGNORECASE)
_DIFFICULTY_WORD_RE = re.compile(r"\b(easy|medium|hard)\b", re.IGNORECASE)
_STYLE_RE = re.compile(r"\b(return|returns|stdout|print|printing|mixed)\b", re.IGNORECASE)
_TOPICS_RE = re.compile(r"\btopics?\s*:\s*(.+?)(?:\.(?:\s|$)|\n|$)", re.IGNORECASE)
_FOCUS_RE = re.compile(r"\bfocus\s*:\s*(.+)$", re.IGNORECASE | re.DOTALL)

AFFIRMATIVES = frozenset({
    "yes", "y", "yeah", "yep", "sure", "ok", "okay", "confirm", "correct",
    "do it", "go ahead", "sounds good",
})


def is_affirmative(message: str) -> bool:
    text = re.sub(r"[^\w\s]", " ", (message or "").lower())
    return " ".join(text.split()) in AFFIRMATIVES


def _to_int(token: str) -> int:
    token = token.lower()
    return NUMBER_WORDS[token] if token in NUMBER_WORDS else int(token)


@dataclass
class ShorthandResult:
    values: dict = field(default_factory=dict)
    # Out-of-range count with no difficulty info yet; caller asks for a count.
    count_deferred: bool = False
    requested_count: int | None = None

    @property
    def explicit_fields(self) -> frozenset[str]:
        return frozenset(self.values)


def _split_topics(raw: str) -> list[str]:
    parts = re.split(r",|;|\band\b", raw)
    return [p.strip(" .") for p in parts if p.strip(" .")]


def _stated_count(text: str) -> int | None:
    """First "N problems" phrase whose number does not open a pair like "1 hard"."""
    for match in _COUNT_RE.finditer(text):
        if _PAIR_RE.match(text, match.start()):
            continue
        return _to_int(match.group(1))
    return None


def parse_shorthand(message: str) -> ShorthandResult:
    text = message or ""
    result = ShorthandResult()

    languages = {normalize_language(m) for m in _LANGUAGE_RE.findall(text)}
    languages.discard(None)
    if len(languages) == 1:
        result.values["language"] = languages.pop()

    styles = {STYLE_ALIASES[m.lower()] for m in _STYLE_RE.findall(text)}
    if len(styles) == 1:
        result.values["problem_style"] = styles.pop()

    topics = _TOPICS_RE.search(text)
    if topics:
        tags = _split_topics(topics.group(1))
        if tags:
            result.values["topic_tags"] = tags

    focus = _FOCUS_RE.search(text)
    if focus and focus.group(1).strip():
        result.values["generation_focus"] = focus.group(1).strip()

    count = _stated_count(text)

    pairs: dict[str, int] = {}
    for num, difficulty in _PAIR_RE.findall(text):
        pairs[difficulty.lower()] = pairs.get(difficulty.lower(), 0) + _to_int(num)
    pairs = {d: n for d, n in pairs.items() if n > 0}

    plan: list[DifficultyCount] | None = None
    if pairs:
        plan = [DifficultyCount(difficulty=d, count=pairs[d]) for d in DIFFICULTY_ORDER if d in pairs]
        if count is None:
            count = sum(pairs.values())
    else:
        words = {w.lower() for w in _DIFFICULTY_WORD_RE.findall(text)}
        if len(words) == 1 and count is not None and count > 0:
            plan = [DifficultyCount(difficulty=words.pop(), count=count)]

    if count is None or count < MIN_PROBLEMS:
        return result

    result.requested_count = count
    if count > MAX_PROBLEMS:
        if plan is None:
            result.count_deferred = True
            return result
        count = MAX_PROBLEMS

    result.values["problem_count"] = count
    if plan is not None:
        result.values["difficulty_plan"] = rescale_difficulty_plan(plan, count)
    return result
