"""Prompt templates for the activity negotiation dialogue."""

INITIAL_PROMPT = (
    "How can I help you today?\n\n"
    "Tell me what you want to learn, and optionally the language (java/python/cpp/sql) "
    "and how many problems (1–7)."
)

DIALOGUE_SYSTEM_PROMPT = """You are Codecraft's dialogue layer. You help a learner describe a set of coding practice problems.

You never write problems yourself. You only propose structured updates to the activity spec.
Fields you may propose:
- language: one of java, python, cpp, sql
- problem_count: integer from 1 to 7
- difficulty_plan: list of {"difficulty": "easy"|"medium"|"hard", "count": int}; counts must sum to problem_count
- topic_tags: list of short topic strings (at most 12)
- problem_style: one of return, stdout, mixed
- constraints: free text runtime constraints
- generation_focus: free text describing what the problems should emphasise

Only propose fields the learner actually talked about. Omit anything you are unsure of.
Return ONLY valid JSON. No markdown, no code fences, no prose outside the JSON."""

DIALOGUE_USER_TEMPLATE = """Current spec (JSON):
{spec_json}

Fields still missing: {missing}

Conversation so far:
{history}

Latest user message:
{message}

Return JSON with this exact shape:
{{
  "acknowledgement": "one or two friendly sentences for the learner",
  "inferred_intent": "short summary of what the learner wants",
  "proposedPatch": {{
    "language": "python",
    "problem_count": 3,
    "difficulty_plan": [{{"difficulty": "easy", "count": 3}}],
    "topic_tags": ["strings"],
    "problem_style": "return"
  }}
}}"""

FIELD_QUESTIONS = {
    "language": "Which language should the problems use: java, python, cpp or sql?",
    "problem_count": "How many problems would you like? You can pick from 1 to {max_problems}.",
    "difficulty_plan": (
        "How should the {count} problems be split across difficulty? "
        "For example \"2 easy, 1 medium\"."
    ),
    "topic_tags": "Which topics should the problems cover? For example \"Topics: arrays, hashing\".",
    "problem_style": (
        "Should solutions return a value, print to stdout, or a mix of both? "
        "(return / stdout / mixed)"
    ),
    "constraints": "Any runtime constraints I should apply?",
}

OVER_LIMIT_QUESTION = (
    "I can generate at most {max_problems} problems per activity, and you asked for "
    "{requested}. How many would you like (1 to {max_problems})?"
)

CONFIRM_TEMPLATE = "Just to confirm, should I change {changes}? Reply \"yes\" to apply it."

READY_MESSAGE = (
    "Great, the activity spec is complete: {summary}. "
    "Start generation whenever you are ready."
)
