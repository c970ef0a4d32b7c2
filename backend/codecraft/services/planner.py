from codecraft.core.errors import PlannerInvariantError
from codecraft.models.problem import GenerationSlot
from codecraft.models.spec import DIFFICULTY_ORDER, ActivitySpec, plan_total


def expand_difficulties(spec: ActivitySpec) -> list[str]:
    counts: dict[str, int] = {}
    for item in spec.difficulty_plan:
        counts[item.difficulty] = counts.get(item.difficulty, 0) + item.count
    return [d for d in DIFFICULTY_ORDER for _ in range(counts.get(d, 0))]


def plan(spec: ActivitySpec) -> list[GenerationSlot]:
    """Expand a frozen spec into one slot per problem.

    Slots are ordered easy -> medium -> hard. Topics cycle through the tag
    list by slot index, so every run of consecutive same-difficulty slots
    gets topics spread as evenly as the tag count allows. Pure and
    deterministic.
    """
    total = plan_total(spec.difficulty_plan)
    if total != spec.problem_count:
        raise PlannerInvariantError(
            f"difficulty plan sums to {total}, expected {spec.problem_count}"
        )
    if not spec.topic_tags:
        raise PlannerInvariantError("activity has no topic tags")

    topics = spec.topic_tags
    return [
        GenerationSlot(
            index=i,
            difficulty=difficulty,
            topic=topics[i % len(topics)],
            language=spec.language,
            problem_style=spec.problem_style,
        )
        for i, difficulty in enumerate(expand_difficulties(spec))
    ]
