"""Turn applied fixes from a refinement session into LLKB lessons."""

from __future__ import annotations

from dataclasses import dataclass, field

from journeyforge.constants import Confidence, FixOutcome, FixType, LessonType
from journeyforge.llkb.store import Lesson, LessonContext, LessonFix, lesson_id
from journeyforge.refinement.models import CodeFix, ErrorAnalysis, RefinementSession

_LESSON_TYPES: dict[FixType, LessonType] = {
    FixType.SELECTOR_CHANGE: LessonType.SELECTOR_PATTERN,
    FixType.LOCATOR_STRATEGY_CHANGED: LessonType.SELECTOR_PATTERN,
    FixType.FRAME_CONTEXT_ADDED: LessonType.SELECTOR_PATTERN,
    FixType.WAIT_ADDED: LessonType.WAIT_STRATEGY,
    FixType.TIMEOUT_INCREASED: LessonType.WAIT_STRATEGY,
    FixType.RETRY_ADDED: LessonType.WAIT_STRATEGY,
    FixType.FLOW_REORDERED: LessonType.FLOW_PATTERN,
}

# Checked in order; first substring present wins.
_SELECTOR_MARKERS = (
    ("get_by_test_id", "testid"),
    ("get_by_role", "role"),
    ("get_by_text", "text"),
    ("get_by_label", "label"),
    ("get_by_placeholder", "placeholder"),
    ("locator(", "css"),
)
_WAIT_MARKERS = (
    ("wait_for_selector", "wait_for_selector"),
    ("wait_for_load_state", "wait_for_load_state"),
    ("expect_response", "expect_response"),
    ("wait_for_url", "wait_for_url"),
    ("wait_for_timeout", "wait_for_timeout"),
    ("to_be_visible", "expect_visible"),
)
_ASSERTION_MARKERS = (
    ("to_have_text", "to_have_text"),
    ("to_have_value", "to_have_value"),
    ("to_be_visible", "to_be_visible"),
    ("to_be_enabled", "to_be_enabled"),
    ("to_have_count", "to_have_count"),
    ("to_have_url", "to_have_url"),
)


def lesson_type_for(fix_type: FixType) -> LessonType:
    return _LESSON_TYPES.get(fix_type, LessonType.ERROR_FIX)


def _first_marker(code: str, markers: tuple[tuple[str, str], ...]) -> str:
    return next((label for needle, label in markers if needle in code), "unknown")


def extract_pattern(fix: CodeFix) -> str:
    """Generalizable name for what the fix did (e.g. ``testid``)."""
    if fix.type in (FixType.SELECTOR_CHANGE, FixType.LOCATOR_STRATEGY_CHANGED):
        return _first_marker(fix.fixed_code, _SELECTOR_MARKERS)
    if fix.type == FixType.WAIT_ADDED:
        return _first_marker(fix.fixed_code, _WAIT_MARKERS)
    if fix.type == FixType.ASSERTION_MODIFIED:
        return _first_marker(fix.fixed_code, _ASSERTION_MARKERS)
    return fix.type.value


def _lesson_from_fix(
    journey_id: str,
    fix: CodeFix,
    error: ErrorAnalysis | None,
    verified: bool,
) -> Lesson:
    lesson_type = lesson_type_for(fix.type)
    category = error.category.value if error is not None else "UNKNOWN"
    pattern = f"{category}:{extract_pattern(fix)}"
    return Lesson(
        id=lesson_id(lesson_type, pattern),
        type=lesson_type,
        pattern=pattern,
        context=LessonContext(
            error_type=category,
            error_message=error.message if error is not None else None,
            selector=error.selector if error is not None else None,
            journey_id=journey_id,
        ),
        fix=LessonFix(
            type="replace",
            pattern=fix.original_code,
            replacement=fix.fixed_code,
            explanation=fix.reasoning or fix.description,
        ),
        confidence=fix.confidence,
        verified=verified,
    )


def extract_lessons(
    session: RefinementSession,
    min_confidence: float = Confidence.LESSON_MIN,
    include_unverified: bool = False,
    max_per_session: int = 10,
) -> list[Lesson]:
    """Lessons from applied fixes that helped.

    Only ``success`` and ``partial`` attempts with an applied fix at or
    above ``min_confidence`` qualify; a lesson is verified only when its
    attempt cleared every error.
    """
    lessons: list[Lesson] = []
    for attempt in session.attempts:
        if attempt.outcome not in (FixOutcome.SUCCESS, FixOutcome.PARTIAL):
            continue
        fix = attempt.applied_fix
        if fix is None or fix.confidence < min_confidence:
            continue
        verified = attempt.outcome == FixOutcome.SUCCESS
        if not verified and not include_unverified:
            continue
        lessons.append(
            _lesson_from_fix(session.journey_id, fix, attempt.error, verified)
        )
        if len(lessons) >= max_per_session:
            break
    return lessons


@dataclass
class AggregatedPattern:
    pattern: str
    occurrences: int
    average_confidence: float
    contexts: list[str] = field(default_factory=lambda: list[str]())
    representative_code: str = ""


def aggregate_lessons(lessons: list[Lesson]) -> list[AggregatedPattern]:
    """Group lessons by ``type:pattern``, most frequent first."""
    groups: dict[str, list[Lesson]] = {}
    for lesson in lessons:
        groups.setdefault(f"{lesson.type.value}:{lesson.pattern}", []).append(lesson)

    aggregated: list[AggregatedPattern] = []
    for key, members in groups.items():
        contexts: list[str] = []
        for lesson in members:
            ctx = lesson.context.error_type or "UNKNOWN"
            if ctx not in contexts:
                contexts.append(ctx)
        aggregated.append(
            AggregatedPattern(
                pattern=key,
                occurrences=len(members),
                average_confidence=sum(m.confidence for m in members) / len(members),
                contexts=contexts,
                representative_code=members[0].fix.replacement,
            )
        )
    aggregated.sort(key=lambda a: a.occurrences, reverse=True)
    return aggregated
