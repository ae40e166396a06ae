"""Prompt text for the LLM repair generator."""

from __future__ import annotations

from journeyforge.refinement.error_parser import (
    is_code_error,
    is_environmental,
    suggested_fix_types,
)
from journeyforge.refinement.models import ErrorAnalysis, FixAttempt
from journeyforge.llkb.store import RelevantLesson

MAX_HISTORY_ATTEMPTS = 5
MAX_PROMPT_LESSONS = 5

REFINEMENT_SYSTEM_PROMPT = """\
You repair failing Python end-to-end tests written with pytest-playwright
(sync API: page.get_by_role, page.get_by_test_id, expect(...).to_be_visible).

Given the test source, the classified failures and earlier attempts,
propose minimal code edits that make the test pass. Rules:

- "originalCode" MUST be an exact substring of the current source,
  including indentation. Edits whose originalCode is not found are
  discarded.
- Prefer stable locators: get_by_test_id > get_by_role > get_by_label >
  get_by_text > CSS > XPath.
- Prefer web-first assertions (expect(...)) over fixed sleeps; never use
  page.wait_for_timeout.
- Do not repeat a fix that already failed in an earlier attempt.
- Do not edit lines between "# BEGIN GENERATED" and "# END GENERATED"
  markers unless the failure is inside that block.

Fix types: SELECTOR_CHANGE, LOCATOR_STRATEGY_CHANGED, FRAME_CONTEXT_ADDED,
WAIT_ADDED, TIMEOUT_INCREASED, RETRY_ADDED, ASSERTION_MODIFIED,
ERROR_HANDLING_ADDED, FLOW_REORDERED, OTHER.

Respond with ONE JSON object, fixes ordered by confidence (highest first):
{"reasoning": str,
 "fixes": [{"type": str, "description": str, "originalCode": str,
            "fixedCode": str, "location": {"file": str, "line": int},
            "confidence": 0..1, "reasoning": str}]}
Return an empty "fixes" list if no code change can fix the failure.
No prose outside the JSON."""


def _format_error(index: int, error: ErrorAnalysis) -> list[str]:
    lines = [f"{index}. [{error.category}] {error.message}"]
    if error.location is not None:
        where = error.location.file
        if error.location.line is not None:
            where += f":{error.location.line}"
        lines.append(f"   at {where}")
    if error.selector:
        lines.append(f"   selector: {error.selector}")
    if error.expected_value is not None:
        lines.append(f"   expected: {error.expected_value}")
    if error.actual_value is not None:
        lines.append(f"   actual: {error.actual_value}")
    hints = ", ".join(t.value for t in suggested_fix_types(error.category))
    lines.append(f"   likely fix types: {hints}")
    if is_environmental(error):
        lines.append("   note: environment failure, a code change is unlikely to help")
    elif is_code_error(error):
        lines.append("   note: the test source itself is broken (Python error)")
    return lines


def build_fix_prompt(
    code: str,
    errors: list[ErrorAnalysis],
    attempts: list[FixAttempt],
    lessons: list[RelevantLesson] | None = None,
) -> str:
    sections = ["## Test source", "```python", code.rstrip(), "```", "", "## Failures"]
    for i, error in enumerate(errors, 1):
        sections.extend(_format_error(i, error))

    previous = attempts[-MAX_HISTORY_ATTEMPTS:]
    if previous:
        sections.extend(["", "## Earlier attempts"])
        for attempt in previous:
            if attempt.applied_fix is not None:
                fix = attempt.applied_fix
                sections.append(
                    f"- #{attempt.attempt_number} {fix.type}: {fix.description}"
                    f" -> {attempt.outcome}"
                )
            else:
                reason = attempt.skip_reason or "no fix applied"
                sections.append(
                    f"- #{attempt.attempt_number} {attempt.outcome}: {reason}"
                )

    if lessons:
        sections.extend(["", "## Fixes that worked before"])
        for item in lessons[:MAX_PROMPT_LESSONS]:
            lesson = item.lesson
            sections.append(
                f"- ({lesson.confidence:.2f}) {lesson.pattern}: "
                f"{lesson.fix.explanation or lesson.fix.replacement}"
            )
    return "\n".join(sections)
