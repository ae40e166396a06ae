"""Learned-lessons knowledge base (LLKB).

A versioned JSON document of repair lessons keyed by ``(type, pattern)``.
Confidence moves toward 1.0 on success and toward 0.0 on failure, and
decays while a lesson sits unused. Only lessons that are both weak and
well-tested are pruned; untested lessons are kept.

Lifecycle::

    with LessonStore(path) as store:   # open() loads, close() flushes
        store.learn_from_refinement(...)
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from journeyforge.constants import (
    LLKB_SCHEMA_VERSION,
    Confidence,
    LessonType,
)

logger = logging.getLogger(__name__)

type FixKind = Literal["replace", "insert", "wrap", "config"]

# Weights of each context field in the match score.
_CONTEXT_WEIGHTS: dict[str, float] = {
    "error_type": 0.5,
    "step_type": 0.2,
    "error_message": 0.3,
}


def _now() -> datetime:
    return datetime.now(UTC)


class LessonContext(BaseModel):
    error_type: str | None = None
    error_message: str | None = None
    step_type: str | None = None
    selector: str | None = None
    journey_id: str | None = None


class LessonFix(BaseModel):
    type: FixKind = "replace"
    pattern: str = ""
    replacement: str = ""
    explanation: str = ""


class Lesson(BaseModel):
    id: str
    type: LessonType
    pattern: str
    context: LessonContext = Field(default_factory=LessonContext)
    fix: LessonFix = Field(default_factory=LessonFix)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    success_count: int = 0
    failure_count: int = 0
    verified: bool = True
    created_at: datetime = Field(default_factory=_now)
    last_used_at: datetime | None = None
    last_success_at: datetime | None = None
    decayed_at: datetime | None = None

    @property
    def applications(self) -> int:
        return self.success_count + self.failure_count


class LessonStats(BaseModel):
    total_lessons: int = 0
    lessons_by_type: dict[str, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    total_applications: int = 0
    success_rate: float = 0.0


@dataclass(frozen=True)
class RelevantLesson:
    lesson: Lesson
    context_match: float
    relevance: float


def lesson_id(lesson_type: LessonType, pattern: str) -> str:
    digest = hashlib.sha1(pattern.encode("utf-8")).hexdigest()[:10]
    return f"{lesson_type.value}-{digest}"


def _word_overlap(query: str, candidate: str) -> float:
    query_words = set(query.lower().split())
    if not query_words:
        return 0.0
    return len(query_words & set(candidate.lower().split())) / len(query_words)


def context_match(query: LessonContext, lesson: Lesson) -> float | None:
    """Similarity in [0, 1]; None when a hard field contradicts the query."""
    ctx = lesson.context
    if query.error_type and ctx.error_type and query.error_type != ctx.error_type:
        return None
    if query.step_type and ctx.step_type and query.step_type != ctx.step_type:
        return None

    score = 0.0
    weight = 0.0
    if query.error_type:
        weight += _CONTEXT_WEIGHTS["error_type"]
        if ctx.error_type == query.error_type:
            score += _CONTEXT_WEIGHTS["error_type"]
    if query.step_type:
        weight += _CONTEXT_WEIGHTS["step_type"]
        if ctx.step_type == query.step_type:
            score += _CONTEXT_WEIGHTS["step_type"]
    if query.error_message:
        weight += _CONTEXT_WEIGHTS["error_message"]
        if ctx.error_message:
            score += _CONTEXT_WEIGHTS["error_message"] * _word_overlap(
                query.error_message, ctx.error_message
            )
    if weight == 0.0:
        return 1.0
    return score / weight


class LessonStore:
    """File-backed lesson collection; writes are serialized by a lock."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._lock = threading.RLock()
        self._lessons: dict[str, Lesson] = {}
        self._dirty = False
        self._opened = False

    # ── Lifecycle ────────────────────────────────────────

    def open(self) -> LessonStore:
        with self._lock:
            if not self._opened:
                self._lessons = self._load()
                self._opened = True
        return self

    def flush(self) -> None:
        with self._lock:
            if self._path is None or not self._dirty:
                return
            doc = {
                "version": LLKB_SCHEMA_VERSION,
                "lessons": [
                    lesson.model_dump(mode="json")
                    for lesson in self._lessons.values()
                ],
                "stats": self.stats().model_dump(),
                "last_updated": _now().isoformat(),
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(doc, indent=2), encoding="utf-8")
            tmp.replace(self._path)
            self._dirty = False
            logger.debug(
                "event=llkb_flushed path=%s lessons=%d",
                self._path,
                len(self._lessons),
            )

    def close(self) -> None:
        self.flush()
        self._opened = False

    def __enter__(self) -> LessonStore:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _load(self) -> dict[str, Lesson]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            raw: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("event=llkb_corrupt path=%s action=start_empty", self._path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("event=llkb_corrupt path=%s action=start_empty", self._path)
            return {}
        doc: dict[str, Any] = raw  # pyright: ignore[reportUnknownVariableType]
        version = doc.get("version")
        if version != LLKB_SCHEMA_VERSION:
            logger.info(
                "event=llkb_migrated from_version=%s to_version=%d",
                version,
                LLKB_SCHEMA_VERSION,
            )
            self._dirty = True

        lessons: dict[str, Lesson] = {}
        for entry in doc.get("lessons") or []:
            try:
                lesson = Lesson.model_validate(entry)
            except ValidationError as exc:
                logger.warning(
                    "event=llkb_lesson_skipped errors=%d", exc.error_count()
                )
                continue
            lessons[lesson.id] = lesson
        return lessons

    # ── Queries ──────────────────────────────────────────

    @property
    def lessons(self) -> list[Lesson]:
        return list(self._lessons.values())

    def __len__(self) -> int:
        return len(self._lessons)

    def get(self, key: str) -> Lesson | None:
        return self._lessons.get(key)

    def find(self, lesson_type: LessonType, pattern: str) -> Lesson | None:
        return next(
            (
                lesson
                for lesson in self._lessons.values()
                if lesson.type == lesson_type and lesson.pattern == pattern
            ),
            None,
        )

    def find_relevant(
        self,
        context: LessonContext,
        min_confidence: float = Confidence.LLKB_RETRIEVAL_FLOOR,
        limit: int = 5,
    ) -> list[RelevantLesson]:
        """Lessons ranked by ``0.6 * context_match + 0.4 * confidence``."""
        ranked: list[RelevantLesson] = []
        for lesson in self._lessons.values():
            if lesson.confidence < min_confidence:
                continue
            match = context_match(context, lesson)
            if match is None or match == 0.0:
                continue
            ranked.append(
                RelevantLesson(
                    lesson=lesson,
                    context_match=match,
                    relevance=0.6 * match + 0.4 * lesson.confidence,
                )
            )
        ranked.sort(key=lambda r: r.relevance, reverse=True)
        return ranked[:limit]

    def stats(self) -> LessonStats:
        lessons = list(self._lessons.values())
        by_type = {t.value: 0 for t in LessonType}
        for lesson in lessons:
            by_type[lesson.type.value] += 1
        applications = sum(lesson.applications for lesson in lessons)
        successes = sum(lesson.success_count for lesson in lessons)
        return LessonStats(
            total_lessons=len(lessons),
            lessons_by_type=by_type,
            avg_confidence=(
                sum(lesson.confidence for lesson in lessons) / len(lessons)
                if lessons
                else 0.0
            ),
            total_applications=applications,
            success_rate=successes / applications if applications else 0.0,
        )

    def export_top(self, limit: int = 100) -> dict[str, Any]:
        top = sorted(
            (
                lesson
                for lesson in self._lessons.values()
                if lesson.confidence >= Confidence.LLKB_RETRIEVAL_FLOOR
            ),
            key=lambda lesson: lesson.confidence,
            reverse=True,
        )[:limit]
        return {
            "lessons": [lesson.model_dump(mode="json") for lesson in top],
            "stats": self.stats().model_dump(),
            "exported_at": _now().isoformat(),
        }

    # ── Mutations ────────────────────────────────────────

    def add_lesson(
        self,
        lesson_type: LessonType,
        pattern: str,
        context: LessonContext | None = None,
        fix: LessonFix | None = None,
        initial_confidence: float = 0.5,
    ) -> Lesson:
        """Insert a lesson, or update the one with the same type and pattern."""
        with self._lock:
            existing = self.find(lesson_type, pattern)
            now = _now()
            if existing is not None:
                if context is not None:
                    merged = existing.context.model_dump(exclude_none=True)
                    merged.update(context.model_dump(exclude_none=True))
                    existing.context = LessonContext.model_validate(merged)
                if fix is not None:
                    existing.fix = fix
                existing.last_used_at = now
                self._dirty = True
                return existing
            lesson = Lesson(
                id=lesson_id(lesson_type, pattern),
                type=lesson_type,
                pattern=pattern,
                context=context or LessonContext(),
                fix=fix or LessonFix(),
                confidence=initial_confidence,
                created_at=now,
            )
            self._lessons[lesson.id] = lesson
            self._dirty = True
            logger.info(
                "event=lesson_added id=%s type=%s", lesson.id, lesson_type.value
            )
            return lesson

    def add_lessons(self, lessons: Iterable[Lesson]) -> list[Lesson]:
        """Upsert extracted lessons, keeping the higher confidence.

        Re-learning an existing lesson counts as one more success for it.
        """
        stored: list[Lesson] = []
        for incoming in lessons:
            with self._lock:
                existing = self.find(incoming.type, incoming.pattern)
                lesson = self.add_lesson(
                    incoming.type,
                    incoming.pattern,
                    incoming.context,
                    incoming.fix,
                    incoming.confidence,
                )
                if existing is not None:
                    lesson.confidence = max(lesson.confidence, incoming.confidence)
                    self.record_success(lesson.id)
                stored.append(lesson)
        return stored

    def record_success(self, key: str) -> Lesson | None:
        with self._lock:
            lesson = self._lessons.get(key)
            if lesson is None:
                return None
            now = _now()
            lesson.success_count += 1
            lesson.last_success_at = now
            lesson.last_used_at = now
            lesson.confidence = min(
                Confidence.LESSON_CEILING,
                lesson.confidence + Confidence.LESSON_SUCCESS_STEP,
            )
            self._dirty = True
            return lesson

    def record_failure(self, key: str) -> Lesson | None:
        with self._lock:
            lesson = self._lessons.get(key)
            if lesson is None:
                return None
            lesson.failure_count += 1
            lesson.last_used_at = _now()
            lesson.confidence = max(
                Confidence.LESSON_FLOOR,
                lesson.confidence - Confidence.LESSON_FAILURE_STEP,
            )
            self._dirty = True
            return lesson

    def apply_decay(
        self,
        now: datetime | None = None,
        half_life_days: float = 30.0,
        min_idle_days: float = 7.0,
    ) -> int:
        """Halve confidence every ``half_life_days`` without a success.

        Decay is measured from the later of the last success and the last
        decay, so calling this repeatedly never decays the same idle days
        twice. Returns the number of lessons changed.
        """
        now = now or _now()
        changed = 0
        with self._lock:
            for lesson in self._lessons.values():
                last_success = lesson.last_success_at or lesson.created_at
                if (now - last_success).total_seconds() / 86_400 < min_idle_days:
                    continue
                since = max(last_success, lesson.decayed_at or last_success)
                idle_days = (now - since).total_seconds() / 86_400
                if idle_days <= 0:
                    continue
                decayed = max(
                    Confidence.LESSON_FLOOR,
                    lesson.confidence * 0.5 ** (idle_days / half_life_days),
                )
                lesson.decayed_at = now
                if decayed < lesson.confidence:
                    lesson.confidence = decayed
                    changed += 1
            if changed:
                self._dirty = True
        return changed

    def prune(self, min_confidence: float = 0.2, min_applications: int = 3) -> int:
        """Drop weak lessons that have been applied often enough to judge."""
        with self._lock:
            doomed = [
                lesson.id
                for lesson in self._lessons.values()
                if lesson.applications >= min_applications
                and lesson.confidence < min_confidence
            ]
            for key in doomed:
                del self._lessons[key]
            if doomed:
                self._dirty = True
                logger.info("event=lessons_pruned count=%d", len(doomed))
            return len(doomed)

    def maintain(self, now: datetime | None = None) -> tuple[int, int]:
        """Decay idle lessons, then prune the weak ones.

        Returns ``(decayed, pruned)``.
        """
        decayed = self.apply_decay(now)
        pruned = self.prune()
        if decayed or pruned:
            logger.info(
                "event=llkb_maintained decayed=%d pruned=%d", decayed, pruned
            )
        return decayed, pruned

    def learn_from_refinement(
        self,
        error_type: str,
        error_message: str,
        original_code: str,
        fixed_code: str,
        step_type: str | None = None,
    ) -> Lesson:
        """Record a verified error-to-fix mapping from a successful repair."""
        fix_kind: FixKind = "replace"
        if not original_code.strip():
            fix_kind = "insert"
        elif len(fixed_code) > len(original_code) * 1.5:
            fix_kind = "wrap"
        lesson = self.add_lesson(
            LessonType.ERROR_FIX,
            f"{error_type}:{error_message[:50]}",
            LessonContext(
                error_type=error_type,
                error_message=error_message[:200],
                step_type=step_type,
            ),
            LessonFix(
                type=fix_kind,
                pattern=original_code,
                replacement=fixed_code,
                explanation=f"Fix for {error_type} error",
            ),
            initial_confidence=Confidence.LESSON_INITIAL,
        )
        self.record_success(lesson.id)
        return lesson
