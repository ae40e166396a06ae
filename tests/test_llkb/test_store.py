"""Tests for the learned-lessons knowledge base."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from journeyforge.constants import LLKB_SCHEMA_VERSION, Confidence, LessonType
from journeyforge.llkb.store import (
    Lesson,
    LessonContext,
    LessonFix,
    LessonStore,
    context_match,
    lesson_id,
)


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        """Lessons written on close are loaded by the next open."""
        path = tmp_path / "llkb.json"
        with LessonStore(path) as store:
            store.add_lesson(
                LessonType.ERROR_FIX,
                "TIMEOUT:wait",
                LessonContext(error_type="TIMEOUT"),
                LessonFix(replacement="page.wait_for_load_state()"),
            )
        doc = json.loads(path.read_text(encoding="utf-8"))
        assert doc["version"] == LLKB_SCHEMA_VERSION
        assert doc["stats"]["total_lessons"] == 1

        reopened = LessonStore(path).open()
        assert len(reopened) == 1
        assert reopened.lessons[0].fix.replacement == "page.wait_for_load_state()"

    def test_corrupt_file_starts_empty(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "llkb.json"
        path.write_text("{not json", encoding="utf-8")
        with caplog.at_level(logging.WARNING):
            store = LessonStore(path).open()
        assert len(store) == 0
        assert "event=llkb_corrupt" in caplog.text

    def test_invalid_lessons_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "llkb.json"
        path.write_text(
            json.dumps(
                {
                    "version": LLKB_SCHEMA_VERSION,
                    "lessons": [
                        {"id": "x", "type": "error_fix", "pattern": "p"},
                        {"id": "y", "type": "nonsense"},
                    ],
                }
            ),
            encoding="utf-8",
        )
        assert [lsn.id for lsn in LessonStore(path).open().lessons] == ["x"]

    def test_old_version_is_rewritten(self, tmp_path: Path) -> None:
        """Migrating an old document marks the store dirty."""
        path = tmp_path / "llkb.json"
        path.write_text(json.dumps({"version": 0, "lessons": []}), encoding="utf-8")
        LessonStore(path).open().close()
        assert json.loads(path.read_text(encoding="utf-8"))["version"] == (
            LLKB_SCHEMA_VERSION
        )

    def test_in_memory_store_never_writes(self) -> None:
        store = LessonStore().open()
        store.add_lesson(LessonType.FLOW_PATTERN, "p")
        store.close()
        assert len(store) == 1


class TestMutations:
    def test_upsert_by_type_and_pattern(self) -> None:
        """Adding the same pattern twice updates in place and merges context."""
        store = LessonStore().open()
        first = store.add_lesson(
            LessonType.ERROR_FIX, "p", LessonContext(error_type="TIMEOUT")
        )
        second = store.add_lesson(
            LessonType.ERROR_FIX, "p", LessonContext(step_type="click")
        )
        assert first is second
        assert second.context.error_type == "TIMEOUT"
        assert second.context.step_type == "click"
        assert first.id == lesson_id(LessonType.ERROR_FIX, "p")

    def test_add_lessons_keeps_higher_confidence(self) -> None:
        store = LessonStore().open()
        store.add_lesson(LessonType.ERROR_FIX, "p", initial_confidence=0.8)
        incoming = Lesson(
            id="ignored", type=LessonType.ERROR_FIX, pattern="p", confidence=0.6
        )
        stored = store.add_lessons([incoming])
        assert stored[0].success_count == 1
        assert stored[0].confidence == pytest.approx(
            0.8 + Confidence.LESSON_SUCCESS_STEP
        )

    def test_add_lessons_new_lesson_is_untested(self) -> None:
        store = LessonStore().open()
        incoming = Lesson(
            id="x", type=LessonType.ERROR_FIX, pattern="p", confidence=0.7
        )
        assert store.add_lessons([incoming])[0].applications == 0

    def test_success_and_failure_are_bounded(self) -> None:
        store = LessonStore().open()
        lesson = store.add_lesson(LessonType.ERROR_FIX, "p", initial_confidence=0.93)
        store.record_success(lesson.id)
        assert lesson.confidence == Confidence.LESSON_CEILING
        for _ in range(20):
            store.record_failure(lesson.id)
        assert lesson.confidence == Confidence.LESSON_FLOOR
        assert lesson.applications == 21
        assert store.record_success("missing") is None

    def test_decay_halves_per_half_life(self) -> None:
        """Thirty idle days halve confidence; a repeat call adds nothing."""
        store = LessonStore().open()
        lesson = store.add_lesson(LessonType.ERROR_FIX, "p", initial_confidence=0.8)
        later = lesson.created_at + timedelta(days=30)
        assert store.apply_decay(now=later) == 1
        assert lesson.confidence == pytest.approx(0.4)
        assert store.apply_decay(now=later) == 0

    def test_recent_lessons_do_not_decay(self) -> None:
        store = LessonStore().open()
        lesson = store.add_lesson(LessonType.ERROR_FIX, "p", initial_confidence=0.8)
        assert store.apply_decay(now=lesson.created_at + timedelta(days=2)) == 0

    def test_prune_only_tested_weak_lessons(self) -> None:
        store = LessonStore().open()
        weak = store.add_lesson(LessonType.ERROR_FIX, "weak", initial_confidence=0.15)
        store.add_lesson(LessonType.ERROR_FIX, "untested", initial_confidence=0.1)
        weak.failure_count = 3
        assert store.prune() == 1
        assert store.get(weak.id) is None
        assert len(store) == 1

    def test_maintain_decays_then_prunes(self) -> None:
        """Idle decay can push a well-tested lesson under the prune floor."""
        store = LessonStore().open()
        weak = store.add_lesson(LessonType.ERROR_FIX, "weak", initial_confidence=0.3)
        weak.failure_count = 3
        fresh = store.add_lesson(
            LessonType.ERROR_FIX, "fresh", initial_confidence=0.8
        )
        later = weak.created_at + timedelta(days=60)
        assert store.maintain(now=later) == (2, 1)
        assert store.get(weak.id) is None
        assert store.get(fresh.id) is not None

    def test_learn_from_refinement(self) -> None:
        """Learning records a success, lifting the initial confidence."""
        store = LessonStore().open()
        lesson = store.learn_from_refinement(
            "TIMEOUT", "Timeout exceeded", "a", "a\nb\nc\nd"
        )
        assert lesson.fix.type == "wrap"
        assert lesson.success_count == 1
        assert lesson.confidence == pytest.approx(
            Confidence.LESSON_INITIAL + Confidence.LESSON_SUCCESS_STEP
        )


class TestRetrieval:
    def test_context_match_rejects_contradiction(self) -> None:
        lesson = Lesson(
            id="a",
            type=LessonType.ERROR_FIX,
            pattern="p",
            context=LessonContext(error_type="TIMEOUT"),
        )
        assert context_match(LessonContext(error_type="SYNTAX_ERROR"), lesson) is None
        assert context_match(LessonContext(error_type="TIMEOUT"), lesson) == 1.0
        assert context_match(LessonContext(), lesson) == 1.0

    def test_find_relevant_ranks_and_filters(self) -> None:
        """Ranking mixes context match and confidence; weak lessons drop."""
        store = LessonStore().open()
        strong = store.add_lesson(
            LessonType.ERROR_FIX,
            "a",
            LessonContext(error_type="TIMEOUT", error_message="timeout waiting"),
            initial_confidence=0.9,
        )
        store.add_lesson(
            LessonType.ERROR_FIX,
            "b",
            LessonContext(error_type="TIMEOUT"),
            initial_confidence=0.6,
        )
        store.add_lesson(
            LessonType.ERROR_FIX,
            "c",
            LessonContext(error_type="TIMEOUT"),
            initial_confidence=0.2,
        )
        found = store.find_relevant(
            LessonContext(error_type="TIMEOUT", error_message="timeout waiting")
        )
        assert [r.lesson.pattern for r in found] == ["a", "b"]
        assert found[0].lesson is strong
        assert found[0].context_match == 1.0

    def test_stats_and_export(self) -> None:
        store = LessonStore().open()
        lesson = store.add_lesson(LessonType.WAIT_STRATEGY, "w", initial_confidence=0.7)
        store.add_lesson(LessonType.ERROR_FIX, "low", initial_confidence=0.2)
        store.record_success(lesson.id)
        stats = store.stats()
        assert stats.total_lessons == 2
        assert stats.lessons_by_type["wait_strategy"] == 1
        assert stats.success_rate == 1.0
        exported = store.export_top()
        assert [e["pattern"] for e in exported["lessons"]] == ["w"]


def test_created_at_is_timezone_aware() -> None:
    store = LessonStore().open()
    lesson = store.add_lesson(LessonType.ERROR_FIX, "p")
    assert lesson.created_at.tzinfo is not None
    assert lesson.created_at <= datetime.now(UTC)
