"""Shared constants used across modules.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so persisted JSON documents and
log lines work unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class PrimitiveType(StrEnum):
    """Discriminant of an IR primitive."""

    CLICK = "click"
    FILL = "fill"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"
    GOTO = "goto"
    WAIT_FOR_URL = "waitForURL"
    EXPECT_VISIBLE = "expectVisible"
    EXPECT_TOAST = "expectToast"
    EXPECT_URL = "expectURL"
    CALL_MODULE = "callModule"
    BLOCKED = "blocked"


ASSERTION_TYPES: frozenset[PrimitiveType] = frozenset({
    PrimitiveType.EXPECT_VISIBLE,
    PrimitiveType.EXPECT_TOAST,
    PrimitiveType.EXPECT_URL,
})


class LocatorStrategy(StrEnum):
    """How a UI element is found."""

    TESTID = "testid"
    ROLE = "role"
    LABEL = "label"
    TEXT = "text"
    CSS = "css"
    XPATH = "xpath"


class ValueKind(StrEnum):
    """Origin of a value typed into the page."""

    LITERAL = "literal"
    ACTOR = "actor"
    TEST_DATA = "testData"
    GENERATED = "generated"


class Severity(StrEnum):
    """Severity of a validation issue."""

    ERROR = "error"
    WARNING = "warning"


class ErrorCategory(StrEnum):
    """Closed set of failure categories for executed tests."""

    SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    ASSERTION_FAILED = "ASSERTION_FAILED"
    NAVIGATION_ERROR = "NAVIGATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    TYPE_ERROR = "TYPE_ERROR"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(StrEnum):
    """How badly a failure blocks the journey."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class FixType(StrEnum):
    """Kinds of code change a repair candidate may propose."""

    SELECTOR_CHANGE = "SELECTOR_CHANGE"
    LOCATOR_STRATEGY_CHANGED = "LOCATOR_STRATEGY_CHANGED"
    FRAME_CONTEXT_ADDED = "FRAME_CONTEXT_ADDED"
    WAIT_ADDED = "WAIT_ADDED"
    TIMEOUT_INCREASED = "TIMEOUT_INCREASED"
    RETRY_ADDED = "RETRY_ADDED"
    ASSERTION_MODIFIED = "ASSERTION_MODIFIED"
    ERROR_HANDLING_ADDED = "ERROR_HANDLING_ADDED"
    FLOW_REORDERED = "FLOW_REORDERED"
    OTHER = "OTHER"


class FixOutcome(StrEnum):
    """Result of one refinement attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"
    SKIPPED = "skipped"


class RefinementStatus(StrEnum):
    """Terminal status of a refinement session."""

    SUCCESS = "SUCCESS"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"
    SAME_ERROR_LOOP = "SAME_ERROR_LOOP"
    OSCILLATION_DETECTED = "OSCILLATION_DETECTED"
    TIMEOUT = "TIMEOUT"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    CANNOT_FIX = "CANNOT_FIX"
    ABORTED = "ABORTED"


class LoopState(StrEnum):
    """States of the refinement state machine."""

    IDLE = "IDLE"
    GENERATING = "GENERATING"
    EXECUTING = "EXECUTING"
    REFINING = "REFINING"
    DONE = "DONE"
    BLOCKED = "BLOCKED"
    DEAD_END = "DEAD_END"
    FAILED = "FAILED"


class CircuitOpenReason(StrEnum):
    """Why the refinement circuit breaker opened."""

    MAX_ATTEMPTS = "MAX_ATTEMPTS"
    SAME_ERROR = "SAME_ERROR"
    OSCILLATION = "OSCILLATION"
    TIMEOUT = "TIMEOUT"
    BUDGET = "BUDGET"


class Trend(StrEnum):
    """Direction of the error count across attempts."""

    IMPROVING = "improving"
    DEGRADING = "degrading"
    OSCILLATING = "oscillating"
    STAGNATING = "stagnating"


class SuggestedAction(StrEnum):
    """What a human should do with a dead-ended session."""

    MANUAL_REVIEW = "manual_review"
    JOURNEY_REVISION = "journey_revision"
    RETRY = "retry"
    ABORT = "abort"


class Verdict(StrEnum):
    """Acceptance verdict of the confidence gate."""

    ACCEPT = "ACCEPT"
    REVIEW = "REVIEW"
    REJECT = "REJECT"


class Dimension(StrEnum):
    """Independently scored axes of generated-code confidence."""

    SYNTAX = "syntax"
    PATTERN = "pattern"
    SELECTOR = "selector"
    AGREEMENT = "agreement"


class LessonType(StrEnum):
    """Kind of repair pattern stored in the knowledge base."""

    SELECTOR_PATTERN = "selector_pattern"
    WAIT_STRATEGY = "wait_strategy"
    FLOW_PATTERN = "flow_pattern"
    ERROR_FIX = "error_fix"


class GenerationStrategy(StrEnum):
    """How generated code is written to an existing file."""

    FULL = "full"
    BLOCKS = "blocks"


class JourneyPhaseStatus(StrEnum):
    """Per-journey outcome of an entry operation."""

    GENERATED = "generated"
    PASSED = "passed"
    HEALED = "healed"
    FAILED = "failed"
    INVALID = "invalid"
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    GENERATION_FAILED = "GENERATION_FAILED"


class StageOutcome(StrEnum):
    """Outcome of an individual pipeline stage execution."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ── Confidence Thresholds ────────────────────────────────


class Confidence:
    """Named confidence thresholds in one place."""

    FIX_MIN_VIABLE = 0.5  # Candidate fix worth applying
    LESSON_MIN = 0.7  # Fix generalizable enough to learn from
    LESSON_INITIAL = 0.6  # Starting confidence of a verified lesson
    LESSON_CEILING = 0.95
    LESSON_FLOOR = 0.1
    LESSON_SUCCESS_STEP = 0.05
    LESSON_FAILURE_STEP = 0.1
    LLKB_RETRIEVAL_FLOOR = 0.5
    PLAN_MIN = 0.7
    AGREEMENT_NEUTRAL = 0.7  # Agreement when sampling was skipped


# ── Circuit Breaker Configuration ────────────────────────

# Per-model LLM breaker (circuitbreaker library)
CB_LLM_FAILURE_THRESHOLD = 5
CB_LLM_RECOVERY_TIMEOUT = 30

# Refinement circuit breaker defaults
REFINE_MAX_ATTEMPTS = 3
REFINE_SAME_ERROR_THRESHOLD = 2
REFINE_OSCILLATION_WINDOW = 4
REFINE_TOTAL_TIMEOUT_MS = 300_000
REFINE_COOLDOWN_MS = 1_000
REFINE_MAX_TOKEN_BUDGET = 50_000
REFINE_ESTIMATED_TOKENS_PER_ATTEMPT = 5_000
FINGERPRINT_HISTORY_LIMIT = 200

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 2
RETRY_MAX_WAIT = 30

# ── LLM Output ───────────────────────────────────────────

LLM_MAX_OUTPUT_TOKENS = 4096
PLAN_ESTIMATED_TOKENS = 2_000
SAMPLE_ESTIMATED_TOKENS = 4_000

# ── Execution ────────────────────────────────────────────

RUNNER_MAX_OUTPUT_BYTES = 1_048_576
RUNNER_KILL_GRACE_SECONDS = 5.0

# ── Persistence ──────────────────────────────────────────

LLKB_SCHEMA_VERSION = 1
TELEMETRY_SCHEMA_VERSION = 1
COST_SCHEMA_VERSION = 1
SESSION_SCHEMA_VERSION = 1
TELEMETRY_MAX_EVENTS = 100

# ── Misc ─────────────────────────────────────────────────

ERROR_MESSAGE_MAX_CHARS = 200
ERROR_TRUNCATION_CHARS = 200
FINGERPRINT_HEX_CHARS = 12
GENERATED_MODULES_PACKAGE = "modules"
