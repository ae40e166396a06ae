"""Typed convenience functions for emitting trace events."""

from __future__ import annotations

from journeyforge.observability.dispatcher import TraceDispatcher
from journeyforge.observability.events import TraceCategory, TraceEvent


async def emit_command_start(
    dispatcher: TraceDispatcher,
    trace_id: str,
    command: str,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="command_start",
            trace_id=trace_id,
            data={"command": command},
        )
    )


async def emit_command_end(
    dispatcher: TraceDispatcher,
    trace_id: str,
    command: str,
    duration_ms: float,
    success: bool,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="command_end",
            trace_id=trace_id,
            data={
                "command": command,
                "duration_ms": duration_ms,
                "success": success,
            },
        )
    )


async def emit_stage_start(
    dispatcher: TraceDispatcher,
    trace_id: str,
    stage: str,
    category: TraceCategory = "pipeline",
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="stage_start",
            trace_id=trace_id,
            category=category,
            data={"stage": stage},
        )
    )


async def emit_stage_end(
    dispatcher: TraceDispatcher,
    trace_id: str,
    stage: str,
    duration_ms: float,
    ok: bool,
    error: str | None = None,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="stage_end",
            trace_id=trace_id,
            data={
                "stage": stage,
                "duration_ms": duration_ms,
                "ok": ok,
                "error": error,
            },
        )
    )


async def emit_transition(
    dispatcher: TraceDispatcher,
    trace_id: str,
    from_state: str,
    to_state: str,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="pipeline_transition",
            trace_id=trace_id,
            category="refinement",
            data={"from": from_state, "to": to_state},
        )
    )


async def emit_attempt(
    dispatcher: TraceDispatcher,
    trace_id: str,
    attempt_number: int,
    outcome: str,
    error_count: int,
    tokens: int,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="refinement_attempt",
            trace_id=trace_id,
            category="refinement",
            data={
                "attempt": attempt_number,
                "outcome": outcome,
                "error_count": error_count,
                "tokens": tokens,
            },
        )
    )


async def emit_llm_call(
    dispatcher: TraceDispatcher,
    trace_id: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    duration_ms: float,
    cost: float,
    purpose: str | None = None,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="llm_call",
            trace_id=trace_id,
            category="llm",
            data={
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "duration_ms": duration_ms,
                "cost": cost,
                "purpose": purpose,
            },
        )
    )


async def emit_error(
    dispatcher: TraceDispatcher,
    trace_id: str,
    component: str,
    message: str,
    error_type: str | None = None,
) -> None:
    await dispatcher.emit(
        TraceEvent(
            type="error",
            trace_id=trace_id,
            data={
                "component": component,
                "message": message,
                "error_type": error_type,
            },
        )
    )
