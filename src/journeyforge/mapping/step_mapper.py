"""Map a single line of step text (plus inline hints) to an IR primitive.

Precedence, highest first:

1. Inline hints. They always win over anything inferred.
2. The ordered pattern table, matched against glossary-normalized text.
3. A glossary module-method phrase ("fill form" -> ``forms.fill_form``).
4. Keyword heuristics paired with a hinted locator.

A step that matches nothing is not an error: the result carries a
``None`` primitive and a message, and the IR builder turns it into a
``Blocked`` action.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from journeyforge.ir.types import (
    LOCATOR_PRIMITIVES,
    CallModule,
    Check,
    Click,
    ExpectVisible,
    Fill,
    Goto,
    IRPrimitive,
    ValueSpec,
    WaitForURL,
    is_assertion,
    parse_value,
)
from journeyforge.mapping.glossary import DEFAULT_GLOSSARY, Glossary
from journeyforge.mapping.hints import (
    ParsedHints,
    build_locator_from_hints,
    contains_hints,
    extract_behavior,
    merge_with_inferred,
    parse_hints,
)
from journeyforge.mapping.patterns import find_pattern

logger = logging.getLogger(__name__)

_QUOTED_RE = re.compile(r"""["']([^"']*)["']""")
_NO_HINTS = ParsedHints(hints=(), clean_text="", original_text="")


@dataclass(frozen=True)
class StepMappingOptions:
    glossary: Glossary = DEFAULT_GLOSSARY
    normalize: bool = True
    use_hints: bool = True


@dataclass(frozen=True)
class StepMappingResult:
    primitive: IRPrimitive | None
    source_text: str
    is_assertion: bool
    message: str | None = None
    pattern_name: str | None = None
    hint_warnings: tuple[str, ...] = ()

    @property
    def mapped(self) -> bool:
        return self.primitive is not None


@dataclass(frozen=True)
class MappingStats:
    total: int = 0
    mapped: int = 0
    blocked: int = 0
    actions: int = 0
    assertions: int = 0

    @property
    def mapping_rate(self) -> float:
        return self.mapped / self.total if self.total else 0.0


@dataclass
class BatchMappingResult:
    results: list[StepMappingResult] = field(
        default_factory=lambda: list[StepMappingResult]()
    )
    stats: MappingStats = field(default_factory=MappingStats)

    @property
    def suggestions(self) -> list[str]:
        return [
            suggest_improvement(r.source_text)
            for r in self.results
            if not r.mapped
        ]


def map_step(
    text: str, options: StepMappingOptions | None = None
) -> StepMappingResult:
    opts = options or StepMappingOptions()
    parsed = (
        parse_hints(text)
        if opts.use_hints and contains_hints(text)
        else _NO_HINTS
    )
    clean = parsed.clean_text if not parsed.is_empty else text.strip()
    normalized = opts.glossary.normalize(clean) if opts.normalize else clean

    primitive: IRPrimitive | None = None
    pattern_name: str | None = None

    found = find_pattern(normalized, opts.glossary)
    if found is not None:
        pattern, primitive = found
        pattern_name = pattern.name
    else:
        method = opts.glossary.find_module_method(normalized)
        if method is not None:
            primitive = CallModule(
                method.module, method.method, tuple(method.params.values())
            )
            pattern_name = f"glossary:{method.phrase}"

    if primitive is not None and not parsed.is_empty:
        primitive = apply_hints(primitive, parsed)
    elif primitive is None and parsed.has_locator:
        primitive = primitive_from_hints(clean, parsed)
        pattern_name = "hints"
    elif primitive is None:
        module = extract_behavior(parsed).module
        if module is not None:
            primitive = CallModule(*module)
            pattern_name = "hints"

    if primitive is None:
        logger.debug("event=step_unmapped text=%r", text)
        return StepMappingResult(
            primitive=None,
            source_text=text,
            is_assertion=False,
            message=f'Could not map step: "{text}"',
            hint_warnings=parsed.warnings,
        )

    return StepMappingResult(
        primitive=primitive,
        source_text=text,
        is_assertion=is_assertion(primitive),
        pattern_name=pattern_name,
        hint_warnings=parsed.warnings,
    )


def apply_hints(primitive: IRPrimitive, parsed: ParsedHints) -> IRPrimitive:
    """Overwrite inferred locator/timeout/signal/module with hinted ones."""
    behavior = extract_behavior(parsed)
    changes: dict[str, object] = {}

    if isinstance(primitive, LOCATOR_PRIMITIVES):
        merged = merge_with_inferred(parsed, primitive.locator)
        if merged is not None and merged != primitive.locator:
            changes["locator"] = merged

    if behavior.timeout_ms is not None and _has_field(primitive, "timeout_ms"):
        changes["timeout_ms"] = behavior.timeout_ms

    if behavior.signal is not None and isinstance(primitive, (Goto, WaitForURL)):
        changes["signal"] = behavior.signal

    if behavior.module is not None and isinstance(primitive, CallModule):
        changes["module"], changes["method"] = behavior.module

    if not changes:
        return primitive
    return dataclasses.replace(primitive, **changes)  # pyright: ignore[reportArgumentType]


def primitive_from_hints(
    text: str, parsed: ParsedHints
) -> IRPrimitive | None:
    """Infer the action from keywords and pair it with the hinted locator."""
    locator = build_locator_from_hints(parsed)
    if locator is None:
        return None
    timeout = extract_behavior(parsed).timeout_ms
    lowered = text.lower()

    if "click" in lowered or "press" in lowered:
        return Click(locator, timeout)
    if any(k in lowered for k in ("enter", "type", "fill")):
        return Fill(locator, _first_quoted_value(text), timeout)
    if any(k in lowered for k in ("see", "visible", "display")):
        return ExpectVisible(locator, timeout)
    if "check" in lowered or "select" in lowered:
        return Check(locator, timeout)
    return Click(locator, timeout)


def map_steps(
    lines: Iterable[str], options: StepMappingOptions | None = None
) -> BatchMappingResult:
    results = [map_step(line, options) for line in lines]
    batch = BatchMappingResult(results=results, stats=mapping_stats(results))
    logger.info(
        "event=steps_mapped total=%d mapped=%d blocked=%d",
        batch.stats.total,
        batch.stats.mapped,
        batch.stats.blocked,
    )
    return batch


def mapping_stats(results: Iterable[StepMappingResult]) -> MappingStats:
    items = list(results)
    mapped = [r for r in items if r.mapped]
    assertions = sum(1 for r in mapped if r.is_assertion)
    return MappingStats(
        total=len(items),
        mapped=len(mapped),
        blocked=len(items) - len(mapped),
        actions=len(mapped) - assertions,
        assertions=assertions,
    )


def suggest_improvement(text: str) -> str:
    lowered = text.lower()
    if any(k in lowered for k in ("go", "open", "navigate")):
        tip = 'Try: "User navigates to /path" or "User opens /path"'
    elif any(k in lowered for k in ("click", "press", "button")):
        tip = (
            "Try: \"User clicks 'Button Name' button\""
            " or add (role=button, label=\"Button Name\")"
        )
    elif any(k in lowered for k in ("enter", "type", "field")):
        tip = "Try: \"User enters 'value' in 'Field Label' field\""
    elif any(k in lowered for k in ("see", "visible", "display")):
        tip = "Try: \"User should see 'Text'\" or \"'Element' is visible\""
    else:
        tip = (
            "Could not determine intent. Rephrase with a supported"
            " pattern or add a locator hint such as (testid=...)"
        )
    return f'"{text}" - {tip}'


def _first_quoted_value(text: str) -> ValueSpec:
    m = _QUOTED_RE.search(text)
    return parse_value(m.group(1)) if m else ValueSpec.literal("")


def _has_field(primitive: IRPrimitive, name: str) -> bool:
    return any(f.name == name for f in dataclasses.fields(primitive))

