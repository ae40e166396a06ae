"""Typed intermediate representation between step text and test code.

Every primitive is a frozen dataclass carrying a ``kind`` class
attribute; ``IRPrimitive`` is the closed union of them. Consumers
dispatch with ``match`` and finish with ``assert_never`` so a new
variant fails type checking everywhere it is not handled.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Literal

from journeyforge.constants import (
    ASSERTION_TYPES,
    LocatorStrategy,
    PrimitiveType,
    ValueKind,
)

# ── Locators ─────────────────────────────────────────────

STABILITY_RANK: dict[LocatorStrategy, int] = {
    LocatorStrategy.TESTID: 5,
    LocatorStrategy.ROLE: 4,
    LocatorStrategy.LABEL: 3,
    LocatorStrategy.TEXT: 3,
    LocatorStrategy.CSS: 2,
    LocatorStrategy.XPATH: 1,
}


@dataclass(frozen=True)
class LocatorOptions:
    name: str | None = None
    exact: bool | None = None
    level: int | None = None


@dataclass(frozen=True)
class LocatorSpec:
    """Strategy + value (+ options) describing how to find an element."""

    strategy: LocatorStrategy
    value: str
    options: LocatorOptions | None = None

    def stability(self) -> int:
        """Higher is more stable: testid > role > label/text > css > xpath."""
        return STABILITY_RANK[self.strategy]

    def with_exact(self) -> LocatorSpec:
        opts = self.options or LocatorOptions()
        return LocatorSpec(
            strategy=self.strategy,
            value=self.value,
            options=LocatorOptions(
                name=opts.name, exact=True, level=opts.level
            ),
        )


# ── Values ───────────────────────────────────────────────

_ACTOR_RE = re.compile(r"^\{\{\s*([\w.-]+)\s*\}\}$")
_TEST_DATA_RE = re.compile(r"^\$(?!\{)(.+)$")
_GENERATED_RE = re.compile(r"^\$\{(.+)\}$")


@dataclass(frozen=True)
class ValueSpec:
    kind: ValueKind
    value: str

    @classmethod
    def literal(cls, value: str) -> ValueSpec:
        return cls(ValueKind.LITERAL, value)


def parse_value(text: str) -> ValueSpec:
    """Parse a step value; first structural match wins.

    ``{{name}}`` is an actor reference, ``$key`` a test-data
    reference, ``${expr}`` a generated expression, anything else
    a literal.
    """
    if m := _ACTOR_RE.match(text):
        return ValueSpec(ValueKind.ACTOR, m.group(1))
    if m := _TEST_DATA_RE.match(text):
        return ValueSpec(ValueKind.TEST_DATA, m.group(1))
    if m := _GENERATED_RE.match(text):
        return ValueSpec(ValueKind.GENERATED, m.group(1))
    return ValueSpec.literal(text)


# ── Primitives ───────────────────────────────────────────

ToastType = Literal["success", "error", "info", "warning"]


@dataclass(frozen=True)
class Click:
    kind: ClassVar[PrimitiveType] = PrimitiveType.CLICK
    locator: LocatorSpec
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Fill:
    kind: ClassVar[PrimitiveType] = PrimitiveType.FILL
    locator: LocatorSpec
    value: ValueSpec
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Select:
    kind: ClassVar[PrimitiveType] = PrimitiveType.SELECT
    locator: LocatorSpec
    option: str
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Check:
    kind: ClassVar[PrimitiveType] = PrimitiveType.CHECK
    locator: LocatorSpec
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Uncheck:
    kind: ClassVar[PrimitiveType] = PrimitiveType.UNCHECK
    locator: LocatorSpec
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Goto:
    kind: ClassVar[PrimitiveType] = PrimitiveType.GOTO
    url: str
    signal: str | None = None


@dataclass(frozen=True)
class WaitForURL:
    kind: ClassVar[PrimitiveType] = PrimitiveType.WAIT_FOR_URL
    pattern: str
    timeout_ms: int | None = None
    signal: str | None = None


@dataclass(frozen=True)
class ExpectVisible:
    kind: ClassVar[PrimitiveType] = PrimitiveType.EXPECT_VISIBLE
    locator: LocatorSpec
    timeout_ms: int | None = None


@dataclass(frozen=True)
class ExpectToast:
    kind: ClassVar[PrimitiveType] = PrimitiveType.EXPECT_TOAST
    toast_type: ToastType = "info"
    message: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True)
class ExpectURL:
    kind: ClassVar[PrimitiveType] = PrimitiveType.EXPECT_URL
    pattern: str
    timeout_ms: int | None = None


@dataclass(frozen=True)
class CallModule:
    kind: ClassVar[PrimitiveType] = PrimitiveType.CALL_MODULE
    module: str
    method: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class Blocked:
    kind: ClassVar[PrimitiveType] = PrimitiveType.BLOCKED
    reason: str
    source_text: str


type IRPrimitive = (
    Click
    | Fill
    | Select
    | Check
    | Uncheck
    | Goto
    | WaitForURL
    | ExpectVisible
    | ExpectToast
    | ExpectURL
    | CallModule
    | Blocked
)

type LocatorPrimitive = (
    Click | Fill | Select | Check | Uncheck | ExpectVisible
)

LOCATOR_PRIMITIVES = (Click, Fill, Select, Check, Uncheck, ExpectVisible)


def is_assertion(primitive: IRPrimitive) -> bool:
    """True iff the primitive belongs to the expect* family."""
    return primitive.kind in ASSERTION_TYPES


def primitive_to_dict(primitive: IRPrimitive) -> dict[str, Any]:
    """JSON-ready form with the discriminant under ``type``."""
    data = asdict(primitive)
    return {"type": primitive.kind.value, **_drop_none(data)}


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _drop_none(v)
            for k, v in value.items()  # pyright: ignore[reportUnknownVariableType]
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [_drop_none(v) for v in value]  # pyright: ignore[reportUnknownVariableType]
    return value


# ── Journey ──────────────────────────────────────────────


@dataclass
class IRStep:
    id: str
    description: str
    actions: list[IRPrimitive] = field(
        default_factory=lambda: list[IRPrimitive]()
    )
    assertions: list[IRPrimitive] = field(
        default_factory=lambda: list[IRPrimitive]()
    )
    notes: list[str] = field(default_factory=lambda: list[str]())

    def primitives(self) -> list[IRPrimitive]:
        return [*self.actions, *self.assertions]

    @property
    def blocked(self) -> list[Blocked]:
        return [p for p in self.actions if isinstance(p, Blocked)]


@dataclass
class IRJourney:
    id: str
    title: str
    tier: str = "regression"
    steps: list[IRStep] = field(default_factory=lambda: list[IRStep]())
    module_dependencies: list[str] = field(
        default_factory=lambda: list[str]()
    )
    tags: list[str] = field(default_factory=lambda: list[str]())

    def all_primitives(self) -> list[IRPrimitive]:
        return [p for step in self.steps for p in step.primitives()]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "tier": self.tier,
            "tags": list(self.tags),
            "moduleDependencies": list(self.module_dependencies),
            "steps": [
                {
                    "id": s.id,
                    "description": s.description,
                    "actions": [primitive_to_dict(p) for p in s.actions],
                    "assertions": [
                        primitive_to_dict(p) for p in s.assertions
                    ],
                    "notes": list(s.notes),
                }
                for s in self.steps
            ],
        }
