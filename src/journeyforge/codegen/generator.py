"""Render an ``IRJourney`` to a pytest-playwright test module."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import assert_never

from journeyforge.codegen.blocks import (
    ManagedBlock,
    inject_managed_blocks,
    render_block,
)
from journeyforge.constants import (
    GENERATED_MODULES_PACKAGE,
    GenerationStrategy,
    LocatorStrategy,
    ValueKind,
)
from journeyforge.ir.types import (
    Blocked,
    CallModule,
    Check,
    Click,
    ExpectToast,
    ExpectURL,
    ExpectVisible,
    Fill,
    Goto,
    IRJourney,
    IRPrimitive,
    IRStep,
    LocatorSpec,
    Select,
    Uncheck,
    ValueSpec,
    WaitForURL,
)

logger = logging.getLogger(__name__)

INDENT = "    "
IMPORTS_BLOCK_ID = "imports"

_NON_IDENT = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class GeneratedTest:
    journey_id: str
    filename: str
    code: str
    imports: list[str] = field(default_factory=lambda: list[str]())
    strategy: GenerationStrategy = GenerationStrategy.FULL


def function_name_for(journey_id: str) -> str:
    return "test_" + _NON_IDENT.sub("_", journey_id.lower()).strip("_")


def filename_for(journey_id: str) -> str:
    return f"{function_name_for(journey_id)}.py"


def block_id_for(journey_id: str) -> str:
    return f"test-{journey_id}"


def py_str(value: str) -> str:
    """Double-quoted Python string literal."""
    return json.dumps(value)


# ── Primitive rendering ──────────────────────────────────


def render_locator(locator: LocatorSpec) -> str:
    opts = locator.options
    kwargs: list[str] = []
    if opts is not None:
        if opts.name is not None:
            kwargs.append(f"name={py_str(opts.name)}")
        if opts.exact is not None:
            kwargs.append(f"exact={opts.exact}")
        if opts.level is not None:
            kwargs.append(f"level={opts.level}")
    extra = "".join(f", {k}" for k in kwargs)

    match locator.strategy:
        case LocatorStrategy.TESTID:
            return f"page.get_by_test_id({py_str(locator.value)})"
        case LocatorStrategy.ROLE:
            return f"page.get_by_role({py_str(locator.value)}{extra})"
        case LocatorStrategy.LABEL:
            exact = _exact_kw(locator)
            return f"page.get_by_label({py_str(locator.value)}{exact})"
        case LocatorStrategy.TEXT:
            exact = _exact_kw(locator)
            return f"page.get_by_text({py_str(locator.value)}{exact})"
        case LocatorStrategy.CSS:
            return f"page.locator({py_str(locator.value)})"
        case LocatorStrategy.XPATH:
            return f"page.locator({py_str('xpath=' + locator.value)})"
        case _:
            assert_never(locator.strategy)


def _exact_kw(locator: LocatorSpec) -> str:
    if locator.options is not None and locator.options.exact is not None:
        return f", exact={locator.options.exact}"
    return ""


def render_value(value: ValueSpec) -> str:
    match value.kind:
        case ValueKind.LITERAL:
            return py_str(value.value)
        case ValueKind.ACTOR:
            return f"actor[{py_str(value.value)}]"
        case ValueKind.TEST_DATA:
            return f"test_data[{py_str(value.value)}]"
        case ValueKind.GENERATED:
            return f"str({value.value})"
        case _:
            assert_never(value.kind)


def _timeout(timeout_ms: int | None, *, first: bool = False) -> str:
    if timeout_ms is None:
        return ""
    return f"timeout={timeout_ms}" if first else f", timeout={timeout_ms}"


def render_primitive(primitive: IRPrimitive) -> list[str]:
    """Lines of code (unindented) for one primitive."""
    match primitive:
        case Click(locator=loc, timeout_ms=t):
            return [f"{render_locator(loc)}.click({_timeout(t, first=True)})"]
        case Fill(locator=loc, value=value, timeout_ms=t):
            return [
                f"{render_locator(loc)}.fill({render_value(value)}{_timeout(t)})"
            ]
        case Select(locator=loc, option=option, timeout_ms=t):
            return [
                f"{render_locator(loc)}.select_option({py_str(option)}{_timeout(t)})"
            ]
        case Check(locator=loc, timeout_ms=t):
            return [f"{render_locator(loc)}.check({_timeout(t, first=True)})"]
        case Uncheck(locator=loc, timeout_ms=t):
            return [f"{render_locator(loc)}.uncheck({_timeout(t, first=True)})"]
        case Goto(url=url, signal=signal):
            lines = [f"page.goto({py_str(url)})"]
            if signal:
                lines.append(
                    f"expect(page.get_by_test_id({py_str(signal)})).to_be_attached()"
                )
            return lines
        case WaitForURL(pattern=pattern, timeout_ms=t, signal=signal):
            lines = [
                f"page.wait_for_url(re.compile({py_str(pattern)}){_timeout(t)})"
            ]
            if signal:
                lines.append(
                    f"expect(page.get_by_test_id({py_str(signal)})).to_be_attached()"
                )
            return lines
        case ExpectVisible(locator=loc, timeout_ms=t):
            return [
                f"expect({render_locator(loc)}).to_be_visible({_timeout(t, first=True)})"
            ]
        case ExpectToast(message=message, timeout_ms=t):
            target = (
                f"page.get_by_text({py_str(message)})"
                if message
                else 'page.get_by_role("alert")'
            )
            return [f"expect({target}).to_be_visible({_timeout(t, first=True)})"]
        case ExpectURL(pattern=pattern, timeout_ms=t):
            return [
                f"expect(page).to_have_url(re.compile({py_str(pattern)}){_timeout(t)})"
            ]
        case CallModule(module=module, method=method, args=args):
            rendered = "".join(f", {py_str(a)}" for a in args)
            return [f"{module}.{method}(page{rendered})"]
        case Blocked(reason=reason, source_text=source):
            return [
                f"# BLOCKED: {_one_line(reason)}",
                f"# Source: {_one_line(source)}",
                f"pytest.fail({py_str('BLOCKED: ' + reason)})",
            ]
        case _:
            assert_never(primitive)


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _doc_safe(text: str) -> str:
    """One line that can sit inside a triple-quoted docstring."""
    return _one_line(text).replace("\\", "/").replace('"', "'")


# ── Module assembly ──────────────────────────────────────


def collect_imports(
    ir: IRJourney, modules_package: str = GENERATED_MODULES_PACKAGE
) -> list[str]:
    imports = [
        "import re",
        "",
        "import pytest",
        "from playwright.sync_api import Page, expect",
    ]
    modules = sorted(
        {p.module for p in ir.all_primitives() if isinstance(p, CallModule)}
    )
    if modules:
        imports.append("")
        imports.extend(
            f"from {modules_package} import {m}" for m in modules
        )
    return imports


def _fixtures(ir: IRJourney) -> list[str]:
    kinds = {
        p.value.kind for p in ir.all_primitives() if isinstance(p, Fill)
    }
    params = ["page: Page"]
    if ValueKind.ACTOR in kinds:
        params.append("actor: dict[str, str]")
    if ValueKind.TEST_DATA in kinds:
        params.append("test_data: dict[str, str]")
    return params


def _render_step(step: IRStep) -> list[str]:
    lines = [f"# {step.id}: {_one_line(step.description)}"]
    lines.extend(f"# {_one_line(note)}" for note in step.notes)
    for primitive in step.primitives():
        lines.extend(render_primitive(primitive))
    return lines


def render_test_function(
    ir: IRJourney, structure_comments: list[str] | None = None
) -> str:
    lines: list[str] = []
    if ir.tier:
        lines.append(f"@pytest.mark.{_NON_IDENT.sub('_', ir.tier.lower())}")
    lines.append(
        f"def {function_name_for(ir.id)}({', '.join(_fixtures(ir))}) -> None:"
    )
    lines.append(f'{INDENT}"""{_doc_safe(ir.title)}"""')
    body: list[str] = []
    for comment in structure_comments or []:
        body.append(f"# {comment}")
    for index, step in enumerate(ir.steps):
        if index or body:
            body.append("")
        body.extend(_render_step(step))
    if not ir.steps:
        body.append('pytest.skip("journey has no steps")')
    lines.extend(f"{INDENT}{line}" if line else "" for line in body)
    return "\n".join(lines)


def _header(ir: IRJourney) -> str:
    title = _doc_safe(ir.title)
    return (
        f'"""{title}\n\n'
        f"Journey {ir.id} (tier: {ir.tier}). Code between the GENERATED\n"
        f"markers is regenerated; edit outside them.\n"
        f'"""\n\n'
    )


def generate_test(
    ir: IRJourney,
    strategy: GenerationStrategy = GenerationStrategy.FULL,
    existing_code: str | None = None,
    *,
    modules_package: str = GENERATED_MODULES_PACKAGE,
    structure_comments: list[str] | None = None,
) -> GeneratedTest:
    """Render ``ir``; the blocks strategy merges into ``existing_code``."""
    imports = collect_imports(ir, modules_package)
    blocks = [
        ManagedBlock(content="\n".join(imports), id=IMPORTS_BLOCK_ID),
        ManagedBlock(
            content=render_test_function(ir, structure_comments),
            id=block_id_for(ir.id),
        ),
    ]

    if strategy == GenerationStrategy.BLOCKS and existing_code:
        code = inject_managed_blocks(existing_code, blocks)
    else:
        if strategy == GenerationStrategy.BLOCKS:
            logger.debug(
                "event=blocks_without_existing journey=%s fallback=full",
                ir.id,
            )
        code = "\n\n".join(
            [_header(ir) + render_block(blocks[0]), render_block(blocks[1])]
        )

    logger.info(
        "event=test_generated journey=%s strategy=%s lines=%d",
        ir.id,
        strategy.value,
        code.count("\n"),
    )
    return GeneratedTest(
        journey_id=ir.id,
        filename=filename_for(ir.id),
        code=code,
        imports=[i for i in imports if i],
        strategy=strategy,
    )
