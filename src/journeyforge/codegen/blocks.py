"""Managed blocks: generator-owned regions inside human-owned test files.

A block is delimited by line comments::

    # BEGIN GENERATED id=test-login
    ...generator-owned lines...
    # END GENERATED

Everything outside the markers belongs to the author and is copied
through regeneration byte for byte, except for the blank-line padding
before appended blocks (see ``inject_managed_blocks``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

logger = logging.getLogger(__name__)

BLOCK_START = "# BEGIN GENERATED"
BLOCK_END = "# END GENERATED"

_START_RE = re.compile(r"^\s*#\s*BEGIN GENERATED(?:\s+id=(\S+))?\s*$")
_END_RE = re.compile(r"^\s*#\s*END GENERATED\s*$")


@dataclass(frozen=True)
class ManagedBlock:
    """Block content never carries a trailing newline."""

    content: str
    id: str | None = None
    start_line: int = 0
    end_line: int = 0


@dataclass(frozen=True)
class BlockWarning:
    kind: Literal["nested", "unclosed"]
    line: int
    message: str


@dataclass
class BlockExtraction:
    blocks: list[ManagedBlock] = field(
        default_factory=lambda: list[ManagedBlock]()
    )
    preserved_code: list[str] = field(default_factory=lambda: list[str]())
    warnings: list[BlockWarning] = field(
        default_factory=lambda: list[BlockWarning]()
    )

    @property
    def has_blocks(self) -> bool:
        return bool(self.blocks)


@dataclass
class _Text:
    text: str


@dataclass
class _Block:
    begin: str
    body: str
    end: str
    block: ManagedBlock


type _Segment = _Text | _Block


def _segments(code: str) -> tuple[list[_Segment], list[BlockWarning]]:
    """Split ``code`` into text and usable block segments."""
    lines = code.splitlines(keepends=True)
    segments: list[_Segment] = []
    warnings: list[BlockWarning] = []
    text: list[str] = []
    open_at: int | None = None
    open_id: str | None = None
    body: list[str] = []

    for index, line in enumerate(lines):
        number = index + 1
        start = _START_RE.match(line.rstrip("\r\n"))
        if start is not None:
            if open_at is not None:
                warnings.append(
                    BlockWarning(
                        "nested",
                        number,
                        f"Nested BEGIN GENERATED at line {number}"
                        f" inside block opened at line {open_at}",
                    )
                )
                body.append(line)
                continue
            if text:
                segments.append(_Text("".join(text)))
                text = []
            open_at, open_id, body = number, start.group(1), [line]
            continue

        if open_at is not None and _END_RE.match(line.rstrip("\r\n")):
            begin, *inner = body
            content = "".join(inner)
            if content.endswith("\n"):
                content = content[:-1]
                if content.endswith("\r"):
                    content = content[:-1]
            segments.append(
                _Block(
                    begin=begin,
                    body="".join(inner),
                    end=line,
                    block=ManagedBlock(
                        content=content,
                        id=open_id,
                        start_line=open_at,
                        end_line=number,
                    ),
                )
            )
            open_at, open_id, body = None, None, []
            continue

        if open_at is not None:
            body.append(line)
        else:
            text.append(line)

    if open_at is not None:
        warnings.append(
            BlockWarning(
                "unclosed",
                open_at,
                f"Unclosed BEGIN GENERATED at line {open_at}",
            )
        )
        # An unterminated block is not usable; its lines stay author-owned.
        text.extend(body)
    if text or not segments:
        segments.append(_Text("".join(text)))
    return segments, warnings


def extract_managed_blocks(code: str) -> BlockExtraction:
    segments, warnings = _segments(code)
    for warning in warnings:
        logger.warning(
            "event=managed_block_%s line=%d", warning.kind, warning.line
        )
    return BlockExtraction(
        blocks=[s.block for s in segments if isinstance(s, _Block)],
        preserved_code=[s.text for s in segments if isinstance(s, _Text)],
        warnings=warnings,
    )


def render_block(block: ManagedBlock) -> str:
    begin = f"{BLOCK_START} id={block.id}" if block.id else BLOCK_START
    return f"{begin}\n{block.content}\n{BLOCK_END}\n"


def inject_managed_blocks(
    existing_code: str,
    new_blocks: list[ManagedBlock],
    preserve_order: bool = True,
) -> str:
    """Replace blocks by id and append blocks with no existing match.

    With ``preserve_order`` a replaced block keeps its position in the
    file; otherwise replaced blocks move to the end in ``new_blocks``
    order. Anonymous blocks are never replaced.

    Appended blocks are set off from author code by one blank line. That
    padding is the only change ever made to author text: trailing text
    gains the line break and blank line it lacks, at most ``"\\n\\n"``.
    """
    by_id = {b.id: b for b in new_blocks if b.id}
    segments, _ = _segments(existing_code)
    out: list[str] = []
    placed: set[str] = set()

    for segment in segments:
        if isinstance(segment, _Text):
            out.append(segment.text)
            continue
        block_id = segment.block.id
        if block_id is not None and block_id in by_id:
            if not preserve_order:
                continue
            out.append(segment.begin)
            out.append(by_id[block_id].content + "\n")
            out.append(segment.end)
            placed.add(block_id)
        else:
            out.append(segment.begin + segment.body + segment.end)

    pending = [
        b for b in new_blocks if b.id is None or b.id not in placed
    ]
    result = "".join(out)
    if pending:
        if result and not result.endswith("\n"):
            result += "\n"
        if result.strip() and not result.endswith("\n\n"):
            result += "\n"
        result += "\n".join(render_block(b) for b in pending)
    logger.debug(
        "event=blocks_injected replaced=%d appended=%d",
        len(placed),
        len(pending),
    )
    return result
