"""Tests for managed block extraction and injection."""

from __future__ import annotations

import logging

import pytest

from journeyforge.codegen.blocks import (
    ManagedBlock,
    extract_managed_blocks,
    inject_managed_blocks,
    render_block,
)

_FILE = """\
# author header
# BEGIN GENERATED id=imports
import re
# END GENERATED

def helper():
    return 1

# BEGIN GENERATED id=test-JRN-1
def test_one():
    pass
# END GENERATED
# trailing author comment
"""


class TestExtract:
    def test_blocks_and_preserved_code(self) -> None:
        """Blocks are split out with ids and line numbers."""
        result = extract_managed_blocks(_FILE)
        assert [b.id for b in result.blocks] == ["imports", "test-JRN-1"]
        assert result.blocks[0].content == "import re"
        assert result.blocks[0].start_line == 2
        assert result.blocks[0].end_line == 4
        assert result.preserved_code[0] == "# author header\n"
        assert result.preserved_code[-1] == "# trailing author comment\n"
        assert result.warnings == []

    def test_no_blocks(self) -> None:
        result = extract_managed_blocks("x = 1\n")
        assert not result.has_blocks
        assert result.preserved_code == ["x = 1\n"]

    def test_nested_begin_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        """A nested BEGIN stays inside the open block and warns."""
        code = (
            "# BEGIN GENERATED id=a\n"
            "# BEGIN GENERATED id=b\n"
            "x = 1\n"
            "# END GENERATED\n"
        )
        with caplog.at_level(logging.WARNING):
            result = extract_managed_blocks(code)
        assert [b.id for b in result.blocks] == ["a"]
        assert result.warnings[0].kind == "nested"
        assert result.warnings[0].line == 2
        assert "event=managed_block_nested" in caplog.text

    def test_unclosed_block_is_author_code(self) -> None:
        """An unterminated block is not usable."""
        code = "a = 1\n# BEGIN GENERATED id=x\nb = 2\n"
        result = extract_managed_blocks(code)
        assert result.blocks == []
        assert result.warnings[0].kind == "unclosed"
        assert "".join(result.preserved_code) == code


class TestInject:
    def test_replace_in_place_preserves_author_code(self) -> None:
        """Replacing a block leaves everything outside it byte for byte."""
        updated = inject_managed_blocks(
            _FILE,
            [ManagedBlock(content="def test_one():\n    assert True", id="test-JRN-1")],
        )
        assert "    assert True\n# END GENERATED\n# trailing author comment\n" in updated
        assert "def helper():\n    return 1\n" in updated
        assert "    pass\n" not in updated
        assert updated.startswith("# author header\n# BEGIN GENERATED id=imports\n")

    def test_unknown_block_is_appended(self) -> None:
        updated = inject_managed_blocks(
            "x = 1\n", [ManagedBlock(content="y = 2", id="new")]
        )
        assert updated == "x = 1\n\n# BEGIN GENERATED id=new\ny = 2\n# END GENERATED\n"

    def test_without_preserve_order_moves_to_end(self) -> None:
        """Replaced blocks move after the author code."""
        updated = inject_managed_blocks(
            _FILE,
            [ManagedBlock(content="import os", id="imports")],
            preserve_order=False,
        )
        assert updated.index("import os") > updated.index("# trailing author comment")
        assert "import re" not in updated

    def test_round_trip_without_changes(self) -> None:
        """Re-injecting the extracted blocks reproduces the file."""
        blocks = extract_managed_blocks(_FILE).blocks
        assert inject_managed_blocks(_FILE, blocks) == _FILE


class TestExtractAfterInject:
    @pytest.mark.parametrize(
        "author",
        [
            "import os\n\ndef helper():\n    return 1",
            "import os\n\ndef helper():\n    return 1\n",
            "import os\n\ndef helper():\n    return 1\n\n",
        ],
    )
    def test_appended_block_round_trips(self, author: str) -> None:
        """Author text only gains the blank line that sets off the block."""
        block = ManagedBlock(content="def test_a(page):\n    pass", id="a")
        extraction = extract_managed_blocks(inject_managed_blocks(author, [block]))
        assert [(b.id, b.content) for b in extraction.blocks] == [("a", block.content)]
        assert extraction.preserved_code == [author.rstrip("\n") + "\n\n"]

    def test_replaced_block_leaves_author_text_untouched(self) -> None:
        block = ManagedBlock(content="import os", id="imports")
        before = extract_managed_blocks(_FILE).preserved_code
        after = extract_managed_blocks(inject_managed_blocks(_FILE, [block]))
        assert after.preserved_code == before
        assert after.blocks[0].content == "import os"


def test_render_anonymous_block() -> None:
    assert render_block(ManagedBlock(content="pass")) == (
        "# BEGIN GENERATED\npass\n# END GENERATED\n"
    )
