"""Inline machine hints: ``(role=button, label="Save")`` annotations.

Hints are authored next to step text and always take precedence over
whatever the pattern matcher infers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from journeyforge.constants import LocatorStrategy
from journeyforge.ir.types import LocatorOptions, LocatorSpec

HINT_TYPES: frozenset[str] = frozenset({
    "role",
    "testid",
    "label",
    "text",
    "exact",
    "level",
    "signal",
    "module",
    "wait",
    "timeout",
})

LOCATOR_HINT_TYPES: frozenset[str] = frozenset(
    {"role", "testid", "label", "text"}
)

VALID_ROLES: frozenset[str] = frozenset({
    "alert", "alertdialog", "application", "article", "banner",
    "button", "cell", "checkbox", "columnheader", "combobox",
    "complementary", "contentinfo", "definition", "dialog",
    "directory", "document", "feed", "figure", "form", "grid",
    "gridcell", "group", "heading", "img", "link", "list",
    "listbox", "listitem", "log", "main", "marquee", "math",
    "menu", "menubar", "menuitem", "menuitemcheckbox",
    "menuitemradio", "navigation", "none", "note", "option",
    "presentation", "progressbar", "radio", "radiogroup", "region",
    "row", "rowgroup", "rowheader", "scrollbar", "search",
    "searchbox", "separator", "slider", "spinbutton", "status",
    "switch", "tab", "table", "tablist", "tabpanel", "term",
    "textbox", "timer", "toolbar", "tooltip", "tree", "treegrid",
    "treeitem",
})

# A parenthesised group whose content looks like key=value pairs.
_GROUP_RE = re.compile(r"\s*\(\s*([a-zA-Z]+\s*=[^()]*)\)")
_PAIR_RE = re.compile(
    r"""([a-zA-Z]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^,\s)]+))"""
)


@dataclass(frozen=True)
class Hint:
    type: str
    value: str
    raw: str


@dataclass(frozen=True)
class ParsedHints:
    hints: tuple[Hint, ...]
    clean_text: str
    original_text: str
    warnings: tuple[str, ...] = ()

    def get(self, hint_type: str) -> str | None:
        """Last value given for ``hint_type`` (later hints override)."""
        value: str | None = None
        for hint in self.hints:
            if hint.type == hint_type:
                value = hint.value
        return value

    @property
    def has_locator(self) -> bool:
        return any(h.type in LOCATOR_HINT_TYPES for h in self.hints)

    @property
    def is_empty(self) -> bool:
        return not self.hints


@dataclass
class BehaviorHints:
    timeout_ms: int | None = None
    signal: str | None = None
    wait: str | None = None
    module: tuple[str, str] | None = None
    extras: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )


def contains_hints(text: str) -> bool:
    return _GROUP_RE.search(text) is not None


def parse_hints(text: str) -> ParsedHints:
    """Extract hints from step text and return the text without them.

    Unknown keys and invalid ARIA roles produce warnings; an invalid
    role is still kept so the author's intent reaches the output.
    """
    hints: list[Hint] = []
    warnings: list[str] = []

    for group in _GROUP_RE.finditer(text):
        for pair in _PAIR_RE.finditer(group.group(1)):
            key = pair.group(1).lower()
            value = next(
                (g for g in pair.groups()[1:] if g is not None), ""
            )
            if not value:
                warnings.append(f"Empty value for hint: {key}")
                continue
            if key not in HINT_TYPES:
                warnings.append(f"Unknown hint type: {key}")
                continue
            if key == "role" and value.lower() not in VALID_ROLES:
                warnings.append(f"Invalid ARIA role: {value}")
            hints.append(Hint(type=key, value=value, raw=pair.group(0)))

    return ParsedHints(
        hints=tuple(hints),
        clean_text=remove_hints(text),
        original_text=text,
        warnings=tuple(warnings),
    )


def remove_hints(text: str) -> str:
    stripped = _GROUP_RE.sub("", text)
    return re.sub(r"\s{2,}", " ", stripped).strip()


def parse_module_hint(value: str) -> tuple[str, str] | None:
    """``"auth.login"`` -> ``("auth", "login")``; anything else -> None."""
    parts = value.split(".")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def validate_hints(parsed: ParsedHints) -> list[str]:
    """Return blocking problems with an otherwise parsed hint set."""
    errors: list[str] = []
    locator_types = {
        h.type for h in parsed.hints if h.type in LOCATOR_HINT_TYPES
    }
    # role may carry one of label/text as its accessible name
    if "role" in locator_types:
        others = locator_types - {"role"}
        conflict = "testid" in others or len(others) > 1
    else:
        conflict = len(locator_types) > 1
    if conflict:
        errors.append("Multiple conflicting locator hints specified")

    level = parsed.get("level")
    if level is not None:
        if (parsed.get("role") or "").lower() != "heading":
            errors.append("level hint only applies to role=heading")
        elif not level.isdigit() or not 1 <= int(level) <= 6:
            errors.append("level hint must be between 1 and 6")

    module = parsed.get("module")
    if module is not None and parse_module_hint(module) is None:
        errors.append(
            "module hint must be in format: moduleName.methodName"
        )

    timeout = parsed.get("timeout")
    if timeout is not None and not timeout.isdigit():
        errors.append("timeout hint must be a number of milliseconds")

    exact = parsed.get("exact")
    if exact is not None and exact.lower() not in ("true", "false"):
        errors.append("exact hint must be true or false")
    return errors


def build_locator_from_hints(parsed: ParsedHints) -> LocatorSpec | None:
    """Priority: testid → role (label as accessible name) → label → text."""
    exact = _exact(parsed)

    if testid := parsed.get("testid"):
        return LocatorSpec(LocatorStrategy.TESTID, testid)

    if role := parsed.get("role"):
        level = parsed.get("level")
        name = parsed.get("label") or parsed.get("text")
        opts = LocatorOptions(
            name=name,
            exact=exact,
            level=int(level) if level and level.isdigit() else None,
        )
        has_opts = any(
            v is not None for v in (opts.name, opts.exact, opts.level)
        )
        return LocatorSpec(
            LocatorStrategy.ROLE, role.lower(), opts if has_opts else None
        )

    if label := parsed.get("label"):
        return LocatorSpec(
            LocatorStrategy.LABEL,
            label,
            LocatorOptions(exact=exact) if exact is not None else None,
        )

    if text := parsed.get("text"):
        return LocatorSpec(
            LocatorStrategy.TEXT,
            text,
            LocatorOptions(exact=exact) if exact is not None else None,
        )
    return None


def extract_behavior(parsed: ParsedHints) -> BehaviorHints:
    behavior = BehaviorHints()
    timeout = parsed.get("timeout")
    if timeout is not None and timeout.isdigit():
        behavior.timeout_ms = int(timeout)
    behavior.signal = parsed.get("signal")
    behavior.wait = parsed.get("wait")
    module = parsed.get("module")
    if module is not None:
        behavior.module = parse_module_hint(module)
    return behavior


def merge_with_inferred(
    parsed: ParsedHints, inferred: LocatorSpec | None
) -> LocatorSpec | None:
    """Hinted locator wins; a lone ``exact`` hint tightens the inferred one."""
    hinted = build_locator_from_hints(parsed)
    if hinted is not None:
        return hinted
    if inferred is not None and _exact(parsed):
        return inferred.with_exact()
    return inferred


def _exact(parsed: ParsedHints) -> bool | None:
    value = parsed.get("exact")
    if value is None:
        return None
    return value.lower() == "true"
