"""Synonym glossary: canonical vocabulary, label aliases, module phrases.

A ``Glossary`` is an explicit value passed to the mapper; project
glossaries are YAML files merged over ``DEFAULT_GLOSSARY``.
"""

from __future__ import annotations

import logging
import re
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from journeyforge.constants import LocatorStrategy
from journeyforge.ir.types import LocatorSpec

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"""(['"][^'"]+['"])|(\S+)""")
_TRAILING_PUNCT = ".,;:!?"


class GlossaryEntry(BaseModel):
    canonical: str
    synonyms: list[str] = Field(default_factory=list)


class LabelAlias(BaseModel):
    label: str
    testid: str | None = None
    role: str | None = None
    selector: str | None = None


class ModuleMethodMapping(BaseModel):
    phrase: str
    module: str
    method: str
    params: dict[str, str] = Field(default_factory=dict)


class Glossary(BaseModel):
    """Vocabulary used to normalize step text before pattern matching."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    entries: list[GlossaryEntry] = Field(default_factory=list)
    label_aliases: list[LabelAlias] = Field(default_factory=list)
    module_methods: list[ModuleMethodMapping] = Field(
        default_factory=list
    )

    @cached_property
    def synonym_map(self) -> dict[str, str]:
        """Lowercased synonym (or canonical) -> canonical term."""
        mapping: dict[str, str] = {}
        for entry in self.entries:
            mapping[entry.canonical.lower()] = entry.canonical
            for synonym in entry.synonyms:
                mapping[synonym.lower()] = entry.canonical
        return mapping

    @cached_property
    def max_phrase_words(self) -> int:
        return max(
            (len(k.split()) for k in self.synonym_map), default=1
        )

    def resolve_canonical(self, term: str) -> str:
        return self.synonym_map.get(term.lower(), term)

    def synonyms_of(self, canonical: str) -> list[str]:
        for entry in self.entries:
            if entry.canonical.lower() == canonical.lower():
                return list(entry.synonyms)
        return []

    def normalize(self, text: str) -> str:
        """Lowercase and rewrite synonyms; quoted strings are untouched.

        Multi-word synonyms ("sign in") are matched greedily before
        single words.
        """
        tokens = [m.group(0) for m in _TOKEN_RE.finditer(text)]
        out: list[str] = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token[0] in "'\"":
                out.append(token)
                i += 1
                continue
            replaced = False
            for width in range(
                min(self.max_phrase_words, len(tokens) - i), 0, -1
            ):
                window = tokens[i:i + width]
                if any(t[0] in "'\"" for t in window):
                    continue
                phrase = " ".join(window)
                core = phrase.rstrip(_TRAILING_PUNCT)
                suffix = phrase[len(core):]
                canonical = self.synonym_map.get(core.lower())
                if canonical is not None:
                    out.append(canonical.lower() + suffix)
                    i += width
                    replaced = True
                    break
            if not replaced:
                out.append(token.lower())
                i += 1
        return " ".join(out)

    def find_label_alias(self, label: str) -> LabelAlias | None:
        wanted = label.strip().lower()
        for alias in self.label_aliases:
            if alias.label.lower() == wanted:
                return alias
        return None

    def locator_for_label(self, label: str) -> LocatorSpec | None:
        """Aliased locator for a human label: testid → role → css."""
        alias = self.find_label_alias(label)
        if alias is None:
            return None
        if alias.testid:
            return LocatorSpec(LocatorStrategy.TESTID, alias.testid)
        if alias.role:
            return LocatorSpec(LocatorStrategy.ROLE, alias.role)
        if alias.selector:
            return LocatorSpec(LocatorStrategy.CSS, alias.selector)
        return None

    def find_module_method(self, text: str) -> ModuleMethodMapping | None:
        """Longest phrase contained in ``text`` wins."""
        lowered = text.lower().strip()
        best: ModuleMethodMapping | None = None
        for mapping in self.module_methods:
            phrase = mapping.phrase.lower()
            if phrase in lowered and (
                best is None or len(phrase) > len(best.phrase)
            ):
                best = mapping
        return best

    def merged_with(self, extension: Glossary) -> Glossary:
        """Return a new glossary with ``extension`` layered on top."""
        entries = [e.model_copy(deep=True) for e in self.entries]
        for ext in extension.entries:
            existing = next(
                (
                    e
                    for e in entries
                    if e.canonical.lower() == ext.canonical.lower()
                ),
                None,
            )
            if existing is None:
                entries.append(ext)
            else:
                existing.synonyms = list(
                    dict.fromkeys([*existing.synonyms, *ext.synonyms])
                )

        aliases = {a.label.lower(): a for a in self.label_aliases}
        for alias in extension.label_aliases:
            aliases[alias.label.lower()] = alias

        methods = {m.phrase.lower(): m for m in self.module_methods}
        for method in extension.module_methods:
            methods[method.phrase.lower()] = method

        return Glossary(
            version=max(self.version, extension.version),
            entries=entries,
            label_aliases=list(aliases.values()),
            module_methods=list(methods.values()),
        )


DEFAULT_GLOSSARY = Glossary(
    version=1,
    entries=[
        GlossaryEntry(canonical="click", synonyms=["press", "tap", "hit"]),
        GlossaryEntry(canonical="enter", synonyms=["write"]),
        GlossaryEntry(canonical="navigate", synonyms=["visit", "browse"]),
        GlossaryEntry(canonical="see", synonyms=["observe", "notice"]),
        GlossaryEntry(canonical="visible", synonyms=["displayed", "shown"]),
        GlossaryEntry(canonical="button", synonyms=["btn", "cta"]),
        GlossaryEntry(
            canonical="field",
            synonyms=["textbox", "text field", "text input"],
        ),
        GlossaryEntry(
            canonical="dropdown", synonyms=["combo", "picker"]
        ),
        GlossaryEntry(canonical="checkbox", synonyms=["tickbox"]),
        GlossaryEntry(
            canonical="login",
            synonyms=["log in", "sign in", "signs in", "authenticate"],
        ),
        GlossaryEntry(
            canonical="logout",
            synonyms=["log out", "sign out", "signs out"],
        ),
        GlossaryEntry(canonical="toast", synonyms=["snackbar"]),
        GlossaryEntry(canonical="modal", synonyms=["popup", "lightbox"]),
        GlossaryEntry(
            canonical="user", synonyms=["customer", "visitor", "member"]
        ),
    ],
    label_aliases=[
        LabelAlias(label="search", testid="search-input", role="searchbox"),
    ],
    module_methods=[
        ModuleMethodMapping(phrase="fill form", module="forms",
                            method="fill_form"),
        ModuleMethodMapping(phrase="submit form", module="forms",
                            method="submit_form"),
        ModuleMethodMapping(phrase="wait for signal", module="waits",
                            method="wait_for_signal"),
    ],
)


def normalize_step_text(
    text: str, glossary: Glossary = DEFAULT_GLOSSARY
) -> str:
    return glossary.normalize(text)


def resolve_label_alias(
    label: str, glossary: Glossary = DEFAULT_GLOSSARY
) -> LocatorSpec | None:
    return glossary.locator_for_label(label)


def load_glossary(
    path: Path, *, base: Glossary = DEFAULT_GLOSSARY
) -> Glossary:
    """Load a YAML glossary and merge it over ``base``.

    Raises ``FileNotFoundError`` if the file doesn't exist and
    ``ValueError`` if its content doesn't match the glossary schema.
    """
    if not path.exists():
        msg = f"Glossary not found: {path}"
        raise FileNotFoundError(msg)

    raw: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        msg = f"Glossary {path} must be a mapping"
        raise ValueError(msg)
    try:
        extension = Glossary.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid glossary {path}: {exc}"
        raise ValueError(msg) from exc

    logger.info(
        "event=glossary_loaded path=%s entries=%d aliases=%d methods=%d",
        path,
        len(extension.entries),
        len(extension.label_aliases),
        len(extension.module_methods),
    )
    return base.merged_with(extension)
