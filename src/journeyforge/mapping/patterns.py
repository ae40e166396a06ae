"""Ordered step-text patterns.

Patterns are grouped by category and evaluated in this exact order:
auth → toast → navigation → click → fill → select → check →
visibility → url → wait. The first regex that matches anywhere in the
list wins; there is no backtracking into later patterns.

Each pattern carries a couple of example sentences. They document the
phrasing it accepts and double as fixtures for the pattern tests.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from journeyforge.constants import LocatorStrategy, PrimitiveType
from journeyforge.ir.types import (
    CallModule,
    Check,
    Click,
    ExpectToast,
    ExpectURL,
    ExpectVisible,
    Fill,
    Goto,
    IRPrimitive,
    LocatorOptions,
    LocatorSpec,
    Select,
    ToastType,
    Uncheck,
    WaitForURL,
    parse_value,
)
from journeyforge.mapping.glossary import DEFAULT_GLOSSARY, Glossary

type PatternCategory = Literal[
    "auth",
    "toast",
    "navigation",
    "click",
    "fill",
    "select",
    "check",
    "visibility",
    "url",
    "wait",
]

CATEGORY_ORDER: tuple[PatternCategory, ...] = (
    "auth",
    "toast",
    "navigation",
    "click",
    "fill",
    "select",
    "check",
    "visibility",
    "url",
    "wait",
)

type Builder = Callable[[re.Match[str], Glossary], IRPrimitive]


@dataclass(frozen=True)
class StepPattern:
    name: str
    category: PatternCategory
    regex: re.Pattern[str]
    primitive_type: PrimitiveType
    build: Builder
    examples: tuple[str, ...] = ()


# ── Builder helpers ──────────────────────────────────────

_USER = r"^(?:the\s+)?(?:user\s+)?"
_Q = r"""["']([^"']+)["']"""
_ROLE_WORDS: dict[str, str] = {
    "button": "button",
    "link": "link",
    "heading": "heading",
    "dialog": "dialog",
    "modal": "dialog",
    "checkbox": "checkbox",
    "field": "textbox",
    "tab": "tab",
}


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _kebab(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _role(role: str, name: str) -> LocatorSpec:
    return LocatorSpec(
        LocatorStrategy.ROLE, role, LocatorOptions(name=name)
    )


def _text(value: str) -> LocatorSpec:
    return LocatorSpec(LocatorStrategy.TEXT, value)


def _label(value: str, glossary: Glossary) -> LocatorSpec:
    aliased = glossary.locator_for_label(value)
    if aliased is not None:
        return aliased
    return LocatorSpec(LocatorStrategy.LABEL, value.strip())


def _toast_type(raw: str | None) -> ToastType:
    lowered = (raw or "info").lower()
    if lowered == "success":
        return "success"
    if lowered == "error":
        return "error"
    if lowered == "warning":
        return "warning"
    return "info"


def _url_fragment(raw: str) -> str:
    if raw.startswith(("/", "http://", "https://")):
        return raw
    return "/" + _kebab(raw)


# ── Pattern table ────────────────────────────────────────

PATTERNS: tuple[StepPattern, ...] = (
    # auth
    StepPattern(
        name="login-as-role",
        category="auth",
        regex=_compile(
            _USER + r"(?:logs?\s*in|login)\s+as\s+(?:an?\s+)?"
            r"""["']?([\w][\w\s-]*?)["']?(?:\s+user)?$"""
        ),
        primitive_type=PrimitiveType.CALL_MODULE,
        build=lambda m, g: CallModule(
            "auth", "login_as", (m.group(1).strip().lower(),)
        ),
        examples=("User logs in as admin", "User login as 'Editor'"),
    ),
    StepPattern(
        name="user-login",
        category="auth",
        regex=_compile(
            _USER + r"(?:logs?\s*in|login(?:\s+is\s+performed)?"
            r"|authenticates?)$"
        ),
        primitive_type=PrimitiveType.CALL_MODULE,
        build=lambda m, g: CallModule("auth", "login"),
        examples=("User logs in", "User signs in", "login is performed"),
    ),
    StepPattern(
        name="user-logout",
        category="auth",
        regex=_compile(_USER + r"(?:logs?\s*out|logout)$"),
        primitive_type=PrimitiveType.CALL_MODULE,
        build=lambda m, g: CallModule("auth", "logout"),
        examples=("User logs out", "User signs out"),
    ),
    # toast
    StepPattern(
        name="typed-toast-with-message",
        category="toast",
        regex=_compile(
            r"^(?:an?\s+)?(success|error|info|warning)\s+toast\s+"
            r"(?:appears\s+|is\s+shown\s+)?(?:with\s+(?:text\s+|message\s+)?)?"
            + _Q + r"(?:\s+(?:appears?|is\s+(?:shown|visible|displayed)))?$"
        ),
        primitive_type=PrimitiveType.EXPECT_TOAST,
        build=lambda m, g: ExpectToast(
            toast_type=_toast_type(m.group(1)), message=m.group(2)
        ),
        examples=(
            "A success toast 'Saved' appears",
            "error toast appears with message 'Invalid email'",
        ),
    ),
    StepPattern(
        name="toast-with-text",
        category="toast",
        regex=_compile(
            r"^(?:an?\s+)?(?:toast|notification)\s+(?:appears\s+)?"
            r"(?:with\s+(?:text\s+|message\s+)?)?" + _Q
            + r"(?:\s+(?:appears?|is\s+(?:shown|visible|displayed)))?$"
        ),
        primitive_type=PrimitiveType.EXPECT_TOAST,
        build=lambda m, g: ExpectToast(message=m.group(1)),
        examples=("A toast with text 'Done' appears",),
    ),
    StepPattern(
        name="toast-appears",
        category="toast",
        regex=_compile(
            r"^(?:an?\s+)?(?:(success|error|info|warning)\s+)?"
            r"(?:toast|notification)\s+(?:appears?|is\s+(?:shown|visible|displayed))$"
        ),
        primitive_type=PrimitiveType.EXPECT_TOAST,
        build=lambda m, g: ExpectToast(toast_type=_toast_type(m.group(1))),
        examples=("A success toast appears", "toast is shown"),
    ),
    StepPattern(
        name="user-sees-toast",
        category="toast",
        regex=_compile(
            _USER + r"(?:should\s+)?sees?\s+(?:an?\s+)?"
            r"(?:(success|error|info|warning)\s+)?(?:toast|notification)"
            r"""(?:\s+(?:with\s+(?:text\s+|message\s+)?)?["']([^"']+)["'])?$"""
        ),
        primitive_type=PrimitiveType.EXPECT_TOAST,
        build=lambda m, g: ExpectToast(
            toast_type=_toast_type(m.group(1)), message=m.group(2)
        ),
        examples=(
            "User should see a success toast",
            "User sees error toast with message 'Failed'",
        ),
    ),
    StepPattern(
        name="status-message",
        category="toast",
        regex=_compile(
            r"^(?:an?\s+|the\s+)?(?:status\s+)?message\s+" + _Q
            + r"\s+(?:appears?|is\s+(?:shown|visible|displayed))$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(_role("status", m.group(1))),
        examples=("A status message 'Profile updated' appears",),
    ),
    # navigation
    StepPattern(
        name="navigate-to-url",
        category="navigation",
        regex=_compile(
            _USER + r"(?:navigates?|go(?:es)?|opens?)\s+(?:to\s+)?"
            r"""(?:the\s+)?["']?(/[^"'\s]*|https?://[^"'\s]+)["']?$"""
        ),
        primitive_type=PrimitiveType.GOTO,
        build=lambda m, g: Goto(m.group(1)),
        examples=("User navigates to /login", "User opens 'https://x.io'"),
    ),
    StepPattern(
        name="navigate-to-page",
        category="navigation",
        regex=_compile(
            _USER + r"(?:navigates?|go(?:es)?|opens?)\s+(?:to\s+)?"
            r"""(?:the\s+)?["']?([a-z][\w\s-]*?)["']?(?:\s+page)?$"""
        ),
        primitive_type=PrimitiveType.GOTO,
        build=lambda m, g: Goto("/" + _kebab(m.group(1))),
        examples=(
            "User navigates to the Account Settings page",
            "User goes to dashboard",
        ),
    ),
    StepPattern(
        name="wait-for-url-change",
        category="navigation",
        regex=_compile(
            r"^(?:the\s+)?url\s+changes?\s+to\s+"
            r"""["']?([^"'\s]+)["']?$"""
        ),
        primitive_type=PrimitiveType.WAIT_FOR_URL,
        build=lambda m, g: WaitForURL(re.escape(m.group(1))),
        examples=("URL changes to /dashboard",),
    ),
    # click
    StepPattern(
        name="click-button-quoted",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?" + _Q + r"\s+button$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_role("button", m.group(1))),
        examples=('User clicks "Submit" button', "press 'Save' btn"),
    ),
    StepPattern(
        name="click-button-named",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?button\s+" + _Q + r"$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_role("button", m.group(1))),
        examples=("User clicks the button 'Continue'",),
    ),
    StepPattern(
        name="click-link-quoted",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?" + _Q + r"\s+link$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_role("link", m.group(1))),
        examples=("User clicks 'Forgot password' link",),
    ),
    StepPattern(
        name="click-menuitem",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?" + _Q
            + r"\s+menu\s*item$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_role("menuitem", m.group(1))),
        examples=("User clicks 'Export' menu item",),
    ),
    StepPattern(
        name="click-tab",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?" + _Q + r"\s+tab$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_role("tab", m.group(1))),
        examples=("User clicks the 'Billing' tab",),
    ),
    StepPattern(
        name="click-element-quoted",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?" + _Q + r"$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_text(m.group(1))),
        examples=("User clicks 'Learn more'",),
    ),
    StepPattern(
        name="click-generic",
        category="click",
        regex=_compile(
            _USER + r"clicks?\s+(?:on\s+)?(?:the\s+)?([\w][\w\s-]*?)\s+"
            r"(?:button|link|icon|menu|tab)$"
        ),
        primitive_type=PrimitiveType.CLICK,
        build=lambda m, g: Click(_text(m.group(1).strip())),
        examples=("User clicks the settings icon", "click Save button"),
    ),
    # fill
    StepPattern(
        name="fill-quoted-into-quoted",
        category="fill",
        regex=_compile(
            _USER + r"(?:enters?|types?|fills?\s+in|fills?|inputs?)\s+"
            r"""["']([^"']*)["']\s+(?:in|into)\s+(?:the\s+)?"""
            + _Q + r"(?:\s+(?:field|input))?$"
        ),
        primitive_type=PrimitiveType.FILL,
        build=lambda m, g: Fill(
            _label(m.group(2), g), parse_value(m.group(1))
        ),
        examples=(
            "User enters 'alice@example.com' in 'Email' field",
            "User types \"secret\" into \"Password\"",
        ),
    ),
    StepPattern(
        name="fill-actor-value",
        category="fill",
        regex=_compile(
            _USER + r"(?:enters?|types?|fills?\s+in|inputs?)\s+"
            r"(\{\{[^}]+\}\})\s+(?:in|into)\s+(?:the\s+)?"
            r"""["']?([^"']+?)["']?(?:\s+(?:field|input))?$"""
        ),
        primitive_type=PrimitiveType.FILL,
        build=lambda m, g: Fill(
            _label(m.group(2), g), parse_value(m.group(1))
        ),
        examples=("User enters {{email}} in the Email field",),
    ),
    StepPattern(
        name="fill-field-with",
        category="fill",
        regex=_compile(
            _USER + r"fills?\s+(?:in\s+)?(?:the\s+)?"
            r"""["']?([^"']+?)["']?\s+(?:field\s+|input\s+)?with\s+"""
            r"""["']([^"']*)["']$"""
        ),
        primitive_type=PrimitiveType.FILL,
        build=lambda m, g: Fill(
            _label(m.group(1), g), parse_value(m.group(2))
        ),
        examples=("User fills the 'Name' field with 'Ada'",),
    ),
    StepPattern(
        name="fill-quoted-into-named",
        category="fill",
        regex=_compile(
            _USER + r"(?:enters?|types?|inputs?)\s+"
            r"""["']([^"']*)["']\s+(?:in|into)\s+(?:the\s+)?"""
            r"([\w][\w\s-]*?)\s+(?:field|input)$"
        ),
        primitive_type=PrimitiveType.FILL,
        build=lambda m, g: Fill(
            _label(m.group(2), g), parse_value(m.group(1))
        ),
        examples=("User types '$password' into the password field",),
    ),
    StepPattern(
        name="set-value",
        category="fill",
        regex=_compile(
            _USER + r"sets?\s+(?:the\s+)?"
            r"""["']?([^"']+?)["']?\s+(?:field\s+)?to\s+["']([^"']*)["']$"""
        ),
        primitive_type=PrimitiveType.FILL,
        build=lambda m, g: Fill(
            _label(m.group(1), g), parse_value(m.group(2))
        ),
        examples=("User sets 'Quantity' to '3'",),
    ),
    # select
    StepPattern(
        name="select-from-dropdown",
        category="select",
        regex=_compile(
            _USER + r"(?:selects?|chooses?)\s+" + _Q
            + r"\s+(?:from|in)\s+(?:the\s+)?dropdown$"
        ),
        primitive_type=PrimitiveType.SELECT,
        build=lambda m, g: Select(
            LocatorSpec(LocatorStrategy.ROLE, "combobox"), m.group(1)
        ),
        examples=("User selects 'Canada' from the dropdown",),
    ),
    StepPattern(
        name="select-from-quoted",
        category="select",
        regex=_compile(
            _USER + r"(?:selects?|chooses?)\s+" + _Q
            + r"\s+(?:from|in)\s+(?:the\s+)?" + _Q
            + r"(?:\s+(?:dropdown|select|menu|list))?$"
        ),
        primitive_type=PrimitiveType.SELECT,
        build=lambda m, g: Select(_label(m.group(2), g), m.group(1)),
        examples=("User selects 'Canada' from 'Country' dropdown",),
    ),
    StepPattern(
        name="select-from-named",
        category="select",
        regex=_compile(
            _USER + r"(?:selects?|chooses?)\s+" + _Q
            + r"\s+(?:from|in)\s+(?:the\s+)?([\w][\w\s-]*?)\s+"
            r"(?:dropdown|select|menu|list)$"
        ),
        primitive_type=PrimitiveType.SELECT,
        build=lambda m, g: Select(_label(m.group(2), g), m.group(1)),
        examples=("User chooses 'Monthly' in the billing period dropdown",),
    ),
    # check
    StepPattern(
        name="uncheck-quoted",
        category="check",
        regex=_compile(
            _USER + r"(?:unchecks?|unticks?|disables?)\s+(?:the\s+)?"
            + _Q + r"(?:\s+(?:checkbox|option|box))?$"
        ),
        primitive_type=PrimitiveType.UNCHECK,
        build=lambda m, g: Uncheck(_label(m.group(1), g)),
        examples=("User unchecks 'Subscribe' checkbox",),
    ),
    StepPattern(
        name="check-quoted",
        category="check",
        regex=_compile(
            _USER + r"(?:checks?|ticks?|enables?)\s+(?:the\s+)?"
            + _Q + r"(?:\s+(?:checkbox|option|box))?$"
        ),
        primitive_type=PrimitiveType.CHECK,
        build=lambda m, g: Check(_label(m.group(1), g)),
        examples=("User checks 'I agree' checkbox", "tick 'Remember me'"),
    ),
    StepPattern(
        name="uncheck-named",
        category="check",
        regex=_compile(
            _USER + r"(?:unchecks?|unticks?)\s+(?:the\s+)?"
            r"([\w][\w\s-]*?)\s+checkbox$"
        ),
        primitive_type=PrimitiveType.UNCHECK,
        build=lambda m, g: Uncheck(_label(m.group(1), g)),
        examples=("User unchecks the newsletter checkbox",),
    ),
    StepPattern(
        name="check-named",
        category="check",
        regex=_compile(
            _USER + r"(?:checks?|ticks?)\s+(?:the\s+)?"
            r"([\w][\w\s-]*?)\s+checkbox$"
        ),
        primitive_type=PrimitiveType.CHECK,
        build=lambda m, g: Check(_label(m.group(1), g)),
        examples=("User checks the terms checkbox",),
    ),
    # visibility
    StepPattern(
        name="should-see-heading",
        category="visibility",
        regex=_compile(
            _USER + r"(?:should\s+)?sees?\s+(?:the\s+|a\s+)?heading\s+"
            + _Q + r"$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(_role("heading", m.group(1))),
        examples=("User should see heading 'Welcome back'",),
    ),
    StepPattern(
        name="should-see-element",
        category="visibility",
        regex=_compile(
            _USER + r"(?:should\s+)?sees?\s+(?:the\s+|a\s+)?" + _Q
            + r"\s+(button|link|heading|dialog|modal|checkbox|field|tab)$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(
            _role(_ROLE_WORDS[m.group(2).lower()], m.group(1))
        ),
        examples=("User sees the 'Checkout' button",),
    ),
    StepPattern(
        name="should-see-text",
        category="visibility",
        regex=_compile(
            _USER + r"(?:should\s+)?sees?\s+(?:the\s+)?(?:text\s+|message\s+)?"
            + _Q + r"$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(_text(m.group(1))),
        examples=("User should see 'Order confirmed'", "user sees text 'Hi'"),
    ),
    StepPattern(
        name="quoted-is-visible",
        category="visibility",
        regex=_compile(
            r"^(?:the\s+)?" + _Q
            + r"\s+(?:is|should\s+be|are)\s+visible$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(_text(m.group(1))),
        examples=("'Order summary' is visible", "'Total' is displayed"),
    ),
    StepPattern(
        name="verify-visible",
        category="visibility",
        regex=_compile(
            r"^(?:verify|confirm|ensure)\s+(?:that\s+)?(?:the\s+)?" + _Q
            + r"\s+(?:is\s+)?visible$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(_text(m.group(1))),
        examples=("Verify that 'Invoice #12' is visible",),
    ),
    StepPattern(
        name="page-displayed",
        category="visibility",
        regex=_compile(
            r"^(?:the\s+)?([\w][\w\s-]*?)\s+page\s+(?:is\s+)?"
            r"(?:visible|loads|loaded)$"
        ),
        primitive_type=PrimitiveType.EXPECT_VISIBLE,
        build=lambda m, g: ExpectVisible(
            _role("heading", m.group(1).strip())
        ),
        examples=("The Dashboard page is displayed", "Profile page loads"),
    ),
    # url
    StepPattern(
        name="url-contains",
        category="url",
        regex=_compile(
            r"^(?:the\s+)?url\s+(?:should\s+)?contains?\s+"
            r"""["']?([^"'\s]+)["']?$"""
        ),
        primitive_type=PrimitiveType.EXPECT_URL,
        build=lambda m, g: ExpectURL(re.escape(m.group(1))),
        examples=("URL contains /orders",),
    ),
    StepPattern(
        name="url-is",
        category="url",
        regex=_compile(
            r"^(?:the\s+)?url\s+(?:should\s+be|is|equals?)\s+"
            r"""["']?([^"'\s]+)["']?$"""
        ),
        primitive_type=PrimitiveType.EXPECT_URL,
        build=lambda m, g: ExpectURL(re.escape(m.group(1)) + "$"),
        examples=("The URL should be '/home'",),
    ),
    StepPattern(
        name="redirected-to",
        category="url",
        regex=_compile(
            _USER + r"(?:is\s+|should\s+be\s+|gets?\s+)?redirected\s+to\s+"
            r"""(?:the\s+)?["']?([^"']+?)["']?(?:\s+page)?$"""
        ),
        primitive_type=PrimitiveType.EXPECT_URL,
        build=lambda m, g: ExpectURL(
            re.escape(_url_fragment(m.group(1).strip()))
        ),
        examples=("User is redirected to /dashboard",),
    ),
    StepPattern(
        name="on-page",
        category="url",
        regex=_compile(
            _USER + r"(?:is|should\s+be)\s+on\s+(?:the\s+)?"
            r"""["']?([^"']+?)["']?\s+page$"""
        ),
        primitive_type=PrimitiveType.EXPECT_URL,
        build=lambda m, g: ExpectURL(
            re.escape(_url_fragment(m.group(1).strip()))
        ),
        examples=("User should be on the order history page",),
    ),
    # wait
    StepPattern(
        name="wait-for-navigation",
        category="wait",
        regex=_compile(
            _USER + r"waits?\s+for\s+(?:navigation\s+to|the\s+url|url)\s+"
            r"""["']?([^"'\s]+)["']?$"""
        ),
        primitive_type=PrimitiveType.WAIT_FOR_URL,
        build=lambda m, g: WaitForURL(re.escape(m.group(1))),
        examples=("User waits for navigation to /checkout",),
    ),
)


def patterns_in_order() -> list[StepPattern]:
    """Patterns sorted by category order, stable within a category."""
    rank = {c: i for i, c in enumerate(CATEGORY_ORDER)}
    return sorted(PATTERNS, key=lambda p: rank[p.category])


def find_pattern(
    text: str, glossary: Glossary = DEFAULT_GLOSSARY
) -> tuple[StepPattern, IRPrimitive] | None:
    """Return the first matching pattern and its primitive, if any."""
    candidate = text.strip().rstrip(".")
    for pattern in PATTERNS:
        m = pattern.regex.match(candidate)
        if m is not None:
            return pattern, pattern.build(m, glossary)
    return None


def match_pattern(
    text: str, glossary: Glossary = DEFAULT_GLOSSARY
) -> IRPrimitive | None:
    found = find_pattern(text, glossary)
    return found[1] if found is not None else None
