from __future__ import annotations

import pytest

from journeyforge.confidence.selectors import (
    analyze_selectors,
    fragility_issues,
    selector_dimension,
)


def test_strategies_are_detected(good_module: str) -> None:
    report = analyze_selectors(good_module)
    assert report.strategy_counts == {"testid": 1, "role": 1, "text": 1}
    assert report.testid_ratio == pytest.approx(1 / 3)
    assert report.accessibility == pytest.approx(1 / 3)
    assert report.fragile_count == 0
    assert [u.line for u in report.selectors] == [6, 7, 8]
    # Text selectors get a low-priority nudge toward roles.
    assert [(r.suggested_strategy, r.priority) for r in report.recommendations] == [
        ("role", "low")
    ]


def test_data_testid_css_counts_as_testid() -> None:
    report = analyze_selectors('page.locator("[data-testid=save]").click()\n')
    assert report.strategy_counts == {"testid": 1}
    assert report.selectors[0].stability == pytest.approx(0.95)


def test_fragile_css_selector() -> None:
    report = analyze_selectors(
        'page.locator("div.container > .btn-primary").click()\n'
    )
    usage = report.selectors[0]
    assert usage.strategy == "css"
    assert usage.fragile
    assert usage.issues == ["direct child combinator", "framework button class"]
    assert usage.stability == pytest.approx(0.4)
    assert report.recommendations[0].priority == "high"


def test_xpath_and_positional() -> None:
    code = 'page.locator("xpath=//button").nth(2).click()\n'
    report = analyze_selectors(code)
    assert report.strategy_counts == {"xpath": 1, "nth": 1}
    assert {r.priority for r in report.recommendations} == {"high", "medium"}


def test_brittle_code_scores_below_testids() -> None:
    brittle = analyze_selectors(
        'page.locator(".a").click()\npage.locator(".b").click()\n'
    )
    stable = analyze_selectors(
        'page.get_by_test_id("a").click()\npage.get_by_test_id("b").click()\n'
    )
    assert brittle.score < 0.5 < stable.score


def test_no_selectors_is_neutral() -> None:
    report = analyze_selectors("def test_x():\n    pass\n")
    assert report.score == 0.5
    dim = selector_dimension(report, 0.3)
    assert dim.reasoning == "no selectors found"


def test_fragility_only_applies_to_raw_selectors() -> None:
    assert fragility_issues("testid", "div > .btn-x") == []
    assert "deeply nested selector" in fragility_issues("css", "a b c d e")


def test_dimension_reasoning_mentions_fragile() -> None:
    report = analyze_selectors('page.locator("#root > div").click()\n')
    dim = selector_dimension(report, 0.3)
    assert dim.reasoning == "1 selectors, mostly css; 1 fragile"
