import pytest

GOOD_MODULE = """\
from playwright.sync_api import Page, expect


def test_login(page: Page) -> None:
    page.goto("/login")
    page.get_by_test_id("username").fill("alice")
    page.get_by_role("button", name="Sign in").click()
    expect(page.get_by_text("Welcome")).to_be_visible()
"""


@pytest.fixture
def good_module() -> str:
    return GOOD_MODULE
