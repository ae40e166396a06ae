"""Tests for IR primitives, locators and value parsing."""

from __future__ import annotations

import pytest

from journeyforge.constants import LocatorStrategy, PrimitiveType, ValueKind
from journeyforge.ir.types import (
    Blocked,
    CallModule,
    Click,
    ExpectToast,
    ExpectURL,
    ExpectVisible,
    Fill,
    Goto,
    IRJourney,
    IRStep,
    LocatorOptions,
    LocatorSpec,
    ValueSpec,
    is_assertion,
    parse_value,
    primitive_to_dict,
)


def _testid(value: str = "submit") -> LocatorSpec:
    return LocatorSpec(LocatorStrategy.TESTID, value)


# ── Locators ─────────────────────────────────────────────


class TestLocatorSpec:
    def test_stability_ordering(self) -> None:
        ranked = [
            LocatorSpec(s, "x").stability()
            for s in (
                LocatorStrategy.TESTID,
                LocatorStrategy.ROLE,
                LocatorStrategy.LABEL,
                LocatorStrategy.CSS,
                LocatorStrategy.XPATH,
            )
        ]
        assert ranked == sorted(ranked, reverse=True)
        assert len(set(ranked)) == len(ranked)

    def test_label_and_text_rank_equal(self) -> None:
        label = LocatorSpec(LocatorStrategy.LABEL, "Email")
        text = LocatorSpec(LocatorStrategy.TEXT, "Email")
        assert label.stability() == text.stability()

    def test_with_exact_keeps_options(self) -> None:
        spec = LocatorSpec(
            LocatorStrategy.ROLE,
            "heading",
            LocatorOptions(name="Dashboard", level=2),
        )
        exact = spec.with_exact()
        assert exact.options == LocatorOptions(name="Dashboard", exact=True, level=2)
        assert spec.options is not None and spec.options.exact is None

    def test_with_exact_without_options(self) -> None:
        assert _testid().with_exact().options == LocatorOptions(exact=True)


# ── Values ───────────────────────────────────────────────


class TestParseValue:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("{{ admin }}", ValueSpec(ValueKind.ACTOR, "admin")),
            ("{{user.email}}", ValueSpec(ValueKind.ACTOR, "user.email")),
            ("$email", ValueSpec(ValueKind.TEST_DATA, "email")),
            ("${uuid()}", ValueSpec(ValueKind.GENERATED, "uuid()")),
            ("hello", ValueSpec(ValueKind.LITERAL, "hello")),
        ],
    )
    def test_kinds(self, text: str, expected: ValueSpec) -> None:
        assert parse_value(text) == expected

    def test_braced_dollar_is_not_test_data(self) -> None:
        assert parse_value("${now}").kind == ValueKind.GENERATED

    def test_embedded_reference_is_literal(self) -> None:
        """Only a whole-value reference counts."""
        assert parse_value("hi {{ admin }}") == ValueSpec.literal("hi {{ admin }}")


# ── Primitives ───────────────────────────────────────────


def test_is_assertion() -> None:
    assert is_assertion(ExpectVisible(_testid()))
    assert is_assertion(ExpectToast())
    assert is_assertion(ExpectURL("/home"))
    assert not is_assertion(Click(_testid()))
    assert not is_assertion(Goto("/login"))


class TestPrimitiveToDict:
    def test_type_key_and_none_dropped(self) -> None:
        data = primitive_to_dict(Click(_testid()))
        assert data == {
            "type": "click",
            "locator": {"strategy": "testid", "value": "submit"},
        }

    def test_tuple_args_become_list(self) -> None:
        data = primitive_to_dict(CallModule("auth", "login", ("a",)))
        assert data == {
            "type": PrimitiveType.CALL_MODULE.value,
            "module": "auth",
            "method": "login",
            "args": ["a"],
        }

    def test_nested_value(self) -> None:
        data = primitive_to_dict(Fill(_testid("email"), parse_value("$email")))
        assert data["value"] == {"kind": "testData", "value": "email"}


# ── Journey ──────────────────────────────────────────────


def _step() -> IRStep:
    return IRStep(
        id="AC-1",
        description="User logs in",
        actions=[
            Goto("/login"),
            Blocked(reason="no pattern", source_text="do the thing"),
        ],
        assertions=[ExpectURL("/dashboard")],
        notes=["review"],
    )


class TestIRStep:
    def test_primitives_actions_first(self) -> None:
        step = _step()
        assert [p.kind for p in step.primitives()] == [
            PrimitiveType.GOTO,
            PrimitiveType.BLOCKED,
            PrimitiveType.EXPECT_URL,
        ]

    def test_blocked(self) -> None:
        assert [b.source_text for b in _step().blocked] == ["do the thing"]


class TestIRJourney:
    def test_all_primitives(self) -> None:
        journey = IRJourney(id="JRN-0001", title="Login", steps=[_step(), _step()])
        assert len(journey.all_primitives()) == 6

    def test_to_dict(self) -> None:
        journey = IRJourney(
            id="JRN-0001",
            title="Login",
            tier="smoke",
            steps=[_step()],
            module_dependencies=["auth"],
        )
        data = journey.to_dict()
        assert data["moduleDependencies"] == ["auth"]
        assert data["tier"] == "smoke"
        assert data["tags"] == []
        step = data["steps"][0]
        assert step["actions"][0] == {"type": "goto", "url": "/login"}
        assert step["assertions"] == [{"type": "expectURL", "pattern": "/dashboard"}]
        assert step["notes"] == ["review"]
