"""Tests for field transformations."""

from datetime import date, datetime

import pytest

from work_item_sync.errors import UnknownTransformationError
from work_item_sync.mapping.transformations import (
    apply_transformation,
    available_transformations,
    is_status_rule,
    rule_names,
)


class TestTransformations:
    """Test individual named transformations."""

    @pytest.mark.parametrize(
        ("rule", "value", "expected"),
        [
            ("direct", {"a": 1}, {"a": 1}),
            ("uppercase", "hello", "HELLO"),
            ("lowercase", "HeLLo", "hello"),
            ("trim", "  padded  ", "padded"),
            ("to_number", "42", 42),
            ("to_number", "2.5", 2.5),
            ("to_number", "abc", None),
            ("to_string", 7, "7"),
            ("to_boolean", "yes", True),
            ("to_boolean", "off", False),
            ("email_to_username", "jane.doe@example.com", "jane.doe"),
            ("email_to_username", "no-at-sign", "no-at-sign"),
            ("split", "a, b ,c", ["a", "b", "c"]),
            ("strip_html", "<p>Hello <b>world</b></p>", "Hello world"),
            ("markdown_to_text", "## Title with **bold** and [link](http://x)", "Title with bold and link"),
            ("priority_to_text", 2, "High"),
            ("priority_to_text", 9, None),
            ("text_to_priority", "Urgent", 1),
            ("text_to_priority", "whenever", 3),
            ("extract_project_from_path", "Contoso\\Web\\Auth", "Contoso"),
        ],
    )
    def test_named(self, rule: str, value, expected) -> None:
        assert apply_transformation(value, rule) == expected

    def test_text_to_html_escapes(self) -> None:
        assert apply_transformation("a < b\nit's", "text_to_html") == "<p>a &lt; b<br>it&#39;s</p>"

    def test_dates(self) -> None:
        moment = datetime(2024, 3, 5, 14, 30)

        assert apply_transformation(moment, "format_date_iso") == "2024-03-05T14:30:00"
        assert apply_transformation("2024-03-05T14:30:00", "format_date_short") == "2024-03-05"
        assert apply_transformation(date(2024, 3, 5), "format_date_short") == "2024-03-05"
        assert apply_transformation("not a date", "format_date_iso") is None

    def test_arguments(self) -> None:
        assert apply_transformation("abcdef", {"name": "truncate", "args": [3]}) == "abc"
        assert apply_transformation("a-b-c", {"name": "replace", "args": ["-", "+"]}) == "a+b+c"
        assert apply_transformation("2024-03-05", {"name": "date_format", "args": "%d/%m/%Y"}) == "05/03/2024"
        assert (
            apply_transformation("Old\\Area", {"name": "replace_project_in_path", "args": ["New"]})
            == "New\\Area"
        )

    def test_none_rule_passes_value_through(self) -> None:
        assert apply_transformation("value", None) == "value"

    def test_none_value(self) -> None:
        assert apply_transformation(None, "uppercase") is None


class TestRules:
    """Test rule composition and lookup."""

    def test_chain(self) -> None:
        rule = {"chain": ["trim", "uppercase", {"name": "truncate", "args": [3]}]}

        assert apply_transformation("  hello ", rule) == "HEL"

    def test_chain_stops_on_none(self) -> None:
        rule = {"chain": ["to_number", "priority_to_text"]}

        assert apply_transformation("not a number", rule) is None

    def test_status_rule_uses_lookup(self) -> None:
        lookup = {"Active": "Doing"}.get

        assert apply_transformation("Active", "status", lookup) == "Doing"
        assert apply_transformation("Removed", "status", lookup) is None
        assert apply_transformation("Active", "status") == "Active"

    def test_unknown_transformation(self) -> None:
        with pytest.raises(UnknownTransformationError):
            apply_transformation("x", "reverse_words")

        with pytest.raises(UnknownTransformationError):
            apply_transformation("x", {"args": [1]})

    def test_rule_names(self) -> None:
        rule = {"chain": ["trim", {"name": "truncate", "args": [5]}, "status"]}

        assert rule_names(rule) == ["trim", "truncate", "status"]
        assert rule_names(None) == []
        assert is_status_rule(rule) is True
        assert is_status_rule("trim") is False

    def test_available_transformations(self) -> None:
        names = available_transformations()

        assert "status" in names
        assert "uppercase" in names
        assert names == sorted(names)
