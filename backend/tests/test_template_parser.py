"""
Tests for template variable parsing and list interpolation.
"""

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from pipedream.services.template_parser import (
    interpolate_template,
    interpolate_template_with_list,
    parse_template_variables,
)


class TestParseTemplateVariables:
    def test_unique_in_order_of_appearance(self):
        assert parse_template_variables("{b} and {a} then {b} again") == ["b", "a"]

    def test_ignores_invalid_names(self):
        assert parse_template_variables("{1abc} {has space} {ok_1} {}") == ["ok_1"]

    def test_no_variables(self):
        assert parse_template_variables("plain prompt") == []


class TestInterpolateTemplate:
    def test_substitutes_known_values(self):
        assert interpolate_template("A {fruit} in a {color} bowl", {"fruit": "pear", "color": "blue"}) == (
            "A pear in a blue bowl"
        )

    def test_missing_variable_left_literal(self):
        assert interpolate_template("Hello {name}", {}) == "Hello {name}"


class TestInterpolateTemplateWithList:
    def test_cartesian_product_is_row_major(self):
        result = interpolate_template_with_list(
            "{a}-{b}", {"a": ["a0", "a1"], "b": ["b0", "b1", "b2"]}
        )

        assert result.error is None
        assert result.results == ["a0-b0", "a0-b1", "a0-b2", "a1-b0", "a1-b1", "a1-b2"]
        assert result.list_info is not None
        assert result.list_info.names == ["a", "b"]
        assert result.list_info.counts == [2, 3]
        assert result.list_info.total_combinations == 6

    def test_scalars_apply_to_every_combination(self):
        result = interpolate_template_with_list(
            "{animal} on a {place}", {"animal": ["cat", "dog"], "place": "beach"}
        )
        assert result.results == ["cat on a beach", "dog on a beach"]

    def test_empty_list_is_an_error(self):
        result = interpolate_template_with_list("{a} {b}", {"a": ["x"], "b": []})

        assert result.results == []
        assert result.error is not None
        assert "b" in result.error

    def test_missing_variable_tolerated(self):
        result = interpolate_template_with_list("Hello {name}", {})

        assert result.error is None
        assert result.results == ["Hello {name}"]
        assert result.list_info is None

    def test_single_scalar_result(self):
        result = interpolate_template_with_list("Hi {name}", {"name": "Ada"})
        assert result.results == ["Hi Ada"]
