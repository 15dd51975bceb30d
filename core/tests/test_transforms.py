"""Tests for the built-in transform functions."""

import pytest

from mosaik.graph.transforms import TransformError, apply_transform, join, template


class TestJoin:
    def test_blank_line_separator_by_default(self):
        assert join([(None, "a"), (None, "b")], {}) == "a\n\nb"

    def test_custom_separator(self):
        assert join([(None, "a"), ("x", "b")], {"separator": " | "}) == "a | b"

    def test_no_inputs(self):
        assert join([], {}) == ""


class TestTemplate:
    def test_named_slots(self):
        inputs = [("question", "Why?"), ("context", "Because.")]
        result = template(inputs, {"template": "Q: {question}\nC: {context}"})
        assert result == "Q: Why?\nC: Because."

    def test_unnamed_inputs_fill_input(self):
        result = template([(None, "one"), (None, "two")], {"template": "<<{input}>>"})
        assert result == "<<one\n\ntwo>>"

    def test_repeated_slot_is_joined(self):
        result = template([("doc", "a"), ("doc", "b")], {"template": "{doc}"})
        assert result == "a\n\nb"

    def test_missing_template_param(self):
        with pytest.raises(TransformError):
            template([(None, "x")], {})

    def test_unknown_placeholder(self):
        with pytest.raises(TransformError):
            template([(None, "x")], {"template": "{missing}"})


class TestApplyTransform:
    def test_defaults_to_join(self):
        assert apply_transform(None, [(None, "a"), (None, "b")], {}) == "a\n\nb"

    def test_unknown_transform(self):
        with pytest.raises(TransformError, match="Unknown transform"):
            apply_transform("reverse", [], {})
