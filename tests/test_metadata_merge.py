"""
Unit tests for metadata merging and money helpers.
"""
from decimal import Decimal

import pytest

from payment_service.domain.models import merge_metadata, to_money


class TestMergeMetadata:
    """Test suite for merge_metadata."""

    @pytest.mark.unit
    def test_incoming_keys_win(self) -> None:
        assert merge_metadata({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}

    @pytest.mark.unit
    def test_inputs_are_not_modified(self) -> None:
        base = {"a": 1}
        incoming = {"b": 2}
        merged = merge_metadata(base, incoming)
        merged["c"] = 3

        assert base == {"a": 1}
        assert incoming == {"b": 2}

    @pytest.mark.unit
    @pytest.mark.parametrize("base,incoming", [(None, None), ({}, None), (None, {})])
    def test_empty_inputs(self, base: dict, incoming: dict) -> None:
        assert merge_metadata(base, incoming) == {}


class TestToMoney:
    """Test suite for to_money."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10", Decimal("10.00")),
            (Decimal("10.005"), Decimal("10.01")),
            (19.99, Decimal("19.99")),
            (5, Decimal("5.00")),
        ],
    )
    def test_quantizes_to_cents(self, value: object, expected: Decimal) -> None:
        assert to_money(value) == expected
        assert to_money(value).as_tuple().exponent == -2
