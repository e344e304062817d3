"""Tests for numeric coercion and atomic writes."""

import json
from decimal import Decimal

import pytest

from scripts.lib.utils import (
    atomic_write_json,
    coerce_non_negative_decimal,
    coerce_non_negative_int,
    safe_decimal,
)


class TestCoerceNonNegativeInt:
    @pytest.mark.parametrize("value, expected", [
        (5, 5),
        ("1,200", 1200),
        (" 40 ", 40),
        ("12.0", 12),
        (3.9, 3),
        (-4, 0),
        ("-4", 0),
        (None, 0),
        (True, 0),
        ("", 0),
        ("abc", 0),
        (float("nan"), 0),
        (float("inf"), 0),
        (Decimal("7"), 7),
    ])
    def test_values(self, value, expected):
        assert coerce_non_negative_int(value) == expected


class TestDecimals:
    def test_money_keeps_cents(self):
        assert coerce_non_negative_decimal("$1,250.75") == Decimal("1250.75")
        assert coerce_non_negative_decimal(0.1) == Decimal("0.1")
        assert coerce_non_negative_decimal("-1") == Decimal(0)
        assert coerce_non_negative_decimal("NaN") == Decimal(0)

    def test_safe_decimal(self):
        assert safe_decimal("99.99") == Decimal("99.99")
        assert safe_decimal("") == Decimal(0)
        assert safe_decimal("n/a") == Decimal(0)
        assert safe_decimal(None, Decimal("1")) == Decimal("1")


def test_atomic_write_json(tmp_path):
    target = tmp_path / "out" / "report.json"
    assert atomic_write_json({"total": Decimal("1.5")}, target) is True
    assert json.loads(target.read_text()) == {"total": "1.5"}
    assert not target.with_suffix(".json.tmp").exists()
