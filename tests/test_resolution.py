"""
Unit tests for value resolution (lock / fresh / carry forward).
"""
import pytest

from uncertainty_index.core.models import SourceStatus
from uncertainty_index.ingest.resolution import (
    calculate_delta,
    is_blank,
    parse_numeric_value,
    resolve_value,
)
from uncertainty_index.sources.base import AdapterResult


@pytest.mark.unit
class TestParseNumericValue:
    @pytest.mark.parametrize("cell,expected", [
        ("101.5", 101.5),
        (" 1,234 ", 1234.0),
        (7, 7.0),
        ("-2", -2.0),
    ])
    def test_numbers(self, cell, expected):
        assert parse_numeric_value(cell) == expected

    @pytest.mark.parametrize("cell", [None, "", "   ", "n/a", "#REF!", float("nan"), "inf", True])
    def test_non_numbers(self, cell):
        assert parse_numeric_value(cell) is None

    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank("  ")
        assert not is_blank("0")


@pytest.mark.unit
def test_delta_is_exact_difference():
    assert calculate_delta(103.5, 101.25) == 103.5 - 101.25
    assert calculate_delta(None, 1.0) is None
    assert calculate_delta(1.0, None) is None


@pytest.mark.unit
class TestResolveValue:
    def test_fresh_value_wins(self):
        resolved = resolve_value(90.0, AdapterResult.success(95.0))

        assert resolved.value == 95.0
        assert resolved.delta == 5.0
        assert not resolved.carried_forward
        assert not resolved.locked

    def test_warning_status_is_acceptable(self):
        outcome = AdapterResult(value=3.0, status=SourceStatus.WARNING)
        assert resolve_value(None, outcome).value == 3.0

    def test_missing_carries_previous(self):
        resolved = resolve_value(90.0, AdapterResult.missing())

        assert resolved.value == 90.0
        assert resolved.carried_forward is True
        assert resolved.delta == 0.0

    def test_exception_outcome_carries_previous(self):
        resolved = resolve_value(42.0, None)
        assert resolved.value == 42.0
        assert resolved.carried_forward is True

    def test_nothing_available(self):
        resolved = resolve_value(None, AdapterResult.missing())

        assert resolved.value is None
        assert resolved.delta is None
        assert not resolved.carried_forward

    def test_locked_cell_beats_fresh_value(self):
        resolved = resolve_value(99.0, AdapterResult.success(500.0), locked_cell="101")

        assert resolved.value == 101.0
        assert resolved.delta == 2.0
        assert resolved.locked is True
        assert not resolved.carried_forward

    def test_blank_locked_cell_is_ignored(self):
        resolved = resolve_value(99.0, AdapterResult.success(500.0), locked_cell="  ")
        assert resolved.value == 500.0
        assert not resolved.locked

    def test_non_numeric_locked_cell_stays_locked(self):
        resolved = resolve_value(99.0, AdapterResult.success(500.0), locked_cell="n/a")

        assert resolved.locked is True
        assert resolved.value is None
        assert resolved.delta is None

    def test_failed_status_with_value_is_not_used(self):
        outcome = AdapterResult(value=12.0, status=SourceStatus.FAILED)
        resolved = resolve_value(10.0, outcome)

        assert resolved.value == 10.0
        assert resolved.carried_forward is True
        assert resolved.delta == 0.0
