"""
Unit tests for outlier validation.
"""
import pytest

from uncertainty_index.core.models import SourceStatus
from uncertainty_index.ingest.validation import (
    SourceStats,
    flagged_status,
    format_warning,
    validate_value,
)


@pytest.mark.unit
def test_outlier_scenario():
    flag = validate_value(145.0, SourceStats(mean=100.0, stdev=10.0))
    assert flag == "Outlier detected (z=4.50)"


@pytest.mark.unit
def test_negative_outlier_reports_signed_z():
    assert validate_value(50.0, SourceStats(mean=100.0, stdev=10.0)) == "Outlier detected (z=-5.00)"


@pytest.mark.unit
def test_threshold_is_inclusive():
    assert validate_value(140.0, SourceStats(mean=100.0, stdev=10.0)) == "Outlier detected (z=4.00)"
    assert validate_value(139.9, SourceStats(mean=100.0, stdev=10.0)) is None


@pytest.mark.unit
def test_custom_threshold():
    assert validate_value(125.0, SourceStats(mean=100.0, stdev=10.0), z_threshold=2.5) is not None


@pytest.mark.unit
def test_missing_value_flag_comes_first():
    assert validate_value(None, SourceStats(mean=100.0, stdev=10.0)) == "Missing value"


@pytest.mark.unit
@pytest.mark.parametrize("stats", [None, SourceStats(mean=None, stdev=None), SourceStats(mean=1.0, stdev=0.0)])
def test_z_check_skipped_without_usable_stats(stats):
    assert validate_value(1_000_000.0, stats) is None


@pytest.mark.unit
def test_negative_value_flag():
    assert validate_value(-0.5, None) == "Negative value"


@pytest.mark.unit
def test_flagged_status_only_downgrades_success():
    assert flagged_status(SourceStatus.SUCCESS, "Negative value") == SourceStatus.WARNING
    assert flagged_status(SourceStatus.SUCCESS, None) == SourceStatus.SUCCESS
    assert flagged_status(SourceStatus.MISSING, "Missing value") == SourceStatus.MISSING
    assert flagged_status(SourceStatus.FAILED, "Missing value") == SourceStatus.FAILED


@pytest.mark.unit
def test_format_warning():
    assert format_warning("NFIB Uncertainty Index", "Missing value") == "NFIB Uncertainty Index: Missing value"
