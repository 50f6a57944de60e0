"""Tests for funnel_forecast.backtest."""
import numpy as np
import pytest

from funnel_forecast.backtest import BACKTEST_COLUMNS, run_backtest
from funnel_forecast.config import ConfigurationError
from funnel_forecast.mock_generator import generate_mock_records, generate_mock_targets
from funnel_forecast.records import prepare_targets, validate_records


@pytest.fixture(scope='module')
def inputs():
    records, _ = validate_records(generate_mock_records('2024-07-01', '2024-09-30', seed=3))
    targets = prepare_targets(generate_mock_targets('2024-07-01', '2024-09-30', seed=3))
    return records, targets


def test_comparison_table(inputs, period):
    records, targets = inputs
    comparison = run_backtest(records, targets, period, '2024-08-15')

    assert list(comparison.columns) == BACKTEST_COLUMNS
    assert not comparison.duplicated(subset=['channel', 'source', 'stage']).any()
    assert np.allclose(comparison['variance'], comparison['predicted_value'] - comparison['actual_value'])


def test_entry_stage_cannot_be_overforecast(inputs, period):
    # Contacted has no future component, so its backtest prediction is the actual at the backtest date
    records, targets = inputs
    comparison = run_backtest(records, targets, period, '2024-08-15')
    contacted = comparison[comparison['stage'] == 'contacted']
    assert (contacted['variance'] <= 0).all()


def test_zero_actual_gives_nan_pct(make_record, to_records, period):
    records = to_records([make_record(lead_id='L1', reached={'contacted': '2024-07-02'})])
    comparison = run_backtest(records, None, period, '2024-07-10')
    joined = comparison[comparison['stage'] == 'joined'].iloc[0]
    assert joined['actual_value'] == 0
    assert np.isnan(joined['variance_pct'])


@pytest.mark.parametrize('as_of', ['2024-06-30', '2024-09-30', '2024-10-15'])
def test_backtest_date_must_precede_period_end(inputs, period, as_of):
    records, targets = inputs
    with pytest.raises(ConfigurationError):
        run_backtest(records, targets, period, as_of)
