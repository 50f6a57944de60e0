"""Tests for funnel_forecast.gap: remaining targets."""
import logging

import pandas as pd

from funnel_forecast.gap import GAP_COLUMNS, build_remaining_targets, in_period_targets, period_targets


def _targets():
    return pd.DataFrame({
        'channel': ['Outbound', 'Outbound', 'Inbound'],
        'source': ['LinkedIn', 'LinkedIn', 'Website'],
        'stage': ['joined', 'joined', 'mql'],
        'sub_period': ['2024-07', '2024-08', '2024-07'],
        'target_value': [100, 330, 5],
    })


def _actuals():
    return pd.DataFrame({
        'channel': ['Outbound', 'Inbound', 'Partner'],
        'source': ['LinkedIn', 'Website', 'Referral'],
        'stage': ['joined', 'mql', 'contacted'],
        'actual_value': [166, 9, 4],
    })


def test_period_targets_sum_sub_periods():
    totals = period_targets(_targets())
    row = totals[totals['channel'] == 'Outbound'].iloc[0]
    assert row['forecast_target'] == 430


def test_remaining_target_floored_at_zero():
    gap = build_remaining_targets(_targets(), _actuals())
    assert list(gap.columns) == GAP_COLUMNS
    by_channel = gap.set_index('channel')
    assert by_channel.loc['Outbound', 'remaining_target'] == 264
    assert by_channel.loc['Inbound', 'remaining_target'] == 0
    assert (gap['remaining_target'] >= 0).all()


def test_outer_join_keeps_keys_from_either_side():
    gap = build_remaining_targets(_targets(), _actuals())
    partner = gap[gap['channel'] == 'Partner'].iloc[0]
    assert partner['forecast_target'] == 0
    assert partner['actual_value'] == 4
    assert len(gap) == 3


def test_targets_stay_full_population(caplog):
    with caplog.at_level(logging.WARNING):
        gap = build_remaining_targets(_targets(), _actuals(), population='active_owner')
    assert (gap['target_population'] == 'full').all()
    assert 'full-population targets' in caplog.text


def test_no_targets():
    gap = build_remaining_targets(None, _actuals())
    assert (gap['forecast_target'] == 0).all()
    assert (gap['remaining_target'] == 0).all()


def test_targets_outside_the_period_do_not_count(period, caplog):
    targets = pd.concat([_targets(), pd.DataFrame([{
        'channel': 'Outbound', 'source': 'LinkedIn', 'stage': 'joined', 'sub_period': '2024-12', 'target_value': 1000,
    }])], ignore_index=True)
    with caplog.at_level(logging.WARNING):
        gap = build_remaining_targets(in_period_targets(targets, period), _actuals())
    outbound = gap[gap['channel'] == 'Outbound'].iloc[0]
    assert outbound['forecast_target'] == 430
    assert outbound['remaining_target'] == 264
    assert "['2024-12']" in caplog.text


def test_in_period_targets_passes_empty_through(period):
    assert in_period_targets(None, period) is None
