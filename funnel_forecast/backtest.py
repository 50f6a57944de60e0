"""
Backtest: forecast from an earlier as_of and score it against what actually landed by period end.

The records must be a snapshot taken at or after period end. Every step of the forecast already
ignores dates after its as_of, so the same snapshot serves both sides of the comparison.
"""
import logging

import pandas as pd

from funnel_forecast.actuals import actual_to_date, build_daily_actuals, sort_by_stage
from funnel_forecast.aggregations import coalesce_default, safe_divide
from funnel_forecast.config import ConfigurationError, POPULATION_FULL, SEGMENT_KEYS, STAGES
from funnel_forecast.gap import in_period_targets
from funnel_forecast.generate_forecast import _all_segments, forecast_population
from funnel_forecast.records import build_stage_events

logger = logging.getLogger(__name__)

BACKTEST_COLUMNS = SEGMENT_KEYS + ['stage', 'predicted_value', 'actual_value', 'variance', 'variance_pct']

# Stage-level miss above this share of actuals is flagged
VARIANCE_WARN_PCT = 20.0


def run_backtest(records, targets, period, backtest_as_of, config=None):
    backtest_as_of = pd.Timestamp(backtest_as_of).normalize()
    if backtest_as_of < period.start or backtest_as_of >= period.end:
        raise ConfigurationError(
            f"backtest_as_of {backtest_as_of.date()} must fall inside {period.start.date()}..{period.end.date()} "
            "and before period end"
        )

    targets = in_period_targets(targets, period)

    logger.info(f"Backtest: forecasting as of {backtest_as_of.date()}, scoring at {period.end.date()}...")
    bt_period = period._replace(as_of=backtest_as_of)
    forecast = forecast_population(records, targets, bt_period, population=POPULATION_FULL, config=config)
    predicted = forecast['point_forecast'][SEGMENT_KEYS + ['stage', 'predicted_value']]

    events = build_stage_events(records)
    daily = build_daily_actuals(events, period.start, period.end, segments=_all_segments(records, targets))
    actual = actual_to_date(daily, period.end)

    keys = SEGMENT_KEYS + ['stage']
    comparison = predicted.merge(actual, on=keys, how='outer')
    comparison = coalesce_default(comparison, ['predicted_value', 'actual_value'], 0)
    comparison['variance'] = comparison['predicted_value'] - comparison['actual_value']
    comparison['variance_pct'] = safe_divide(comparison['variance'], comparison['actual_value']) * 100

    totals = comparison.groupby('stage')[['predicted_value', 'actual_value']].sum()
    for stage in STAGES:
        if stage not in totals.index:
            continue
        pred, act = totals.loc[stage, 'predicted_value'], totals.loc[stage, 'actual_value']
        pct = safe_divide(pred - act, act) * 100
        message = f"Backtest {stage}: predicted {pred:,.1f} vs actual {act:,.0f} ({pct:+.1f}%)"
        if pd.notna(pct) and abs(pct) > VARIANCE_WARN_PCT:
            logger.warning(message)
        else:
            logger.info(message)

    return sort_by_stage(comparison[BACKTEST_COLUMNS])
