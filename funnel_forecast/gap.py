import logging

import pandas as pd

from funnel_forecast.aggregations import coalesce_default
from funnel_forecast.config import POPULATION_FULL, SEGMENT_KEYS
from funnel_forecast.projection import assign_sub_periods

logger = logging.getLogger(__name__)

GAP_COLUMNS = SEGMENT_KEYS + ['stage', 'forecast_target', 'actual_value', 'remaining_target', 'target_population']


def in_period_targets(targets, period):
    """Target rows whose sub_period falls inside the forecast period."""
    if targets is None or targets.empty:
        return targets
    return assign_sub_periods(targets, period.sub_periods).drop(columns=['sub_period_idx'])


def period_targets(targets):
    keys = SEGMENT_KEYS + ['stage']
    if targets is None or targets.empty:
        return pd.DataFrame(columns=keys + ['forecast_target'])
    return targets.groupby(keys, as_index=False)['target_value'].sum().rename(columns={'target_value': 'forecast_target'})


def build_remaining_targets(targets, actuals, population=POPULATION_FULL):
    """
    remaining_target = max(0, forecast_target - actual_to_date).
    Targets are always full-population, even when actuals are not.
    """
    keys = SEGMENT_KEYS + ['stage']
    if population != POPULATION_FULL:
        logger.warning(f"Comparing {population} actuals against full-population targets")

    gap = period_targets(targets).merge(actuals[keys + ['actual_value']], on=keys, how='outer')
    gap = coalesce_default(gap, ['forecast_target', 'actual_value'], 0)
    for col in ['forecast_target', 'actual_value']:
        gap[col] = pd.to_numeric(gap[col])
    gap['remaining_target'] = (gap['forecast_target'] - gap['actual_value']).clip(lower=0)
    gap['target_population'] = POPULATION_FULL
    return gap[GAP_COLUMNS].sort_values(keys).reset_index(drop=True)
