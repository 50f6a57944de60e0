import pandas as pd

from funnel_forecast.actuals import segment_stage_grid, sort_by_stage
from funnel_forecast.aggregations import coalesce_default
from funnel_forecast.cascade import build_cascade_inputs, cascade_forecast, cascade_to_long
from funnel_forecast.config import POPULATION_FULL, SEGMENT_KEYS

POINT_FORECAST_COLUMNS = SEGMENT_KEYS + [
    'stage', 'forecast_value', 'actual_value', 'open_pipeline', 'remaining_target', 'conversion_rate',
    'future_value', 'predicted_value', 'stddev_daily', 'population', 'target_population',
]


def assemble_point_forecast(rates, pipeline, gap, volatility, population=POPULATION_FULL):
    """
    Outer-join every component on (segment, stage). Counts default to 0, rates stay NaN,
    and every segment any input mentions gets one row per stage.
    """
    keys = SEGMENT_KEYS + ['stage']

    cascade = cascade_to_long(cascade_forecast(build_cascade_inputs(rates, pipeline, gap)))

    seg_frames = [df[SEGMENT_KEYS] for df in (rates, pipeline, gap, volatility, cascade) if not df.empty]
    if not seg_frames:
        return pd.DataFrame(columns=POINT_FORECAST_COLUMNS)
    out = segment_stage_grid(pd.concat(seg_frames))

    out = out.merge(
        gap[keys + ['forecast_target', 'actual_value', 'remaining_target']].rename(columns={'forecast_target': 'forecast_value'}),
        on=keys, how='left'
    )
    out = out.merge(pipeline[keys + ['open_count']].rename(columns={'open_count': 'open_pipeline'}), on=keys, how='left')
    out = out.merge(
        rates[SEGMENT_KEYS + ['from_stage', 'rate']].rename(columns={'from_stage': 'stage', 'rate': 'conversion_rate'}),
        on=keys, how='left'
    )
    out = out.merge(volatility[keys + ['stddev_daily']], on=keys, how='left')
    out = out.merge(cascade[keys + ['future_value']], on=keys, how='left')

    out = coalesce_default(
        out,
        ['forecast_value', 'actual_value', 'open_pipeline', 'remaining_target', 'future_value', 'stddev_daily'],
        0
    )
    out['conversion_rate'] = out['conversion_rate'].astype('float64')
    out['predicted_value'] = out['actual_value'] + out['future_value']
    out['population'] = population
    out['target_population'] = POPULATION_FULL

    for col in ['forecast_value', 'actual_value', 'open_pipeline', 'remaining_target']:
        out[col] = out[col].astype('int64') if (out[col] % 1 == 0).all() else out[col].astype('float64')
    for col in ['future_value', 'predicted_value', 'stddev_daily']:
        out[col] = out[col].astype('float64')

    return sort_by_stage(out[POINT_FORECAST_COLUMNS])
