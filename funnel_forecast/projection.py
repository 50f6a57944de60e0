"""
Daily projection of each segment/stage over the forecast period.

Up to as_of the line is the cumulative actual. After as_of it runs linearly from the current
actual A to the point forecast P at period end, with a 95% random-walk band:

    predicted(t) = A + d * (P - A) / D
    lower(t)     = max(A, predicted(t) - z * stddev_daily * sqrt(d))
    upper(t)     = predicted(t) + z * stddev_daily * sqrt(d)

where d is days since as_of and D is days from as_of to period end. The target line is
piecewise linear: each sub-period ramps from the cumulative target at its start to the
cumulative target at its end.
"""
import logging

import numpy as np
import pandas as pd

from funnel_forecast.actuals import segment_stage_grid, sort_by_stage
from funnel_forecast.config import CONFIDENCE_Z, POPULATION_FULL, SEGMENT_KEYS

logger = logging.getLogger(__name__)

PROJECTION_COLUMNS = SEGMENT_KEYS + [
    'stage', 'date', 'actual', 'predicted', 'lower', 'upper', 'target', 'is_forecast', 'population',
]


def _match_sub_period(label, sub_periods):
    try:
        ts = pd.Timestamp(label).normalize()
    except (ValueError, TypeError):
        return None
    if len(str(label)) == 7:
        # YYYY-MM: any sub-period overlapping the month
        month = ts.to_period('M')
        matches = [
            i for i, (start, end) in enumerate(sub_periods)
            if start.to_period('M') <= month <= end.to_period('M')
        ]
        if len(matches) > 1:
            logger.warning(
                f"Month target {label} spans {len(matches)} sub-periods; assigning all of it to the first"
            )
        return matches[0] if matches else None
    for i, (start, end) in enumerate(sub_periods):
        if start <= ts <= end:
            return i
    return None


def assign_sub_periods(targets, sub_periods):
    targets = targets.copy()
    labels = targets['sub_period'].drop_duplicates()
    mapping = {label: _match_sub_period(label, sub_periods) for label in labels}
    targets['sub_period_idx'] = targets['sub_period'].map(mapping)

    unmatched = targets['sub_period_idx'].isna()
    if unmatched.any():
        bad = sorted(targets.loc[unmatched, 'sub_period'].unique())
        logger.warning(f"Dropping {unmatched.sum()} target rows outside the forecast period: {bad}")
        targets = targets[~unmatched]

    targets['sub_period_idx'] = targets['sub_period_idx'].astype(int)
    return targets


def build_calendar(period):
    calendar = pd.DataFrame({'date': pd.date_range(period.start, period.end, freq='D')})
    starts = pd.DatetimeIndex([s for s, _ in period.sub_periods])
    lengths = np.array([(e - s).days + 1 for s, e in period.sub_periods])
    idx = np.searchsorted(starts.values, calendar['date'].values, side='right') - 1
    calendar['sub_period_idx'] = idx
    calendar['day_in_sub_period'] = (calendar['date'] - starts[idx].values).dt.days + 1
    calendar['sub_period_days'] = lengths[idx]
    return calendar


def build_target_curve(targets, period, segments=None):
    """Cumulative target per (segment, stage, date): C_prev + T_k * day / days_in_sub_period."""
    keys = SEGMENT_KEYS + ['stage']
    calendar = build_calendar(period)

    if targets is None or targets.empty:
        targets = pd.DataFrame(columns=keys + ['sub_period', 'target_value'])
    targets = assign_sub_periods(targets, period.sub_periods)

    seg_frames = [targets[SEGMENT_KEYS]] + ([segments[SEGMENT_KEYS]] if segments is not None else [])
    all_segments = pd.concat(seg_frames)
    if all_segments.empty:
        return pd.DataFrame(columns=keys + ['date', 'target'])

    per_sub = targets.groupby(keys + ['sub_period_idx'], as_index=False)['target_value'].sum()
    grid = segment_stage_grid(all_segments).merge(
        pd.DataFrame({'sub_period_idx': range(len(period.sub_periods))}), how='cross'
    )
    grid = grid.merge(per_sub, on=keys + ['sub_period_idx'], how='left')
    grid['target_value'] = grid['target_value'].astype('float64').fillna(0.0)
    grid = grid.sort_values(keys + ['sub_period_idx'])
    grid['prior_cumulative'] = grid.groupby(keys)['target_value'].cumsum() - grid['target_value']

    curve = grid.merge(calendar, on='sub_period_idx', how='inner')
    curve['target'] = (
        curve['prior_cumulative']
        + curve['target_value'] * curve['day_in_sub_period'] / curve['sub_period_days']
    )
    return curve[keys + ['date', 'target']].reset_index(drop=True)


def build_daily_projection(point_forecast, daily_actuals, targets, period, z=CONFIDENCE_Z, population=POPULATION_FULL):
    keys = SEGMENT_KEYS + ['stage']
    as_of = period.as_of
    calendar = pd.date_range(period.start, period.end, freq='D')

    seg_frames = [df[SEGMENT_KEYS] for df in (point_forecast, daily_actuals, targets) if df is not None and not df.empty]
    if not seg_frames:
        return pd.DataFrame(columns=PROJECTION_COLUMNS)
    segments = pd.concat(seg_frames)

    proj = segment_stage_grid(segments, calendar)
    if daily_actuals is not None and not daily_actuals.empty:
        proj = proj.merge(daily_actuals[keys + ['date', 'actual']], on=keys + ['date'], how='left')
        proj['actual'] = proj['actual'].astype('float64').fillna(0.0)
    else:
        proj['actual'] = 0.0

    current = proj[proj['date'] <= as_of].groupby(keys, as_index=False)['actual'].max()
    current = current.rename(columns={'actual': 'current_actual'})
    proj = proj.merge(current, on=keys, how='left')
    proj['current_actual'] = proj['current_actual'].fillna(0.0)

    proj = proj.merge(point_forecast[keys + ['predicted_value', 'stddev_daily']], on=keys, how='left')
    proj['predicted_value'] = proj['predicted_value'].astype('float64').fillna(proj['current_actual'])
    proj['stddev_daily'] = proj['stddev_daily'].astype('float64').fillna(0.0)

    is_forecast = (proj['date'] > as_of).to_numpy()
    d = (proj['date'] - as_of).dt.days.clip(lower=0).to_numpy(dtype='float64')
    total_days = max((period.end - as_of).days, 1)
    a = proj['current_actual'].to_numpy()
    p = proj['predicted_value'].to_numpy()
    half_width = z * proj['stddev_daily'].to_numpy() * np.sqrt(d)

    interpolated = a + d * (p - a) / total_days
    proj['actual'] = np.where(is_forecast, a, proj['actual'])
    proj['predicted'] = np.where(is_forecast, interpolated, proj['actual'])
    proj['lower'] = np.where(is_forecast, np.maximum(a, interpolated - half_width), proj['actual'])
    proj['upper'] = np.where(is_forecast, interpolated + half_width, proj['actual'])
    proj['is_forecast'] = is_forecast

    curve = build_target_curve(targets, period, segments=segments)
    proj = proj.merge(curve, on=keys + ['date'], how='left')
    proj['target'] = proj['target'].fillna(0.0)
    proj['population'] = population

    return sort_by_stage(proj[PROJECTION_COLUMNS], extra_keys=['date'])
