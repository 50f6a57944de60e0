"""
Cascade (waterfall) projection of future conversions.

Open pipeline at each stage, plus the remaining entry-stage target, flows forward through the
trailing conversion rates. Each stage's future count depends on every upstream stage:

    future(mql)      = open(contacted) * r(contacted->mql) + remaining_target(contacted) * r(contacted->mql)
    pool(s)          = open(s) + future(s)                     for s in mql, sql, sqo
    future(next(s))  = pool(s) * r(s->next(s))
    predicted(s)     = actual(s) + future(s)                   (future(contacted) = 0)

Undefined rates and missing counts contribute 0.
"""
import logging

import pandas as pd

from funnel_forecast.config import SEGMENT_KEYS, STAGES

logger = logging.getLogger(__name__)


def _col(df, name):
    if name not in df.columns:
        return pd.Series(0.0, index=df.index)
    return df[name].astype('float64').fillna(0.0)


def build_cascade_inputs(rates, pipeline, gap):
    """One row per segment with open_*, rate_*, actual_* and remaining_target_* columns."""
    frames = []
    if not pipeline.empty:
        frames.append(pipeline.pivot(index=SEGMENT_KEYS, columns='stage', values='open_count').add_prefix('open_'))
    if not rates.empty:
        r = rates.assign(pair='rate_' + rates['from_stage'] + '_' + rates['to_stage'])
        frames.append(r.pivot(index=SEGMENT_KEYS, columns='pair', values='rate'))
    if not gap.empty:
        frames.append(gap.pivot(index=SEGMENT_KEYS, columns='stage', values='actual_value').add_prefix('actual_'))
        frames.append(gap.pivot(index=SEGMENT_KEYS, columns='stage', values='remaining_target').add_prefix('remaining_target_'))

    if not frames:
        return pd.DataFrame(columns=SEGMENT_KEYS)

    wide = pd.concat(frames, axis=1)
    wide.columns.name = None
    return wide.reset_index()


def cascade_forecast(frame):
    df = frame.copy()
    entry, first = STAGES[0], STAGES[1]

    entry_rate = _col(df, f'rate_{entry}_{first}')
    df[f'future_{entry}'] = 0.0
    df[f'future_{first}'] = _col(df, f'open_{entry}') * entry_rate + _col(df, f'remaining_target_{entry}') * entry_rate

    for stage, next_stage in zip(STAGES[1:-1], STAGES[2:]):
        df[f'pool_{stage}'] = _col(df, f'open_{stage}') + df[f'future_{stage}']
        df[f'future_{next_stage}'] = df[f'pool_{stage}'] * _col(df, f'rate_{stage}_{next_stage}')

    for stage in STAGES:
        df[f'predicted_{stage}'] = _col(df, f'actual_{stage}') + df[f'future_{stage}']

    return df


def cascade_to_long(wide):
    rows = []
    for _, r in wide.iterrows():
        for stage in STAGES:
            rows.append({
                'channel': r['channel'],
                'source': r['source'],
                'stage': stage,
                'future_value': r[f'future_{stage}'],
                'pool_value': r.get(f'pool_{stage}', float('nan')),
                'predicted_value': r[f'predicted_{stage}'],
            })
    if not rows:
        return pd.DataFrame(columns=SEGMENT_KEYS + ['stage', 'future_value', 'pool_value', 'predicted_value'])
    return pd.DataFrame(rows)


def apply_team_size_adjustment(point_forecast, adjustment=None):
    """
    Optional scaling of future conversions by channel (e.g. for team headcount changes).
    Disabled when adjustment is None or empty.

    Every stage's future is scaled by the same multiplier m. The cascade is linear, so this
    matches re-running it with the channel's open pipeline and remaining target both scaled
    by m. Scaling only the entry inflow would leave downstream futures fed by unscaled
    open pipeline.
    """
    if not adjustment:
        return point_forecast

    df = point_forecast.copy()
    multiplier = df['channel'].map(adjustment).fillna(1.0).clip(lower=0)
    adjusted = multiplier != 1.0
    if adjusted.any():
        logger.info(f"Team-size adjustment applied to {df.loc[adjusted, 'channel'].nunique()} channels")
    df['future_value'] = df['future_value'] * multiplier
    df['predicted_value'] = df['actual_value'] + df['future_value']
    return df
