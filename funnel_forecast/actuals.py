import pandas as pd

from funnel_forecast.aggregations import running_sum_by_group
from funnel_forecast.config import SEGMENT_KEYS, STAGES

DAILY_COLUMNS = SEGMENT_KEYS + ['stage', 'date', 'new_count', 'actual']


def segment_stage_grid(segments, calendar=None):
    grid = segments[SEGMENT_KEYS].drop_duplicates().merge(pd.DataFrame({'stage': STAGES}), how='cross')
    if calendar is not None:
        grid = grid.merge(pd.DataFrame({'date': calendar}), how='cross')
    return grid


def build_daily_actuals(events, start, end, segments=None):
    """
    Cumulative distinct-entity count per (segment, stage, date) on a full daily calendar.
    Each entity counts once, on its first stage date inside [start, end].
    """
    start = pd.Timestamp(start).normalize()
    end = pd.Timestamp(end).normalize()
    calendar = pd.date_range(start, end, freq='D')

    if segments is None:
        segments = events[SEGMENT_KEYS]
    if len(calendar) == 0 or segments.empty:
        return pd.DataFrame(columns=DAILY_COLUMNS)

    window = events[(events['stage_date'] >= start) & (events['stage_date'] <= end)]
    first_seen = window.groupby(SEGMENT_KEYS + ['stage', 'entity_id'], as_index=False)['stage_date'].min()
    new_counts = (
        first_seen.groupby(SEGMENT_KEYS + ['stage', 'stage_date']).size()
        .reset_index(name='new_count')
        .rename(columns={'stage_date': 'date'})
    )
    new_counts['date'] = pd.to_datetime(new_counts['date'])

    grid = segment_stage_grid(pd.concat([segments[SEGMENT_KEYS], window[SEGMENT_KEYS]]), calendar)
    daily = grid.merge(new_counts, on=SEGMENT_KEYS + ['stage', 'date'], how='left')
    daily['new_count'] = daily['new_count'].fillna(0).astype(int)
    daily = running_sum_by_group(daily, SEGMENT_KEYS + ['stage'], 'date', 'new_count', out_col='actual')
    return daily[DAILY_COLUMNS].reset_index(drop=True)


def actual_to_date(daily, as_of):
    keys = SEGMENT_KEYS + ['stage']
    if daily.empty:
        return pd.DataFrame(columns=keys + ['actual_value'])
    base = daily[keys].drop_duplicates()
    upto = daily[daily['date'] <= pd.Timestamp(as_of)].groupby(keys, as_index=False)['actual'].max()
    result = base.merge(upto, on=keys, how='left').rename(columns={'actual': 'actual_value'})
    result['actual_value'] = result['actual_value'].fillna(0).astype(int)
    return result.reset_index(drop=True)


def sort_by_stage(df, extra_keys=None):
    df = df.assign(_stage_rank=df['stage'].map({s: i for i, s in enumerate(STAGES)}))
    keys = SEGMENT_KEYS + ['_stage_rank'] + (extra_keys or [])
    return df.sort_values(keys).drop(columns='_stage_rank').reset_index(drop=True)
