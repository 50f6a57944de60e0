import pandas as pd

from funnel_forecast.actuals import build_daily_actuals
from funnel_forecast.config import SEGMENT_KEYS, VOLATILITY_WINDOW_DAYS


def build_daily_volatility(events, as_of, window_days=VOLATILITY_WINDOW_DAYS, segments=None):
    """
    Std dev of day-over-day growth of the cumulative actual curve over the trailing window.
    No activity (or a single observation) gives 0.0, not NaN.
    """
    keys = SEGMENT_KEYS + ['stage']
    as_of = pd.Timestamp(as_of).normalize()
    start = as_of - pd.Timedelta(days=window_days)

    curve = build_daily_actuals(events, start, as_of, segments=segments)
    if curve.empty:
        return pd.DataFrame(columns=keys + ['stddev_daily'])

    curve = curve.sort_values(keys + ['date'])
    curve['delta'] = curve.groupby(keys)['actual'].diff()
    result = curve.dropna(subset=['delta']).groupby(keys)['delta'].std().reset_index(name='stddev_daily')
    result = curve[keys].drop_duplicates().merge(result, on=keys, how='left')
    result['stddev_daily'] = result['stddev_daily'].fillna(0.0)
    return result.reset_index(drop=True)
