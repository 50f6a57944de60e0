import logging

import pandas as pd

from funnel_forecast.aggregations import full_population, safe_divide
from funnel_forecast.config import SEGMENT_KEYS, STAGE_PAIRS, TRAILING_WINDOW_DAYS
from funnel_forecast.records import DECIDED_SQO, SqoStatus, entity_column

logger = logging.getLogger(__name__)

RATE_COLUMNS = SEGMENT_KEYS + ['from_stage', 'to_stage', 'eligible', 'converted', 'rate', 'population']


def _pair_masks(records, from_stage, to_stage, window_start, as_of, population):
    from_date = records[f'{from_stage}_date']
    to_date = records[f'{to_stage}_date']
    eligible = (
        records[f'is_{from_stage}']
        & (from_date > window_start)
        & (from_date <= as_of)
        & population(records, to_stage)
    )
    reached = records[f'is_{to_stage}'] & (to_date <= as_of)

    if to_stage == 'sqo':
        # Only decided SQLs count; a Yes dated after as_of was still pending at as_of
        decided = records['sqo_status'].isin(DECIDED_SQO) & ~(records['sqo_status'].eq(SqoStatus.YES.value) & ~reached)
        eligible = eligible & decided

    return eligible, eligible & reached


def build_stage_rates(records, as_of, window_days=TRAILING_WINDOW_DAYS, population=None):
    """
    Trailing-window stage-to-stage conversion rates per segment.
    rate = distinct converted / distinct eligible, NaN when nothing is eligible.
    Lead identity before the sql -> sqo boundary, opportunity identity from it on.
    """
    population = population or full_population()
    as_of = pd.Timestamp(as_of).normalize()
    window_start = as_of - pd.Timedelta(days=window_days)

    segments = records[SEGMENT_KEYS].drop_duplicates()
    frames = []
    for from_stage, to_stage in STAGE_PAIRS:
        entity = entity_column(to_stage)
        eligible, converted = _pair_masks(records, from_stage, to_stage, window_start, as_of, population)

        n_eligible = records[eligible].groupby(SEGMENT_KEYS)[entity].nunique().rename('eligible')
        n_converted = records[converted].groupby(SEGMENT_KEYS)[entity].nunique().rename('converted')

        pair = segments.merge(n_eligible.reset_index(), on=SEGMENT_KEYS, how='left')
        pair = pair.merge(n_converted.reset_index(), on=SEGMENT_KEYS, how='left')
        pair['from_stage'] = from_stage
        pair['to_stage'] = to_stage
        frames.append(pair)

    if not frames or segments.empty:
        return pd.DataFrame(columns=RATE_COLUMNS)

    rates = pd.concat(frames, ignore_index=True)
    rates['eligible'] = rates['eligible'].fillna(0).astype(int)
    rates['converted'] = rates['converted'].fillna(0).astype(int)
    rates['rate'] = safe_divide(rates['converted'], rates['eligible'])
    rates['population'] = population.population

    undefined = rates['rate'].isna().sum()
    if undefined:
        logger.info(f"{undefined} segment/stage rates undefined (no eligible population) for {population.population}")

    return rates[RATE_COLUMNS].sort_values(SEGMENT_KEYS + ['from_stage']).reset_index(drop=True)
