import pandas as pd

from funnel_forecast.aggregations import full_population
from funnel_forecast.config import SEGMENT_KEYS, STAGE_PAIRS
from funnel_forecast.records import SqoStatus, entity_column

PIPELINE_COLUMNS = SEGMENT_KEYS + ['stage', 'open_count', 'population']


def build_open_pipeline(records, period_start, as_of, population=None):
    """
    In-flight count per segment/stage: reached the stage, not the next one, not lost,
    with filter_date inside [period_start, as_of].
    """
    population = population or full_population()
    period_start = pd.Timestamp(period_start).normalize()
    as_of = pd.Timestamp(as_of).normalize()

    in_period = (records['filter_date'] >= period_start) & (records['filter_date'] <= as_of)
    not_lost = ~records['is_lost']

    segments = records[SEGMENT_KEYS].drop_duplicates()
    frames = []
    for stage, next_stage in STAGE_PAIRS:
        reached = records[f'is_{stage}'] & (records[f'{stage}_date'] <= as_of)
        advanced = records[f'is_{next_stage}'] & (records[f'{next_stage}_date'] <= as_of)
        is_open = reached & ~advanced & not_lost & in_period & population(records, stage)
        if stage == 'sql':
            # A No decision ends the SQL's path
            is_open = is_open & records['sqo_status'].ne(SqoStatus.NO.value)

        entity = entity_column(stage)
        counts = records[is_open].groupby(SEGMENT_KEYS)[entity].nunique().reset_index(name='open_count')
        frame = segments.merge(counts, on=SEGMENT_KEYS, how='left')
        frame['stage'] = stage
        frames.append(frame)

    if segments.empty:
        return pd.DataFrame(columns=PIPELINE_COLUMNS)

    pipeline = pd.concat(frames, ignore_index=True)
    pipeline['open_count'] = pipeline['open_count'].fillna(0).astype(int)
    pipeline['population'] = population.population
    return pipeline[PIPELINE_COLUMNS].sort_values(SEGMENT_KEYS + ['stage']).reset_index(drop=True)
