"""
Funnel record ingestion.

Reads the merged per-lead/per-opportunity funnel snapshot, the forecast target table and the
active-owner roster, rejects unusable records with a reason, and normalises stage reach into
one long event table that the actuals and volatility steps read.
"""
import logging
import os
from enum import Enum

import pandas as pd

from funnel_forecast.aggregations import full_population, owner_column
from funnel_forecast.config import LEAD_STAGES, SEGMENT_KEYS, STAGES, UNKNOWN_SEGMENT

logger = logging.getLogger(__name__)


class SqoStatus(str, Enum):
    """SQO decision. Pending is undecided and is never treated as No."""
    YES = 'Yes'
    NO = 'No'
    PENDING = 'Pending'


DECIDED_SQO = [SqoStatus.YES.value, SqoStatus.NO.value]

ID_COLUMNS = ['lead_id', 'opportunity_id', 'lead_owner_id', 'opportunity_owner_id']
FLAG_COLUMNS = ['is_contacted', 'is_mql', 'is_sql', 'is_joined', 'is_lost']
DATE_COLUMNS = [f'{stage}_date' for stage in STAGES] + ['filter_date']
REQUIRED_COLUMNS = ID_COLUMNS + SEGMENT_KEYS + FLAG_COLUMNS + DATE_COLUMNS + ['sqo_status']

TARGET_COLUMNS = SEGMENT_KEYS + ['stage', 'sub_period', 'target_value']

_TRUE_VALUES = {'true', 't', '1', '1.0', 'yes', 'y'}


def parse_sqo_status(value):
    if value is None or pd.isna(value) or str(value).strip() == '':
        return SqoStatus.PENDING
    text = str(value).strip().lower()
    for status in SqoStatus:
        if status.value.lower() == text:
            return status
    raise ValueError(f"invalid sqo_status {value!r}")


def entity_column(stage):
    return 'lead_key' if stage in LEAD_STAGES else 'opportunity_id'


def _to_bool(series):
    if series.dtype == bool:
        return series
    return series.map(lambda v: False if pd.isna(v) else str(v).strip().lower() in _TRUE_VALUES).astype(bool)


def _clean_ids(series):
    cleaned = series.astype('string').str.strip()
    return cleaned.mask(cleaned == '')


def _clean_segment(series):
    cleaned = series.astype('string').str.strip()
    return cleaned.mask(cleaned == '').fillna(UNKNOWN_SEGMENT).astype(str)


# --- Funnel records (Input A) ---

def validate_records(df):
    """
    Returns (records, skipped). Missing columns are fatal; bad rows are skipped with a reason.
    """
    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    df = df.copy()
    for col in ID_COLUMNS:
        df[col] = _clean_ids(df[col])
    for col in SEGMENT_KEYS:
        df[col] = _clean_segment(df[col])
    for col in DATE_COLUMNS:
        df[col] = pd.to_datetime(df[col], errors='coerce').dt.normalize()
    for col in FLAG_COLUMNS:
        df[col] = _to_bool(df[col])

    reasons = pd.Series(pd.NA, index=df.index, dtype=object)

    def reject(mask, reason):
        mask = mask & reasons.isna()
        reasons[mask] = reason

    reject(df['lead_id'].isna() & df['opportunity_id'].isna(), 'missing lead and opportunity identity')

    parsed = []
    for value in df['sqo_status']:
        try:
            parsed.append(parse_sqo_status(value).value)
        except ValueError:
            parsed.append(None)
    parsed = pd.Series(parsed, index=df.index, dtype=object)
    reject(parsed.isna(), 'invalid sqo_status')
    df['sqo_status'] = parsed
    df['is_sqo'] = df['sqo_status'] == SqoStatus.YES.value

    for stage in STAGES:
        reject(df[f'is_{stage}'] & df[f'{stage}_date'].isna(), f'{stage} reached without {stage}_date')
    for stage in ['sqo', 'joined']:
        reject(df[f'is_{stage}'] & df['opportunity_id'].isna(), f'{stage} reached without opportunity identity')

    skipped = df[reasons.notna()].copy()
    skipped['skip_reason'] = reasons[reasons.notna()]
    records = df[reasons.isna()].copy()

    if not skipped.empty:
        for reason, count in skipped['skip_reason'].value_counts().sort_index().items():
            logger.warning(f"Skipped {count} funnel records: {reason}")

    # Lead-stage identity falls back to an opportunity-scoped key for opportunity-only records
    records['lead_key'] = records['lead_id'].fillna('opp:' + records['opportunity_id'].fillna(''))
    records = records.reset_index(drop=True)

    return records, skipped.reset_index(drop=True)


def load_records(path):
    df = pd.read_csv(path, dtype={col: str for col in ID_COLUMNS + SEGMENT_KEYS + ['sqo_status']})
    logger.info(f"Loaded {len(df):,} funnel records from {path}")
    return validate_records(df)


# --- Forecast targets (Input B) ---

def prepare_targets(df):
    """Duplicate (segment, stage, sub_period) rows are summed, not deduplicated."""
    missing = set(TARGET_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required target columns: {sorted(missing)}")

    df = df[TARGET_COLUMNS].copy()
    for col in SEGMENT_KEYS:
        df[col] = _clean_segment(df[col])
    df['stage'] = df['stage'].astype(str).str.strip().str.lower()
    df['sub_period'] = df['sub_period'].astype(str).str.strip()
    df['target_value'] = pd.to_numeric(df['target_value'], errors='coerce').fillna(0)

    unknown = ~df['stage'].isin(STAGES)
    if unknown.any():
        logger.warning(f"Dropping {unknown.sum()} target rows with unknown stage: {sorted(df.loc[unknown, 'stage'].unique())}")
        df = df[~unknown]

    keys = SEGMENT_KEYS + ['stage', 'sub_period']
    dup_mask = df.duplicated(subset=keys, keep=False)
    if dup_mask.any():
        n_keys = df[dup_mask].drop_duplicates(subset=keys).shape[0]
        logger.warning(f"Found {n_keys} duplicated target keys ({dup_mask.sum()} rows); summing them")

    return df.groupby(keys, as_index=False)['target_value'].sum().sort_values(keys).reset_index(drop=True)


def load_targets(path):
    df = pd.read_csv(path, dtype={'channel': str, 'source': str, 'stage': str, 'sub_period': str})
    logger.info(f"Loaded {len(df):,} target rows from {path}")
    return prepare_targets(df)


# --- Active-owner roster (Input C) ---

def load_active_owners(path):
    if not path or not os.path.exists(path):
        return None
    df = pd.read_csv(path, dtype={'owner_id': str})
    if 'owner_id' not in df.columns:
        raise ValueError("Active owner roster needs an 'owner_id' column")
    if 'is_active' in df.columns:
        df = df[_to_bool(df['is_active'])]
    owners = set(df['owner_id'].dropna().str.strip())
    logger.info(f"Loaded {len(owners)} active owners from {path}")
    return owners


# --- Stage events ---

def build_stage_events(records, population=None):
    """One row per (entity, stage reached): entity_id, channel, source, stage, stage_date, owner_id."""
    population = population or full_population()
    frames = []
    for stage in STAGES:
        mask = records[f'is_{stage}'] & population(records, stage)
        sub = records[mask]
        frames.append(pd.DataFrame({
            'entity_id': sub[entity_column(stage)].astype(str),
            'channel': sub['channel'],
            'source': sub['source'],
            'stage': stage,
            'stage_date': sub[f'{stage}_date'],
            'owner_id': sub[owner_column(stage)],
        }))
    events = pd.concat(frames, ignore_index=True)
    events = events.sort_values(SEGMENT_KEYS + ['stage', 'stage_date', 'entity_id']).reset_index(drop=True)
    return events
