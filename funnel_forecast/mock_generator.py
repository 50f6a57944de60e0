import logging
import os

import numpy as np
import pandas as pd

from funnel_forecast.config import CONFIG, STAGES, build_sub_periods, setup_logging
from funnel_forecast.records import SqoStatus

logger = logging.getLogger(__name__)

# ==========================================
# CONFIGURATION
# ==========================================

OUTPUT_DIR = os.path.dirname(CONFIG['records_path'])
SEED = 42

# Contact history before the period so the trailing windows have data
HISTORY_DAYS = 120

# (channel, source) -> daily contact volume and stage-to-stage conversion
SEGMENT_CONFIG = {
    ('Outbound', 'LinkedIn'): {
        'daily_contacts': 6.0,
        'mql_rate': 0.35,
        'sql_rate': 0.45,
        'sqo_rate': 0.60,
        'joined_rate': 0.30,
    },
    ('Outbound', 'Cold Email'): {
        'daily_contacts': 8.0,
        'mql_rate': 0.20,
        'sql_rate': 0.40,
        'sqo_rate': 0.55,
        'joined_rate': 0.25,
    },
    ('Inbound', 'Website'): {
        'daily_contacts': 3.0,
        'mql_rate': 0.60,
        'sql_rate': 0.50,
        'sqo_rate': 0.65,
        'joined_rate': 0.35,
    },
    ('Partner', 'Referral'): {
        'daily_contacts': 1.0,
        'mql_rate': 0.70,
        'sql_rate': 0.55,
        'sqo_rate': 0.70,
        'joined_rate': 0.40,
    },
}

# Days spent before each transition (min, max)
STAGE_LAG_DAYS = {
    'mql': (1, 14),
    'sql': (3, 21),
    'sqo': (5, 20),
    'joined': (14, 45),
}

ACTIVE_OWNERS = ['OWN-001', 'OWN-002', 'OWN-003', 'OWN-004', 'OWN-005', 'OWN-006']
INACTIVE_OWNERS = ['OWN-007', 'OWN-008']

LOST_RATE = 0.5              # share of stalled records marked lost
PENDING_RATE = 0.15          # share of SQLs with no SQO decision yet
OPPORTUNITY_ONLY_RATE = 0.02 # opportunities created without a lead record
TARGET_UPLIFT = 1.10


# ==========================================
# RECORD GENERATION
# ==========================================

def _lag(rng, stage):
    low, high = STAGE_LAG_DAYS[stage]
    return pd.Timedelta(days=int(rng.integers(low, high + 1)))


def generate_record(rng, index, channel, source, contacted_date, snapshot_date, seg_config):
    """One lead's path through the funnel, truncated at the snapshot date."""
    owners = ACTIVE_OWNERS + INACTIVE_OWNERS
    lead_owner = owners[int(rng.integers(len(owners)))]

    record = {
        'lead_id': f'LEAD-{index:06d}',
        'opportunity_id': None,
        'lead_owner_id': lead_owner,
        'opportunity_owner_id': None,
        'channel': channel,
        'source': source,
        'is_contacted': True,
        'is_mql': False,
        'is_sql': False,
        'is_joined': False,
        'is_lost': False,
        'sqo_status': None,
        'filter_date': contacted_date,
        'contacted_date': contacted_date,
        'mql_date': None,
        'sql_date': None,
        'sqo_date': None,
        'joined_date': None,
    }

    # Walk the funnel until a conversion fails or runs past the snapshot
    last_date = contacted_date
    stalled = False
    for stage in ['mql', 'sql']:
        stage_date = last_date + _lag(rng, stage)
        if rng.random() >= seg_config[f'{stage}_rate'] or stage_date > snapshot_date:
            stalled = True
            break
        record[f'is_{stage}'] = True
        record[f'{stage}_date'] = stage_date
        last_date = stage_date

    if not stalled:
        record['opportunity_id'] = f'OPP-{index:06d}'
        record['opportunity_owner_id'] = lead_owner if rng.random() < 0.8 else owners[int(rng.integers(len(owners)))]
        sqo_date = last_date + _lag(rng, 'sqo')
        if sqo_date > snapshot_date or rng.random() < PENDING_RATE:
            record['sqo_status'] = SqoStatus.PENDING.value
        elif rng.random() < seg_config['sqo_rate']:
            record['sqo_status'] = SqoStatus.YES.value
            record['sqo_date'] = sqo_date
            joined_date = sqo_date + _lag(rng, 'joined')
            if rng.random() < seg_config['joined_rate'] and joined_date <= snapshot_date:
                record['is_joined'] = True
                record['joined_date'] = joined_date
            else:
                stalled = True
        else:
            record['sqo_status'] = SqoStatus.NO.value
            record['is_lost'] = True

    if stalled and rng.random() < LOST_RATE:
        record['is_lost'] = True

    if record['opportunity_id'] and rng.random() < OPPORTUNITY_ONLY_RATE:
        record['lead_id'] = None

    return record


def generate_mock_records(period_start, period_end, seed=SEED, history_days=HISTORY_DAYS):
    """Synthetic funnel snapshot taken at period_end."""
    rng = np.random.default_rng(seed)
    period_start = pd.Timestamp(period_start).normalize()
    period_end = pd.Timestamp(period_end).normalize()
    days = pd.date_range(period_start - pd.Timedelta(days=history_days), period_end, freq='D')

    rows = []
    index = 1
    for (channel, source), seg_config in SEGMENT_CONFIG.items():
        for day in days:
            for _ in range(int(rng.poisson(seg_config['daily_contacts']))):
                rows.append(generate_record(rng, index, channel, source, day, period_end, seg_config))
                index += 1

    df = pd.DataFrame(rows)
    logger.info(
        f"Generated {len(df):,} records: {int(df['is_joined'].sum())} joined, "
        f"{int((df['sqo_status'] == SqoStatus.PENDING.value).sum())} pending SQO, {int(df['is_lost'].sum())} lost"
    )
    return df


# ==========================================
# TARGETS & ROSTER
# ==========================================

def generate_mock_targets(period_start, period_end, seed=SEED):
    """
    Monthly targets per segment and stage from expected volumes with a small uplift.
    One key is split over two rows so the loader has a duplicate to sum.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for (channel, source), seg_config in SEGMENT_CONFIG.items():
        for s, e in build_sub_periods(period_start, period_end):
            n_days = (e - s).days + 1
            volume = seg_config['daily_contacts'] * n_days * TARGET_UPLIFT * rng.uniform(0.9, 1.1)
            for stage in STAGES:
                if stage != 'contacted':
                    volume *= seg_config[f'{stage}_rate']
                rows.append({
                    'channel': channel,
                    'source': source,
                    'stage': stage,
                    'sub_period': s.strftime('%Y-%m'),
                    'target_value': round(volume),
                })

    duplicate = dict(rows[0])
    duplicate['target_value'] = rows[0]['target_value'] // 2
    rows[0]['target_value'] -= duplicate['target_value']
    rows.append(duplicate)
    return pd.DataFrame(rows)


def generate_mock_owners():
    rows = [{'owner_id': o, 'is_active': True} for o in ACTIVE_OWNERS]
    rows += [{'owner_id': o, 'is_active': False} for o in INACTIVE_OWNERS]
    return pd.DataFrame(rows)


def run_mock_generator(output_dir=OUTPUT_DIR, period_start=None, period_end=None, seed=SEED):
    period_start = period_start or CONFIG['period_start']
    period_end = period_end or CONFIG['period_end']
    os.makedirs(output_dir, exist_ok=True)

    outputs = {
        'funnel_records.csv': generate_mock_records(period_start, period_end, seed=seed),
        'forecast_targets.csv': generate_mock_targets(period_start, period_end, seed=seed),
        'active_owners.csv': generate_mock_owners(),
    }
    paths = {}
    for name, df in outputs.items():
        path = os.path.join(output_dir, name)
        df.to_csv(path, index=False, date_format='%Y-%m-%d')
        logger.info(f"Saved: {path} ({len(df):,} rows)")
        paths[name] = path
    return paths


if __name__ == "__main__":
    setup_logging()
    run_mock_generator()
