import logging
import os
from collections import namedtuple

import pandas as pd

logger = logging.getLogger(__name__)


def setup_logging(level=logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


# --- Funnel shape ---

# S0 "prospect" is the contacted stage
STAGES = ['contacted', 'mql', 'sql', 'sqo', 'joined']
STAGE_PAIRS = list(zip(STAGES[:-1], STAGES[1:]))

# Entity switches from lead to opportunity at the sql -> sqo boundary
LEAD_STAGES = ['contacted', 'mql', 'sql']
OPPORTUNITY_STAGES = ['sqo', 'joined']

SEGMENT_KEYS = ['channel', 'source']
UNKNOWN_SEGMENT = 'Unknown'

POPULATION_FULL = 'full'
POPULATION_ACTIVE_OWNER = 'active_owner'

# --- Model parameters ---

TRAILING_WINDOW_DAYS = 90
VOLATILITY_WINDOW_DAYS = 90
CONFIDENCE_Z = 1.96

# Proposed team-size adjustment, channel -> multiplier on future conversions. None disables it.
TEAM_SIZE_ADJUSTMENT = None

# --- Paths & run parameters (the scheduler overrides these) ---

def _project_root():
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

_ROOT = _project_root()

CONFIG = {
    'records_path': os.path.join(_ROOT, 'data', 'funnel_records.csv'),
    'targets_path': os.path.join(_ROOT, 'data', 'forecast_targets.csv'),
    'active_owners_path': os.path.join(_ROOT, 'data', 'active_owners.csv'),
    'export_dir': os.path.join(_ROOT, 'exports'),
    'period_start': '2026-07-01',
    'period_end': '2026-09-30',
    'as_of': '2026-07-21',
    'sub_periods': None,  # None = calendar months clipped to the period
    'trailing_window_days': TRAILING_WINDOW_DAYS,
    'volatility_window_days': VOLATILITY_WINDOW_DAYS,
    'confidence_z': CONFIDENCE_Z,
    'team_size_adjustment': TEAM_SIZE_ADJUSTMENT,
    'export_workbook': True,
    'backtest_as_of': None,  # earlier as_of to score against period-end actuals; None skips the backtest
}


class ConfigurationError(ValueError):
    pass


PeriodConfig = namedtuple('PeriodConfig', ['start', 'end', 'as_of', 'sub_periods'])


def build_sub_periods(period_start, period_end):
    """Calendar months clipped to [period_start, period_end]."""
    start = pd.Timestamp(period_start).normalize()
    end = pd.Timestamp(period_end).normalize()
    sub_periods = []
    for month in pd.period_range(start, end, freq='M'):
        m_start = max(month.start_time.normalize(), start)
        m_end = min(month.end_time.normalize(), end)
        sub_periods.append((m_start, m_end))
    return sub_periods


def validate_period_config(config):
    """
    Normalise and check the period settings before any record is read.
    The sub-periods must tile the period exactly: no gaps, no overlaps.
    """
    try:
        start = pd.Timestamp(config['period_start']).normalize()
        end = pd.Timestamp(config['period_end']).normalize()
        as_of = pd.Timestamp(config['as_of']).normalize()
    except (KeyError, ValueError, TypeError) as exc:
        raise ConfigurationError(f"Invalid period configuration: {exc}") from exc

    if start > end:
        raise ConfigurationError(f"period_start {start.date()} is after period_end {end.date()}")

    raw_sub_periods = config.get('sub_periods')
    if raw_sub_periods is None:
        sub_periods = build_sub_periods(start, end)
    else:
        try:
            sub_periods = [(pd.Timestamp(s).normalize(), pd.Timestamp(e).normalize()) for s, e in raw_sub_periods]
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid sub_periods: {exc}") from exc
        sub_periods.sort()

    if not sub_periods:
        raise ConfigurationError("No sub-periods configured")

    expected_start = start
    for s, e in sub_periods:
        if s > e:
            raise ConfigurationError(f"Sub-period {s.date()}..{e.date()} starts after it ends")
        if s != expected_start:
            raise ConfigurationError(
                f"Sub-periods do not cover the period: expected a sub-period starting {expected_start.date()}, got {s.date()}"
            )
        expected_start = e + pd.Timedelta(days=1)

    if sub_periods[-1][1] != end:
        raise ConfigurationError(
            f"Sub-periods end on {sub_periods[-1][1].date()} but the period ends on {end.date()}"
        )

    if as_of < start or as_of > end:
        logger.warning(f"as_of {as_of.date()} falls outside the period {start.date()}..{end.date()}")

    return PeriodConfig(start=start, end=end, as_of=as_of, sub_periods=sub_periods)
