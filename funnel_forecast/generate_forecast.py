import logging
import os

import pandas as pd

from funnel_forecast.actuals import actual_to_date, build_daily_actuals
from funnel_forecast.aggregations import active_owner_population, full_population
from funnel_forecast.assembler import assemble_point_forecast
from funnel_forecast.cascade import apply_team_size_adjustment
from funnel_forecast.config import (
    CONFIG, POPULATION_ACTIVE_OWNER, POPULATION_FULL, SEGMENT_KEYS, setup_logging, validate_period_config
)
from funnel_forecast.export import export_results, export_workbook
from funnel_forecast.gap import build_remaining_targets, in_period_targets
from funnel_forecast.pipeline import build_open_pipeline
from funnel_forecast.projection import build_daily_projection
from funnel_forecast.rates import build_stage_rates
from funnel_forecast.records import build_stage_events, load_active_owners, load_records, load_targets
from funnel_forecast.volatility import build_daily_volatility

logger = logging.getLogger(__name__)


def _population_predicate(population, active_owners=None):
    if population == POPULATION_FULL:
        return full_population()
    if population == POPULATION_ACTIVE_OWNER:
        if active_owners is None:
            raise ValueError("The active_owner population needs an active owner roster")
        return active_owner_population(active_owners)
    raise ValueError(f"Unknown population {population!r}")


def _all_segments(records, targets):
    frames = [records[SEGMENT_KEYS]]
    if targets is not None and not targets.empty:
        frames.append(targets[SEGMENT_KEYS])
    return pd.concat(frames).drop_duplicates().sort_values(SEGMENT_KEYS).reset_index(drop=True)


def forecast_population(records, targets, period, population=POPULATION_FULL, active_owners=None, config=None):
    """
    Run one population variant end to end.
    Returns {'point_forecast', 'daily_projection', 'stage_rates'}.
    """
    config = {**CONFIG, **(config or {})}
    predicate = _population_predicate(population, active_owners)
    targets = in_period_targets(targets, period)
    segments = _all_segments(records, targets)

    events = build_stage_events(records, predicate)
    daily = build_daily_actuals(events, period.start, period.end, segments=segments)
    actuals = actual_to_date(daily, period.as_of)

    rates = build_stage_rates(records, period.as_of, window_days=config['trailing_window_days'], population=predicate)
    pipeline = build_open_pipeline(records, period.start, period.as_of, population=predicate)
    gap = build_remaining_targets(targets, actuals, population=population)
    volatility = build_daily_volatility(
        events, period.as_of, window_days=config['volatility_window_days'], segments=segments
    )

    point_forecast = assemble_point_forecast(rates, pipeline, gap, volatility, population=population)
    point_forecast = apply_team_size_adjustment(point_forecast, config.get('team_size_adjustment'))

    daily_projection = build_daily_projection(
        point_forecast, daily, targets, period, z=config['confidence_z'], population=population
    )

    logger.info(
        f"[{population}] {len(segments)} segments, "
        f"joined predicted {point_forecast.loc[point_forecast['stage'] == 'joined', 'predicted_value'].sum():,.1f}"
    )
    return {
        'point_forecast': point_forecast,
        'daily_projection': daily_projection,
        'stage_rates': rates,
    }


def build_assumptions(config, period, records, skipped, populations, active_owners=None):
    """Effective run settings. No wall-clock values, so reruns write identical files."""
    settings = {
        k: (str(v) if isinstance(v, pd.Timestamp) else v)
        for k, v in config.items()
        if k != 'sub_periods'
    }
    return {
        'config': settings,
        'period': {
            'start': str(period.start.date()),
            'end': str(period.end.date()),
            'as_of': str(period.as_of.date()),
            'sub_periods': [[str(s.date()), str(e.date())] for s, e in period.sub_periods],
        },
        'populations': populations,
        'records_used': int(len(records)),
        'records_skipped': {k: int(v) for k, v in skipped['skip_reason'].value_counts().sort_index().items()}
        if not skipped.empty else {},
        'active_owner_count': len(active_owners) if active_owners is not None else None,
        'target_population': POPULATION_FULL,
    }


def run_forecast(config=None):
    config = {**CONFIG, **(config or {})}
    period = validate_period_config(config)

    logger.info(f"Starting forecast for {period.start.date()}..{period.end.date()} as of {period.as_of.date()}")

    records, skipped = load_records(config['records_path'])
    targets = load_targets(config['targets_path'])
    active_owners = load_active_owners(config.get('active_owners_path'))

    populations = [POPULATION_FULL]
    if active_owners is not None:
        populations.append(POPULATION_ACTIVE_OWNER)
    else:
        logger.info("No active owner roster found; running the full population only")

    results = {}
    for population in populations:
        logger.info(f"Forecasting {population} population...")
        results[population] = forecast_population(
            records, targets, period, population=population, active_owners=active_owners, config=config
        )

    backtest = None
    if config.get('backtest_as_of'):
        from funnel_forecast.backtest import run_backtest
        backtest = run_backtest(records, targets, period, config['backtest_as_of'], config=config)

    assumptions = build_assumptions(config, period, records, skipped, populations, active_owners)

    logger.info("Exporting results...")
    export_dir = config['export_dir']
    export_results(export_dir, results, skipped, assumptions)
    if backtest is not None:
        backtest.to_csv(os.path.join(export_dir, 'backtest.csv'), index=False, float_format='%.6f')
    if config.get('export_workbook'):
        export_workbook(os.path.join(export_dir, 'funnel_forecast.xlsx'), results)

    logger.info("Complete.")
    return {
        'results': results,
        'skipped_records': skipped,
        'assumptions': assumptions,
        'backtest': backtest,
    }


if __name__ == "__main__":
    setup_logging()
    run_forecast()
