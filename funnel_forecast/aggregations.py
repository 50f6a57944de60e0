import numpy as np
import pandas as pd

from funnel_forecast.config import LEAD_STAGES, POPULATION_ACTIVE_OWNER, POPULATION_FULL


def safe_divide(numerator, denominator):
    """numerator / denominator, NaN where the denominator is zero. Never raises."""
    if isinstance(denominator, pd.Series):
        den = denominator.astype('float64')
        return numerator / den.where(den != 0)
    if denominator is None or pd.isna(denominator) or denominator == 0:
        if isinstance(numerator, pd.Series):
            return pd.Series(np.nan, index=numerator.index)
        return np.nan
    return numerator / denominator


def coalesce_default(df, columns, default=0):
    df = df.copy()
    for col in columns:
        if col not in df.columns:
            df[col] = default
        else:
            df[col] = df[col].fillna(default)
    return df


def running_sum_by_group(df, group_cols, order_col, value_col, out_col=None):
    out_col = out_col or f"cumulative_{value_col}"
    df = df.sort_values(group_cols + [order_col]).copy()
    df[out_col] = df.groupby(group_cols)[value_col].cumsum()
    return df


# --- Population predicates ---
# A predicate takes (records, stage) and returns a boolean mask over records.

def owner_column(stage):
    return 'lead_owner_id' if stage in LEAD_STAGES else 'opportunity_owner_id'


def full_population():
    def predicate(records, stage):
        return pd.Series(True, index=records.index)
    predicate.population = POPULATION_FULL
    return predicate


def active_owner_population(active_owners):
    """Keep only records whose owner for the stage is on the active roster."""
    roster = {str(o) for o in active_owners if not pd.isna(o)}

    def predicate(records, stage):
        return records[owner_column(stage)].astype('string').isin(roster).fillna(False).astype(bool)
    predicate.population = POPULATION_ACTIVE_OWNER
    return predicate
