"""Shared test fixtures: funnel record builders and a standard forecast period."""
import pandas as pd
import pytest

from funnel_forecast.config import STAGES, validate_period_config
from funnel_forecast.records import validate_records


def _make_record(
    lead_id=None,
    opportunity_id=None,
    channel='Outbound',
    source='LinkedIn',
    reached=None,
    sqo_status=None,
    is_lost=False,
    filter_date=None,
    lead_owner_id='OWN-1',
    opportunity_owner_id=None,
):
    """
    One Input A row. `reached` maps stage -> date string; an 'sqo' entry implies a Yes
    decision unless sqo_status says otherwise.
    """
    reached = reached or {}
    if 'sqo' in reached and sqo_status is None:
        sqo_status = 'Yes'

    row = {
        'lead_id': lead_id,
        'opportunity_id': opportunity_id,
        'lead_owner_id': lead_owner_id,
        'opportunity_owner_id': opportunity_owner_id or (lead_owner_id if opportunity_id else None),
        'channel': channel,
        'source': source,
        'sqo_status': sqo_status,
        'is_lost': is_lost,
    }
    for stage in STAGES:
        if stage != 'sqo':
            row[f'is_{stage}'] = stage in reached
        row[f'{stage}_date'] = reached.get(stage)

    dates = [d for d in reached.values() if d is not None]
    first_date = min(dates) if dates else None
    row['filter_date'] = filter_date or first_date
    return row


@pytest.fixture
def make_record():
    return _make_record


@pytest.fixture
def to_records():
    """Validate raw rows and return the accepted records."""
    def _to_records(rows):
        records, _ = validate_records(pd.DataFrame(rows))
        return records
    return _to_records


@pytest.fixture
def period():
    """A 92-day quarter with as_of on day 21."""
    return validate_period_config({
        'period_start': '2024-07-01',
        'period_end': '2024-09-30',
        'as_of': '2024-07-21',
        'sub_periods': None,
    })
