"""Tests for funnel_forecast.records: ingestion, rejection and stage events."""
import logging

import pandas as pd
import pytest

from funnel_forecast.aggregations import active_owner_population
from funnel_forecast.records import (
    SqoStatus, build_stage_events, entity_column, load_active_owners, load_records, parse_sqo_status,
    prepare_targets, validate_records
)


class TestParseSqoStatus:

    @pytest.mark.parametrize('value, expected', [
        ('Yes', SqoStatus.YES),
        (' no ', SqoStatus.NO),
        ('PENDING', SqoStatus.PENDING),
        (None, SqoStatus.PENDING),
        ('', SqoStatus.PENDING),
        (float('nan'), SqoStatus.PENDING),
    ])
    def test_known_values(self, value, expected):
        assert parse_sqo_status(value) is expected

    def test_unknown_value_raises(self):
        with pytest.raises(ValueError):
            parse_sqo_status('maybe')


def test_entity_column_switches_at_sqo():
    assert entity_column('sql') == 'lead_key'
    assert entity_column('sqo') == 'opportunity_id'


class TestValidateRecords:

    def test_missing_column_is_fatal(self, make_record):
        df = pd.DataFrame([make_record(lead_id='L1', reached={'contacted': '2024-07-01'})])
        with pytest.raises(ValueError, match='Missing required columns'):
            validate_records(df.drop(columns=['filter_date']))

    def test_skip_reasons(self, make_record, caplog):
        rows = [
            make_record(lead_id='L1', reached={'contacted': '2024-07-01'}),
            make_record(reached={'contacted': '2024-07-01'}),
            make_record(lead_id='L3', reached={'contacted': '2024-07-01'}, sqo_status='maybe'),
            make_record(lead_id='L4', reached={'contacted': '2024-07-01', 'mql': None}),
            make_record(lead_id='L5', reached={'contacted': '2024-07-01', 'sqo': '2024-07-10'}),
        ]
        with caplog.at_level(logging.WARNING):
            records, skipped = validate_records(pd.DataFrame(rows))

        assert records['lead_id'].tolist() == ['L1']
        reasons = dict(zip(skipped['lead_id'].fillna('-'), skipped['skip_reason']))
        assert reasons == {
            '-': 'missing lead and opportunity identity',
            'L3': 'invalid sqo_status',
            'L4': 'mql reached without mql_date',
            'L5': 'sqo reached without opportunity identity',
        }
        assert 'Skipped 1 funnel records: invalid sqo_status' in caplog.text

    def test_first_reason_wins(self, make_record):
        rows = [make_record(reached={'contacted': '2024-07-01'}, sqo_status='maybe')]
        _, skipped = validate_records(pd.DataFrame(rows))
        assert skipped['skip_reason'].tolist() == ['missing lead and opportunity identity']

    def test_null_status_is_pending_and_blank_segment_is_unknown(self, make_record):
        rows = [make_record(lead_id='L1', channel='  ', source=None, reached={'contacted': '2024-07-01'})]
        records, _ = validate_records(pd.DataFrame(rows))
        assert records.loc[0, 'sqo_status'] == 'Pending'
        assert not records.loc[0, 'is_sqo']
        assert records.loc[0, 'channel'] == 'Unknown'
        assert records.loc[0, 'source'] == 'Unknown'

    def test_opportunity_only_record_gets_scoped_lead_key(self, make_record):
        rows = [make_record(opportunity_id='O1', reached={'sql': '2024-07-01', 'sqo': '2024-07-05'})]
        records, skipped = validate_records(pd.DataFrame(rows))
        assert skipped.empty
        assert records.loc[0, 'lead_key'] == 'opp:O1'
        assert records.loc[0, 'is_sqo']

    def test_string_flags_are_parsed(self, make_record):
        row = make_record(lead_id='L1', reached={'contacted': '2024-07-01'})
        row['is_contacted'] = 'TRUE'
        row['is_lost'] = '0'
        records, _ = validate_records(pd.DataFrame([row]))
        assert records.loc[0, 'is_contacted']
        assert not records.loc[0, 'is_lost']


def test_load_records_reads_csv(tmp_path, make_record):
    path = tmp_path / 'records.csv'
    pd.DataFrame([
        make_record(lead_id='0012', reached={'contacted': '2024-07-01'}),
    ]).to_csv(path, index=False)
    records, skipped = load_records(path)
    # ids stay strings
    assert records.loc[0, 'lead_id'] == '0012'
    assert records.loc[0, 'contacted_date'] == pd.Timestamp('2024-07-01')
    assert skipped.empty


class TestPrepareTargets:

    def _targets(self):
        return pd.DataFrame({
            'channel': ['Outbound', 'Outbound', 'Outbound', 'Inbound'],
            'source': ['LinkedIn', 'LinkedIn', 'LinkedIn', 'Website'],
            'stage': ['MQL', 'mql', 'bogus', 'joined'],
            'sub_period': ['2024-07', '2024-07', '2024-07', '2024-08'],
            'target_value': [10, 15, 99, 3],
        })

    def test_duplicates_are_summed_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            targets = prepare_targets(self._targets())
        mql = targets[(targets['channel'] == 'Outbound') & (targets['stage'] == 'mql')]
        assert mql['target_value'].tolist() == [25]
        assert 'duplicated target keys' in caplog.text

    def test_unknown_stage_is_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            targets = prepare_targets(self._targets())
        assert 'bogus' not in targets['stage'].tolist()
        assert 'unknown stage' in caplog.text
        assert len(targets) == 2

    def test_missing_column_is_fatal(self):
        with pytest.raises(ValueError):
            prepare_targets(self._targets().drop(columns=['sub_period']))


class TestLoadActiveOwners:

    def test_missing_file_means_no_roster(self, tmp_path):
        assert load_active_owners(tmp_path / 'nope.csv') is None
        assert load_active_owners(None) is None

    def test_inactive_rows_are_filtered(self, tmp_path):
        path = tmp_path / 'owners.csv'
        pd.DataFrame({'owner_id': ['A', 'B', 'C'], 'is_active': [True, False, True]}).to_csv(path, index=False)
        assert load_active_owners(path) == {'A', 'C'}

    def test_owner_id_column_required(self, tmp_path):
        path = tmp_path / 'owners.csv'
        pd.DataFrame({'name': ['A']}).to_csv(path, index=False)
        with pytest.raises(ValueError):
            load_active_owners(path)


class TestBuildStageEvents:

    def test_entity_switches_to_opportunity(self, make_record, to_records):
        records = to_records([
            make_record(
                lead_id='L1', opportunity_id='O1',
                reached={'contacted': '2024-07-01', 'mql': '2024-07-02', 'sql': '2024-07-03', 'sqo': '2024-07-04'},
            ),
        ])
        events = build_stage_events(records)
        ids = dict(zip(events['stage'], events['entity_id']))
        assert ids == {'contacted': 'L1', 'mql': 'L1', 'sql': 'L1', 'sqo': 'O1'}

    def test_population_filters_by_stage_owner(self, make_record, to_records):
        records = to_records([
            make_record(
                lead_id='L1', opportunity_id='O1', lead_owner_id='A', opportunity_owner_id='B',
                reached={'sql': '2024-07-03', 'sqo': '2024-07-04'},
            ),
        ])
        events = build_stage_events(records, active_owner_population({'A'}))
        assert events['stage'].tolist() == ['sql']
