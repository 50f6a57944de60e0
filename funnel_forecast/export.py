import json
import logging
import os

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

logger = logging.getLogger(__name__)

HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='2F5496')
PERCENT_FORMAT = '0.0%'
NUMBER_FORMAT = '#,##0.0'
COUNT_FORMAT = '#,##0'
DATE_FORMAT = 'yyyy-mm-dd'
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)

POINT_FORECAST_FORMATS = {
    'pct_cols': ['conversion_rate'],
    'number_cols': ['future_value', 'predicted_value', 'stddev_daily'],
    'count_cols': ['forecast_value', 'actual_value', 'open_pipeline', 'remaining_target'],
}
PROJECTION_FORMATS = {
    'number_cols': ['actual', 'predicted', 'lower', 'upper', 'target'],
    'date_cols': ['date'],
}


def _suffix(population):
    return '' if population == 'full' else f'_{population}'


def export_results(export_dir, results, skipped, assumptions):
    """
    results: population -> {'point_forecast', 'daily_projection', 'stage_rates'} tables.
    Writes CSVs and the assumptions log; returns the written paths.
    """
    os.makedirs(export_dir, exist_ok=True)
    paths = []

    for population, tables in results.items():
        suffix = _suffix(population)
        for name in ['point_forecast', 'daily_projection', 'stage_rates']:
            path = os.path.join(export_dir, f'{name}{suffix}.csv')
            tables[name].to_csv(path, index=False, date_format='%Y-%m-%d', float_format='%.6f')
            paths.append(path)

    skipped_path = os.path.join(export_dir, 'skipped_records.csv')
    skipped.to_csv(skipped_path, index=False, date_format='%Y-%m-%d')
    paths.append(skipped_path)

    assumptions_path = os.path.join(export_dir, 'assumptions.json')
    with open(assumptions_path, 'w') as f:
        json.dump(assumptions, f, indent=4, default=str, sort_keys=True)
    paths.append(assumptions_path)

    logger.info(f"Exported {len(paths)} files to {export_dir}")
    return paths


# --- Workbook ---

def style_header_row(ws, row_num, num_cols):
    for col in range(1, num_cols + 1):
        cell = ws.cell(row=row_num, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = THIN_BORDER


def auto_width(ws):
    for column_cells in ws.columns:
        max_length = max((len(str(cell.value)) for cell in column_cells if cell.value is not None), default=0)
        ws.column_dimensions[column_cells[0].column_letter].width = min(max_length + 2, 40)


def _cell_value(value):
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if hasattr(value, 'item'):
        return value.item()
    return value


def add_dataframe_to_sheet(ws, df, pct_cols=None, number_cols=None, count_cols=None, date_cols=None):
    pct_cols = pct_cols or []
    number_cols = number_cols or []
    count_cols = count_cols or []
    date_cols = date_cols or []

    for c_idx, col_name in enumerate(df.columns, 1):
        ws.cell(row=1, column=c_idx, value=col_name)
    style_header_row(ws, 1, len(df.columns))

    for r_idx, row in enumerate(df.itertuples(index=False), 2):
        for c_idx, value in enumerate(row, 1):
            cell = ws.cell(row=r_idx, column=c_idx, value=_cell_value(value))
            cell.border = THIN_BORDER

            col_name = df.columns[c_idx - 1]
            if col_name in pct_cols:
                cell.number_format = PERCENT_FORMAT
            elif col_name in number_cols:
                cell.number_format = NUMBER_FORMAT
            elif col_name in count_cols:
                cell.number_format = COUNT_FORMAT
            elif col_name in date_cols:
                cell.number_format = DATE_FORMAT


def export_workbook(path, results):
    wb = Workbook()
    wb.remove(wb.active)

    for population, tables in results.items():
        suffix = _suffix(population)
        ws_point = wb.create_sheet(f'Point_Forecast{suffix}'[:31])
        add_dataframe_to_sheet(ws_point, tables['point_forecast'], **POINT_FORECAST_FORMATS)
        auto_width(ws_point)

        ws_daily = wb.create_sheet(f'Daily_Projection{suffix}'[:31])
        add_dataframe_to_sheet(ws_daily, tables['daily_projection'], **PROJECTION_FORMATS)
        auto_width(ws_daily)

    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    wb.save(path)
    logger.info(f"Exported workbook to {path}")
    return path
